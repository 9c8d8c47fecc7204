"""FastAPI application factory.

Assembles CORS, error handlers and the health, offers, recipients and
payments routers.  The lifespan builds the process-wide clients (HTTP
client, SMTP transport, PDF renderer, webhook notifier) once and tears
them down at shutdown.
This module is the authoritative app object; app/main.py re-exports it.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.error_handlers import register_error_handlers
from app.api.routes.health import router as health_router
from app.api.routes.offers import router as offers_router
from app.api.routes.payments import router as payments_router
from app.api.routes.recipients import router as recipients_router
from app.core.logging import setup_logging
from app.core.settings import get_settings
from app.letters.renderers.registry import build_renderer
from app.notification.email_sender import SmtpTransport
from app.notification.webhook import RetryPolicy, WebhookNotifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings = get_settings()

    http_client = httpx.Client()
    transport = SmtpTransport.from_settings(settings)
    app.state.http_client = http_client
    app.state.smtp_transport = transport
    app.state.renderer = build_renderer(settings, http_client=http_client)
    app.state.webhook_notifier = WebhookNotifier(
        settings.registration_webhook_url,
        RetryPolicy(
            max_attempts=settings.webhook_max_attempts,
            base_delay_s=settings.webhook_backoff_s,
        ),
        client=http_client,
    )
    logger.info("Started %s with %s renderer", settings.app_name, app.state.renderer.name)
    yield
    transport.close()
    http_client.close()


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

app.include_router(health_router)
app.include_router(offers_router)
app.include_router(recipients_router)
app.include_router(payments_router)
