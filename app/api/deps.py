"""FastAPI dependency injection: database sessions and pipeline factories.

Process-wide clients (SMTP transport, renderer, HTTP client, webhook
notifier) are built once in the application lifespan and live on
``app.state``; the factories below hand them to each request.
"""
from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.settings import get_settings
from app.db.repositories import PaymentRepository, RecipientRepository
from app.db.session import get_session_factory
from app.letters.artifact_store import ArtifactStore, build_artifact_store
from app.letters.pipeline import OfferLetterPipeline
from app.letters.renderers.base import BaseRenderer, LayoutOptions
from app.letters.template_resolver import TemplateResolver
from app.notification.email_sender import EmailSender
from app.notification.webhook import WebhookNotifier


def get_db() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    db = get_session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_recipient_repository(db: Session = Depends(get_db)) -> RecipientRepository:
    return RecipientRepository(db)


def get_payment_repository(db: Session = Depends(get_db)) -> PaymentRepository:
    return PaymentRepository(db)


def get_renderer(request: Request) -> BaseRenderer:
    return request.app.state.renderer


def get_email_sender(request: Request) -> EmailSender:
    return EmailSender(request.app.state.smtp_transport, get_settings().mail_from)


def get_webhook_notifier(request: Request) -> WebhookNotifier:
    return request.app.state.webhook_notifier


def get_artifact_store(db: Session = Depends(get_db)) -> ArtifactStore:
    settings = get_settings()
    return build_artifact_store(settings.artifact_backend, root=settings.artifact_dir, db=db)


def get_pipeline(
    recipients: RecipientRepository = Depends(get_recipient_repository),
    store: ArtifactStore = Depends(get_artifact_store),
    renderer: BaseRenderer = Depends(get_renderer),
    sender: EmailSender = Depends(get_email_sender),
) -> OfferLetterPipeline:
    """Assemble a pipeline for one request around the shared clients."""
    settings = get_settings()
    return OfferLetterPipeline(
        resolver=TemplateResolver(settings.template_dir),
        renderer=renderer,
        store=store,
        sender=sender,
        recipients=recipients,
        layout=LayoutOptions.from_settings(settings),
        template_id=settings.offer_template_id,
        organisation_name=settings.organisation_name,
    )
