"""GET /health: liveness check."""
from __future__ import annotations

from fastapi import APIRouter, Request

from app.core.settings import get_settings

router = APIRouter(tags=["health"])


@router.get("/health", summary="Basic health check")
def health_check(request: Request) -> dict[str, str]:
    settings = get_settings()
    renderer = getattr(request.app.state, "renderer", None)
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
        "renderer": renderer.name if renderer is not None else settings.renderer,
    }
