"""Global exception handlers.

- ``OfferLetterError`` → ``{"message": public_message}`` with its status
- request validation   → 400 with the offending field names
- anything else        → 500, internal detail only in the log
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.errors import OfferLetterError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app."""

    @app.exception_handler(OfferLetterError)
    async def offer_letter_error_handler(request: Request, exc: OfferLetterError):
        logger.error(
            "%s on %s: %s", type(exc).__name__, request.url.path, exc,
        )
        return JSONResponse(status_code=exc.http_status, content={"message": exc.public_message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ()) if p != "body") for err in exc.errors()]
        logger.warning("Validation error on %s: %s", request.url.path, fields)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"message": "Invalid request", "fields": fields},
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s", request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Something went wrong"},
        )
