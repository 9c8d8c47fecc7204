"""Logging setup for the offer-letter service.

Every record handled by the console handler carries two extra fields,
``stage`` and ``recipient_id``.  Pipeline log calls pass them through
``extra=offer_context(...)``; other records get ``-`` for both.

Recipient names, email addresses and phone numbers are redacted from
messages and their arguments, as are SMTP passwords and the remote
renderer's API key.
"""
import logging
import logging.config
import re

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(stage)s %(recipient_id)s] %(message)s"

CONTEXT_FIELDS = ("stage", "recipient_id")

# contact details that end up in request echoes and SMTP errors
CONTACT_PATTERNS = [
    re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
    re.compile(r"(?<!\d)(?:\+91[-\s]?)?[6-9]\d{9}(?!\d)"),
    re.compile(r"\b(?:\+1[-.\s]?)?(?:\(?\d{3}\)?[-.\s]?)\d{3}[-.\s]?\d{4}\b"),
]

# ``key=value`` pairs whose value is a credential; the key is kept
SECRET_ASSIGNMENTS = re.compile(
    r"(?i)((?:smtp_)?password|(?:remote_render_)?api_key|authorization)(\s*[=:]\s*)([^,\s]+)"
)


def offer_context(recipient_id: object, stage: object = "-") -> dict:
    """``extra`` mapping for a log call made on behalf of one recipient."""
    return {
        "recipient_id": str(recipient_id),
        "stage": getattr(stage, "value", stage),
    }


class OfferContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


class PIISafeFilter(logging.Filter):
    def _sanitize(self, value: object) -> object:
        if not isinstance(value, str):
            return value

        redacted = SECRET_ASSIGNMENTS.sub(r"\1\2[REDACTED]", value)
        for pattern in CONTACT_PATTERNS:
            redacted = pattern.sub("[REDACTED]", redacted)
        return redacted

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._sanitize(record.msg)

        if isinstance(record.args, tuple):
            record.args = tuple(self._sanitize(item) for item in record.args)
        elif isinstance(record.args, dict):
            record.args = {key: self._sanitize(value) for key, value in record.args.items()}

        return True


def setup_logging() -> None:
    from app.core.settings import get_settings

    settings = get_settings()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "offer_context": {"()": "app.core.logging.OfferContextFilter"},
                "pii_safe": {"()": "app.core.logging.PIISafeFilter"},
            },
            "formatters": {
                "default": {"format": LOG_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["offer_context", "pii_safe"],
                }
            },
            "loggers": {
                "": {
                    "handlers": ["console"],
                    "level": settings.log_level.upper(),
                },
                "uvicorn.access": {
                    "handlers": ["console"],
                    "level": "WARNING",
                    "propagate": False,
                },
                "weasyprint": {
                    "handlers": ["console"],
                    "level": "ERROR",
                    "propagate": False,
                },
                "fontTools": {
                    "handlers": ["console"],
                    "level": "WARNING",
                    "propagate": False,
                },
            },
        }
    )
