"""Error taxonomy for the offer-letter pipeline.

Every failure the pipeline can report derives from ``OfferLetterError``.
Each class carries a ``public_message`` that is safe to return to API
callers and an ``http_status``; the exception's own message holds the
internal detail and is only ever logged.

Categories
----------
ValidationError          : bad or missing trigger input (400), no side effects
RecipientNotFound        : trigger names an unknown recipient (404)
TemplateNotFound         : template id does not resolve to readable content
RenderTimeout            : rendering exceeded the configured bound
RenderEngineUnavailable  : rendering engine could not start / is unreachable
RenderContentInvalid     : content could not be turned into a document
StorageError             : artifact could not be written or read back
ArtifactNotFound         : no stored artifact for a recipient (404)
TransportUnavailable     : mail transport credentials / connection problem
RecipientRejected        : mail server refused the recipient address
RecordUpdateError        : recipient record write failed after the email went out
"""
from __future__ import annotations


class OfferLetterError(Exception):
    """Base class for all pipeline failures."""

    public_message = "Failed to send offer letter."
    http_status = 500


class ValidationError(OfferLetterError, ValueError):
    http_status = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field
        self.public_message = message


class RecipientNotFound(OfferLetterError, LookupError):
    public_message = "User not found"
    http_status = 404


class TemplateNotFound(OfferLetterError, FileNotFoundError):
    """Raised when a template id does not map to readable content."""


class RenderError(OfferLetterError):
    """Base for rendering-stage failures."""


class RenderTimeout(RenderError, TimeoutError):
    pass


class RenderEngineUnavailable(RenderError):
    pass


class RenderContentInvalid(RenderError):
    pass


class StorageError(OfferLetterError):
    pass


class ArtifactNotFound(OfferLetterError, LookupError):
    public_message = "Offer letter not found"
    http_status = 404


class NotificationError(OfferLetterError):
    """Base for notification-stage failures."""


class TransportUnavailable(NotificationError, ConnectionError):
    pass


class RecipientRejected(NotificationError):
    pass


class RecordUpdateError(OfferLetterError):
    public_message = "Offer letter sent, but the user record could not be updated."
