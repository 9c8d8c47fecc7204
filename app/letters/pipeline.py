"""Offer-letter pipeline: one end-to-end run per trigger.

States::

    Start → TemplateResolved → Rendered → Stored → Notified → StateUpdated
      ↘          ↘               ↘          ↘          ↘
                                 Failed

Rules
-----
- Input is validated before anything else; an invalid request never
  touches the record store, the renderer or the mail transport.
- The email is sent only after the PDF is fully rendered and stored.
- Failing after an artifact was stored but before the email was accepted
  deletes that artifact.  Cleanup errors are logged and never replace the
  original error.
- A failed re-send never takes away a letter the recipient already has:
  when the row was ``Delivered`` the previous bytes are written back over
  the new artifact and the row stays ``Delivered``.
- The recipient row is marked ``Delivered`` only after the mail server
  accepted the message.  If that write fails the email has already gone
  out: delivery is at-least-once and the row needs reconciliation.  The
  artifact is kept in that case.
- Record writes run inside a savepoint, so a failed write is undone on its
  own and never rolls back an inline artifact flushed earlier in the same
  session.
- Invocations share no in-process state.  Two concurrent runs for the same
  recipient are not serialised here and can produce two emails.

Safety: names and addresses are never logged, only recipient ids.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import (
    NotificationError,
    OfferLetterError,
    RecipientNotFound,
    RecordUpdateError,
    ValidationError,
)
from app.core.logging import offer_context
from app.db.models import LetterState, Recipient
from app.db.repositories import RecipientRepository
from app.letters.artifact_store import ArtifactHandle, ArtifactStore
from app.letters.renderers.base import BaseRenderer, LayoutOptions
from app.letters.template_resolver import TemplateResolver
from app.notification.email_sender import EMAIL_RE, Attachment, DeliveryReceipt, EmailSender

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")

SUCCESS_MESSAGE = "delivered"


class PipelineState(str, Enum):
    START = "Start"
    TEMPLATE_RESOLVED = "TemplateResolved"
    RENDERED = "Rendered"
    STORED = "Stored"
    NOTIFIED = "Notified"
    STATE_UPDATED = "StateUpdated"
    FAILED = "Failed"


def format_issued_date(day: date) -> str:
    """``12 March 2024`` style: unpadded day, full month name, year."""
    return f"{day.day} {day:%B %Y}"


def suggested_filename(display_name: str) -> str:
    stem = _WS_RE.sub("_", display_name.strip())
    stem = "".join(c for c in stem if c.isalnum() or c in "_-.") or "Recipient"
    return f"OfferLetter_{stem}.pdf"


# ---------------------------------------------------------------------------
# Request / artifact / result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RenderRequest:
    recipient_id: str
    display_name: str
    email_address: str
    issued_date: str

    @classmethod
    def from_trigger(
        cls,
        recipient_id: str | None,
        email_address: str | None,
        display_name: str | None,
        *,
        today: date | None = None,
    ) -> RenderRequest:
        return cls(
            recipient_id=(recipient_id or "").strip(),
            display_name=(display_name or "").strip(),
            email_address=(email_address or "").strip().lower(),
            issued_date=format_issued_date(today or datetime.now(timezone.utc).date()),
        )

    def validate(self) -> None:
        for field_name in ("recipient_id", "display_name", "email_address", "issued_date"):
            if not getattr(self, field_name):
                raise ValidationError(f"{field_name} is required", field=field_name)
        if not EMAIL_RE.match(self.email_address):
            raise ValidationError("Invalid email format", field="email_address")


@dataclass(frozen=True)
class RenderedArtifact:
    content: bytes
    filename: str
    content_type: str = "application/pdf"

    @classmethod
    def for_request(cls, request: RenderRequest, content: bytes) -> RenderedArtifact:
        return cls(content=content, filename=suggested_filename(request.display_name))


@dataclass(frozen=True)
class DeliveredLetter:
    """The letter a recipient already received, held while a re-send runs."""

    handle: ArtifactHandle
    content: bytes


@dataclass
class PipelineResult:
    recipient_id: str
    state: PipelineState
    message: str
    failed_stage: PipelineState | None = None
    error: OfferLetterError | None = None
    artifact: ArtifactHandle | None = None
    receipt: DeliveryReceipt | None = None
    cleaned_up: bool = False
    restored_previous: bool = False
    transitions: list[PipelineState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.STATE_UPDATED

    @property
    def status_code(self) -> int:
        return 200 if self.ok else (self.error.http_status if self.error else 500)


# ---------------------------------------------------------------------------
# OfferLetterPipeline
# ---------------------------------------------------------------------------

class OfferLetterPipeline:
    """Resolve, render, store, email and record one offer letter."""

    def __init__(
        self,
        *,
        resolver: TemplateResolver,
        renderer: BaseRenderer,
        store: ArtifactStore,
        sender: EmailSender,
        recipients: RecipientRepository,
        layout: LayoutOptions | None = None,
        template_id: str = "offer_letter",
        organisation_name: str = "Unessa Foundation",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.resolver = resolver
        self.renderer = renderer
        self.store = store
        self.sender = sender
        self.recipients = recipients
        self.layout = layout or LayoutOptions()
        self.template_id = template_id
        self.organisation_name = organisation_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -- message content ----------------------------------------------------

    def _subject(self) -> str:
        return f"Your Offer Letter from {self.organisation_name}"

    def _body(self, request: RenderRequest) -> str:
        return (
            f"Congratulations {request.display_name}!\n\n"
            "Please find your offer letter attached.\n\n"
            f"Regards,\n{self.organisation_name}"
        )

    def _attachment(self, handle: ArtifactHandle, artifact: RenderedArtifact) -> Attachment:
        if handle.location:
            return Attachment(filename=artifact.filename, content_type=artifact.content_type, path=handle.location)
        return Attachment(filename=artifact.filename, content_type=artifact.content_type, data=artifact.content)

    # -- run ----------------------------------------------------------------

    def run(self, request: RenderRequest) -> PipelineResult:
        """Execute one invocation; never raises for pipeline failures."""
        result = PipelineResult(
            recipient_id=request.recipient_id,
            state=PipelineState.START,
            message="",
            transitions=[PipelineState.START],
        )

        try:
            request.validate()
        except ValidationError as exc:
            logger.info(
                "Rejected offer request: %s", exc.field, extra=offer_context(request.recipient_id or "-", result.state)
            )
            return self._failed(result, exc)

        def advance(state: PipelineState) -> None:
            result.state = state
            result.transitions.append(state)

        sid = request.recipient_id
        previous: DeliveredLetter | None = None
        try:
            recipient = self.recipients.find_recipient(sid)
            if recipient is None:
                raise RecipientNotFound(f"Recipient {sid} not found")
            key = str(recipient.id)
            previous = self._delivered_letter(recipient)

            content = self.resolver.resolve(
                self.template_id,
                {
                    "name": request.display_name,
                    "date": request.issued_date,
                    "organisation": self.organisation_name,
                },
            )
            advance(PipelineState.TEMPLATE_RESOLVED)

            artifact = RenderedArtifact.for_request(request, self.renderer.render(content, self.layout))
            advance(PipelineState.RENDERED)

            result.artifact = self.store.store(key, artifact.content)
            advance(PipelineState.STORED)

            result.receipt = self.sender.send(
                request.email_address,
                self._subject(),
                self._body(request),
                self._attachment(result.artifact, artifact),
            )
            advance(PipelineState.NOTIFIED)
        except OfferLetterError as exc:
            self._log_failure(result.state, sid, exc)
            self._cleanup(result, previous)
            if isinstance(exc, NotificationError) and previous is None:
                self._mark_delivery_failed(sid)
            return self._failed(result, exc)
        except Exception as exc:
            logger.exception(
                "Unexpected failure for recipient %s after %s",
                sid,
                result.state.value,
                extra=offer_context(sid, result.state),
            )
            self._cleanup(result, previous)
            return self._failed(result, OfferLetterError(f"Unexpected {type(exc).__name__}"))

        try:
            self._record(
                sid,
                letter_state=LetterState.DELIVERED,
                artifact_location=result.artifact.location,
                timestamp=self._clock(),
            )
        except (SQLAlchemyError, KeyError) as exc:
            # the email is out; the row must be reconciled, the artifact stays
            logger.error(
                "Offer letter for recipient %s was emailed but the record update failed (%s); "
                "state needs reconciliation",
                sid,
                type(exc).__name__,
                extra=offer_context(sid, PipelineState.NOTIFIED),
            )
            error = RecordUpdateError(f"Record update failed for {sid}: {exc}")
            error.__cause__ = exc
            return self._failed(result, error)

        advance(PipelineState.STATE_UPDATED)
        result.message = SUCCESS_MESSAGE
        logger.info("Offer letter delivered for recipient %s", sid, extra=offer_context(sid, result.state))
        return result

    # -- failure handling ---------------------------------------------------

    def _failed(self, result: PipelineResult, error: OfferLetterError) -> PipelineResult:
        result.failed_stage = result.state
        result.state = PipelineState.FAILED
        result.transitions.append(PipelineState.FAILED)
        result.error = error
        result.message = error.public_message
        return result

    def _log_failure(self, state: PipelineState, recipient_id: str, exc: OfferLetterError) -> None:
        logger.error(
            "Offer pipeline failed for recipient %s after %s: %s: %s",
            recipient_id,
            state.value,
            type(exc).__name__,
            exc,
            extra=offer_context(recipient_id, state),
        )

    def _delivered_letter(self, recipient: Recipient) -> DeliveredLetter | None:
        """Snapshot the letter of an already ``Delivered`` recipient, if readable."""
        if recipient.letter_state != LetterState.DELIVERED.value:
            return None
        handle = self.store.handle_for(recipient)
        if handle is None:
            return None
        try:
            return DeliveredLetter(handle=handle, content=self.store.retrieve(handle))
        except OfferLetterError as exc:
            logger.warning(
                "Previous letter for recipient %s is unreadable (%s); a failed re-send cannot restore it",
                recipient.id,
                type(exc).__name__,
                extra=offer_context(recipient.id, PipelineState.START),
            )
            return None

    def _cleanup(self, result: PipelineResult, previous: DeliveredLetter | None) -> None:
        if result.artifact is None:
            return
        try:
            if previous is not None and previous.handle == result.artifact:
                # the new artifact overwrote the delivered one; put it back
                self.store.store(result.artifact.recipient_id, previous.content)
                result.restored_previous = True
            else:
                self.store.delete(result.artifact)
            result.cleaned_up = True
        except Exception as exc:
            logger.error(
                "Cleanup of artifact for recipient %s failed: %s",
                result.recipient_id,
                type(exc).__name__,
                extra=offer_context(result.recipient_id, result.state),
            )

    def _record(self, recipient_id: str, **fields) -> None:
        with self.recipients.db.begin_nested():
            self.recipients.update_recipient(recipient_id, **fields)

    def _mark_delivery_failed(self, recipient_id: str) -> None:
        try:
            self._record(
                recipient_id,
                letter_state=LetterState.DELIVERY_FAILED,
                artifact_location=None,
                timestamp=self._clock(),
            )
        except (SQLAlchemyError, KeyError) as exc:
            logger.error(
                "Could not mark delivery failure for recipient %s: %s",
                recipient_id,
                type(exc).__name__,
                extra=offer_context(recipient_id, PipelineState.FAILED),
            )
