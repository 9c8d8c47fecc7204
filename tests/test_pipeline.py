"""Tests for app/letters/pipeline.py.

Renderer and SMTP transport are test doubles; the template, artifact store
and recipient repository are real.
"""
from __future__ import annotations

import smtplib
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import (
    OfferLetterError,
    RecipientNotFound,
    RecordUpdateError,
    RenderEngineUnavailable,
    RenderTimeout,
    StorageError,
    TemplateNotFound,
    TransportUnavailable,
    ValidationError,
)
from app.core.settings import Settings
from app.db.repositories import RecipientRepository
from app.letters.artifact_store import FilesystemArtifactStore, InlineArtifactStore
from app.letters.pipeline import (
    OfferLetterPipeline,
    PipelineState,
    RenderRequest,
    format_issued_date,
    suggested_filename,
)
from app.letters.template_resolver import TemplateResolver
from conftest import FakeRenderer

FIXED_NOW = datetime(2024, 3, 12, 9, 30, tzinfo=timezone.utc)
TEMPLATE_DIR = Settings().template_dir


# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------

@pytest.fixture()
def store(artifact_dir) -> FilesystemArtifactStore:
    return FilesystemArtifactStore(artifact_dir)


def _pipeline(db_session, renderer, sender, store, **kwargs) -> OfferLetterPipeline:
    kwargs.setdefault("recipients", RecipientRepository(db_session))
    return OfferLetterPipeline(
        resolver=TemplateResolver(TEMPLATE_DIR),
        renderer=renderer,
        store=store,
        sender=sender,
        clock=lambda: FIXED_NOW,
        **kwargs,
    )


def _request(recipient, **overrides) -> RenderRequest:
    values = {
        "recipient_id": str(recipient.id),
        "display_name": "Asha Rao",
        "email_address": "asha@example.com",
        "issued_date": "12 March 2024",
    }
    values.update(overrides)
    return RenderRequest(**values)


def _stored_files(store: FilesystemArtifactStore) -> list[Path]:
    return list(store.root.glob("*")) if store.root.exists() else []


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def test_format_issued_date():
    assert format_issued_date(date(2024, 3, 12)) == "12 March 2024"
    assert format_issued_date(date(2024, 1, 1)) == "1 January 2024"


def test_suggested_filename():
    assert suggested_filename("  Asha   Rao ") == "OfferLetter_Asha_Rao.pdf"
    assert suggested_filename("!!!") == "OfferLetter_Recipient.pdf"


def test_request_from_trigger_normalises_input():
    request = RenderRequest.from_trigger(" 42 ", " Asha@Example.COM ", "  Asha Rao ", today=date(2024, 3, 12))

    assert request == RenderRequest("42", "Asha Rao", "asha@example.com", "12 March 2024")


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("recipient_id", ""),
        ("display_name", ""),
        ("email_address", ""),
        ("email_address", "asha-at-example"),
        ("issued_date", ""),
    ],
)
def test_request_validation(recipient, field, value):
    with pytest.raises(ValidationError) as exc_info:
        _request(recipient, **{field: value}).validate()

    assert exc_info.value.field == field


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_delivers_letter_and_marks_recipient(db_session, recipient, fake_renderer, email_sender, smtp_transport, store):
    result = _pipeline(db_session, fake_renderer, email_sender, store).run(_request(recipient))

    assert result.ok
    assert result.status_code == 200
    assert result.message == "delivered"
    assert result.transitions == [
        PipelineState.START,
        PipelineState.TEMPLATE_RESOLVED,
        PipelineState.RENDERED,
        PipelineState.STORED,
        PipelineState.NOTIFIED,
        PipelineState.STATE_UPDATED,
    ]

    rendered = fake_renderer.calls[0]
    assert "Asha Rao" in rendered
    assert "12 March 2024" in rendered
    assert "{{" not in rendered

    stored = Path(result.artifact.location)
    assert stored.name == f"offer-{recipient.id}.pdf"
    pdf = stored.read_bytes()
    assert pdf.startswith(b"%PDF")
    assert b"Asha Rao" in pdf

    smtp_transport.send_message.assert_called_once()
    message, to_addrs = smtp_transport.send_message.call_args.args
    assert to_addrs == ["asha@example.com"]
    assert message["Subject"] == "Your Offer Letter from Unessa Foundation"
    body, attachment = message.get_payload()
    assert "Congratulations Asha Rao!" in body.get_payload(decode=True).decode("utf-8")
    assert attachment.get_filename() == "OfferLetter_Asha_Rao.pdf"
    assert attachment.get_payload(decode=True) == pdf

    assert recipient.letter_state == "Delivered"
    assert recipient.artifact_path == str(stored)
    assert recipient.offer_sent_at == FIXED_NOW
    assert recipient.generated_at == FIXED_NOW


def test_inline_backing_attaches_bytes(db_session, recipient, fake_renderer, email_sender, smtp_transport):
    store = InlineArtifactStore(db_session)

    result = _pipeline(db_session, fake_renderer, email_sender, store).run(_request(recipient))

    assert result.ok
    assert result.artifact.location is None
    assert recipient.artifact_pdf.startswith(b"%PDF")
    attachment = smtp_transport.send_message.call_args.args[0].get_payload()[1]
    assert attachment.get_payload(decode=True) == recipient.artifact_pdf


def test_running_twice_sends_twice(db_session, recipient, fake_renderer, email_sender, smtp_transport, store):
    pipeline = _pipeline(db_session, fake_renderer, email_sender, store)

    first = pipeline.run(_request(recipient))
    second = pipeline.run(_request(recipient))

    assert first.ok and second.ok
    assert smtp_transport.send_message.call_count == 2
    assert store.retrieve(second.artifact).startswith(b"%PDF")
    assert recipient.letter_state == "Delivered"


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

def test_invalid_request_touches_nothing(db_session, fake_renderer, email_sender, smtp_transport, store):
    recipients = MagicMock(spec=RecipientRepository)
    pipeline = _pipeline(db_session, fake_renderer, email_sender, store, recipients=recipients)

    result = pipeline.run(RenderRequest("42", "", "asha@example.com", "12 March 2024"))

    assert result.state is PipelineState.FAILED
    assert result.failed_stage is PipelineState.START
    assert result.status_code == 400
    assert isinstance(result.error, ValidationError)
    assert result.error.field == "display_name"
    assert fake_renderer.calls == []
    recipients.find_recipient.assert_not_called()
    smtp_transport.send_message.assert_not_called()
    assert _stored_files(store) == []


def test_unknown_recipient(db_session, fake_renderer, email_sender, smtp_transport, store):
    result = _pipeline(db_session, fake_renderer, email_sender, store).run(
        RenderRequest("6f1c2a9e-0000-4000-8000-000000000000", "Asha Rao", "asha@example.com", "12 March 2024")
    )

    assert isinstance(result.error, RecipientNotFound)
    assert result.status_code == 404
    assert result.message == "User not found"
    assert fake_renderer.calls == []
    smtp_transport.send_message.assert_not_called()


def test_missing_template(db_session, recipient, fake_renderer, email_sender, smtp_transport, store):
    pipeline = _pipeline(db_session, fake_renderer, email_sender, store, template_id="does_not_exist")

    result = pipeline.run(_request(recipient))

    assert isinstance(result.error, TemplateNotFound)
    assert result.status_code == 500
    assert fake_renderer.calls == []
    assert recipient.letter_state == "NotGenerated"


@pytest.mark.parametrize("error", [RenderEngineUnavailable("no engine"), RenderTimeout("too slow")])
def test_render_failure_leaves_no_trace(db_session, recipient, email_sender, smtp_transport, store, error):
    result = _pipeline(db_session, FakeRenderer(error=error), email_sender, store).run(_request(recipient))

    assert result.state is PipelineState.FAILED
    assert result.failed_stage is PipelineState.TEMPLATE_RESOLVED
    assert result.error is error
    assert result.message == "Failed to send offer letter."
    assert result.artifact is None
    smtp_transport.send_message.assert_not_called()
    assert _stored_files(store) == []
    assert recipient.letter_state == "NotGenerated"
    assert recipient.offer_sent_at is None


def test_send_failure_removes_stored_artifact(db_session, recipient, fake_renderer, email_sender, smtp_transport, store):
    smtp_transport.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")

    result = _pipeline(db_session, fake_renderer, email_sender, store).run(_request(recipient))

    assert isinstance(result.error, TransportUnavailable)
    assert result.failed_stage is PipelineState.STORED
    assert result.cleaned_up is True
    assert not Path(result.artifact.location).exists()
    assert _stored_files(store) == []
    assert recipient.letter_state == "DeliveryFailed"
    assert recipient.artifact_path is None
    assert recipient.offer_sent_at is None


def test_send_failure_clears_inline_artifact(db_session, recipient, fake_renderer, email_sender, smtp_transport):
    smtp_transport.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")

    result = _pipeline(db_session, fake_renderer, email_sender, InlineArtifactStore(db_session)).run(
        _request(recipient)
    )

    assert result.cleaned_up is True
    assert recipient.artifact_pdf is None
    assert recipient.letter_state == "DeliveryFailed"


def test_cleanup_failure_keeps_original_error(db_session, recipient, fake_renderer, email_sender, smtp_transport, store):
    smtp_transport.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")

    with patch.object(FilesystemArtifactStore, "delete", side_effect=OSError("read-only")):
        result = _pipeline(db_session, fake_renderer, email_sender, store).run(_request(recipient))

    assert isinstance(result.error, TransportUnavailable)
    assert result.cleaned_up is False


def test_unexpected_error_is_wrapped(db_session, recipient, email_sender, smtp_transport, store):
    result = _pipeline(db_session, FakeRenderer(error=RuntimeError("boom")), email_sender, store).run(
        _request(recipient)
    )

    assert type(result.error) is OfferLetterError
    assert result.status_code == 500
    assert "boom" not in result.message
    smtp_transport.send_message.assert_not_called()


def test_record_update_failure_after_send(db_session, recipient, fake_renderer, email_sender, smtp_transport, store):
    request = _request(recipient)

    with patch.object(RecipientRepository, "update_recipient", side_effect=SQLAlchemyError("db down")):
        result = _pipeline(db_session, fake_renderer, email_sender, store).run(request)

    assert isinstance(result.error, RecordUpdateError)
    assert result.failed_stage is PipelineState.NOTIFIED
    assert result.status_code == 500
    assert result.message == "Offer letter sent, but the user record could not be updated."
    smtp_transport.send_message.assert_called_once()
    assert Path(result.artifact.location).exists()
    assert result.cleaned_up is False


def test_record_update_failure_keeps_inline_artifact(db_session, recipient, fake_renderer, email_sender, smtp_transport):
    db_session.commit()

    with patch.object(RecipientRepository, "update_recipient", side_effect=SQLAlchemyError("db down")):
        result = _pipeline(db_session, fake_renderer, email_sender, InlineArtifactStore(db_session)).run(
            _request(recipient)
        )
    db_session.commit()
    db_session.expire_all()

    assert isinstance(result.error, RecordUpdateError)
    smtp_transport.send_message.assert_called_once()
    stored = RecipientRepository(db_session).find_recipient(recipient.id)
    assert stored.artifact_pdf is not None
    assert stored.artifact_pdf.startswith(b"%PDF")
    assert stored.letter_state == "NotGenerated"


# ---------------------------------------------------------------------------
# Re-sends
# ---------------------------------------------------------------------------

def test_failed_resend_restores_delivered_letter(db_session, recipient, fake_renderer, email_sender, smtp_transport, store):
    pipeline = _pipeline(db_session, fake_renderer, email_sender, store)
    first = pipeline.run(_request(recipient))
    delivered = Path(first.artifact.location).read_bytes()

    smtp_transport.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")
    second = pipeline.run(_request(recipient, issued_date="13 March 2024"))

    assert isinstance(second.error, TransportUnavailable)
    assert second.restored_previous is True
    assert second.cleaned_up is True
    assert Path(first.artifact.location).read_bytes() == delivered
    assert b"12 March 2024" in delivered
    assert _stored_files(store) == [Path(first.artifact.location)]
    assert recipient.letter_state == "Delivered"
    assert recipient.artifact_path == first.artifact.location
    assert recipient.offer_sent_at == FIXED_NOW


def test_failed_resend_restores_inline_letter(db_session, recipient, fake_renderer, email_sender, smtp_transport):
    store = InlineArtifactStore(db_session)
    pipeline = _pipeline(db_session, fake_renderer, email_sender, store)
    pipeline.run(_request(recipient))
    delivered = bytes(recipient.artifact_pdf)

    smtp_transport.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")
    second = pipeline.run(_request(recipient, issued_date="13 March 2024"))

    assert second.restored_previous is True
    assert recipient.artifact_pdf == delivered
    assert recipient.letter_state == "Delivered"


def test_failed_first_send_does_not_restore(db_session, recipient, fake_renderer, email_sender, smtp_transport, store):
    smtp_transport.send_message.side_effect = smtplib.SMTPServerDisconnected("gone")

    result = _pipeline(db_session, fake_renderer, email_sender, store).run(_request(recipient))

    assert result.restored_previous is False
    assert recipient.letter_state == "DeliveryFailed"


def test_artifact_vanishing_before_send_is_a_server_error(
    db_session, recipient, fake_renderer, email_sender, smtp_transport, store
):
    original_store = FilesystemArtifactStore.store

    def store_then_lose(self, recipient_id, data):
        handle = original_store(self, recipient_id, data)
        Path(handle.location).unlink()
        return handle

    with patch.object(FilesystemArtifactStore, "store", store_then_lose):
        result = _pipeline(db_session, fake_renderer, email_sender, store).run(_request(recipient))

    assert isinstance(result.error, StorageError)
    assert result.status_code == 500
    assert result.message == "Failed to send offer letter."
    smtp_transport.send_message.assert_not_called()
