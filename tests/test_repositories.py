from datetime import datetime, timezone
from uuid import uuid4

import pytest

from app.db.models import LetterState
from app.db.repositories import RecipientRepository

NOW = datetime(2024, 3, 12, 9, 30, tzinfo=timezone.utc)


def test_base_crud_helpers(db_session):
    repo = RecipientRepository(db_session)

    created = repo.create(name="Meera Iyer", email="meera@example.com", username="meera7310")
    assert repo.get(created.id) is created
    assert repo.list() == [created]

    repo.update(created, amount=4200)
    assert repo.get(created.id).amount == 4200

    repo.delete(created)
    assert repo.list() == []


def test_new_recipient_defaults(db_session):
    created = RecipientRepository(db_session).create(name="Rohan Das", email="rohan@example.com", username="rohan")

    assert created.letter_state == LetterState.NOT_GENERATED.value
    assert created.quiz_status == "notAttempted"
    assert created.has_seen_tour is True
    assert created.artifact_path is None


def test_find_recipient_accepts_string_ids(db_session, recipient):
    repo = RecipientRepository(db_session)

    assert repo.find_recipient(str(recipient.id)) is recipient
    assert repo.find_recipient(recipient.id) is recipient
    assert repo.find_recipient(str(uuid4())) is None
    assert repo.find_recipient("not-a-uuid") is None


def test_find_by_email_is_case_insensitive(db_session, recipient):
    repo = RecipientRepository(db_session)

    assert repo.find_by_email("  ASHA@Example.com ") is recipient
    assert repo.find_by_email("nobody@example.com") is None
    assert repo.find_by_username(recipient.username) is recipient


def test_update_recipient_marks_delivery(db_session, recipient):
    repo = RecipientRepository(db_session)

    repo.update_recipient(
        str(recipient.id),
        letter_state=LetterState.DELIVERED,
        artifact_location="/srv/offers/offer-1.pdf",
        timestamp=NOW,
    )

    assert recipient.letter_state == "Delivered"
    assert recipient.artifact_path == "/srv/offers/offer-1.pdf"
    assert recipient.generated_at == NOW
    assert recipient.offer_sent_at == NOW


def test_update_recipient_delivery_failure_clears_artifacts(db_session, recipient):
    repo = RecipientRepository(db_session)
    repo.update(recipient, artifact_pdf=b"%PDF", artifact_path="/srv/offers/offer-1.pdf")

    repo.update_recipient(recipient.id, letter_state=LetterState.DELIVERY_FAILED, artifact_location=None, timestamp=NOW)

    assert recipient.letter_state == "DeliveryFailed"
    assert recipient.artifact_path is None
    assert recipient.artifact_pdf is None
    assert recipient.offer_sent_at is None


def test_update_recipient_unknown_id(db_session):
    with pytest.raises(KeyError):
        RecipientRepository(db_session).update_recipient(
            str(uuid4()), letter_state=LetterState.DELIVERED, artifact_location=None, timestamp=NOW
        )
