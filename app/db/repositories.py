from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db import models

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id: UUID) -> ModelT | None:
        return self.db.get(self.model, entity_id)

    def list(self, limit: int = 100, offset: int = 0) -> list[ModelT]:
        stmt = select(self.model).offset(offset).limit(limit)
        return self.db.execute(stmt).scalars().all()

    def update(self, entity: ModelT, **kwargs) -> ModelT:
        for key, value in kwargs.items():
            setattr(entity, key, value)
        self.db.flush()
        return entity

    def delete(self, entity: ModelT) -> None:
        self.db.delete(entity)
        self.db.flush()


def _as_uuid(recipient_id: str | UUID) -> UUID | None:
    if isinstance(recipient_id, UUID):
        return recipient_id
    try:
        return UUID(str(recipient_id))
    except ValueError:
        return None


class RecipientRepository(BaseRepository[models.Recipient]):
    """Record store for recipients.

    ``find_recipient`` and ``update_recipient`` are the two calls the
    offer-letter pipeline makes.  Writes flush but never commit; the
    request-scoped session owns the transaction boundary.
    """

    model = models.Recipient

    def find_recipient(self, recipient_id: str | UUID) -> models.Recipient | None:
        rid = _as_uuid(recipient_id)
        if rid is None:
            return None
        return self.get(rid)

    def find_by_email(self, email: str) -> models.Recipient | None:
        stmt = select(models.Recipient).where(models.Recipient.email == email.strip().lower())
        return self.db.execute(stmt).scalar_one_or_none()

    def find_by_username(self, username: str) -> models.Recipient | None:
        stmt = select(models.Recipient).where(models.Recipient.username == username)
        return self.db.execute(stmt).scalar_one_or_none()

    def update_recipient(
        self,
        recipient_id: str | UUID,
        *,
        letter_state: models.LetterState,
        artifact_location: str | None,
        timestamp: datetime,
    ) -> models.Recipient:
        """Record the outcome of a pipeline invocation.

        ``artifact_location`` replaces ``artifact_path``; inline artifacts
        are written by the artifact store itself, so ``None`` here leaves
        ``artifact_pdf`` alone unless the state says nothing was delivered.
        """
        recipient = self.find_recipient(recipient_id)
        if recipient is None:
            raise KeyError(f"Recipient {recipient_id} not found")

        fields: dict = {
            "letter_state": letter_state.value,
            "artifact_path": artifact_location,
        }
        if letter_state is models.LetterState.DELIVERED:
            fields["generated_at"] = timestamp
            fields["offer_sent_at"] = timestamp
        elif letter_state is models.LetterState.DELIVERY_FAILED:
            fields["artifact_pdf"] = None
        return self.update(recipient, **fields)

    def credit_referrer(self, username: str, amount: float) -> models.Recipient:
        """Add *amount* to the fundraiser's raised total in SQL, not in Python."""
        recipient = self.find_by_username(username)
        if recipient is None:
            raise KeyError(f"Referrer {username} not found")
        recipient.amount = models.Recipient.amount + amount
        self.db.flush()
        return recipient


class PaymentRepository(BaseRepository[models.Payment]):
    """Donation ledger.

    ``record_payment`` writes the payment and the referrer credit inside one
    savepoint: either both land in the session or neither does.
    """

    model = models.Payment

    def __init__(self, db: Session):
        super().__init__(db)
        self.recipients = RecipientRepository(db)

    def record_payment(self, *, require_referrer: bool = True, **fields) -> tuple[models.Payment, bool]:
        """Store a payment and credit ``ref_name``; returns ``(payment, credited)``.

        With ``require_referrer`` an unknown ``ref_name`` raises ``KeyError``
        and nothing is written.  Without it the payment is kept uncredited.
        """
        ref_name = fields.get("ref_name")
        with self.db.begin_nested():
            payment = self.create(**fields)
            if not ref_name:
                return payment, False
            try:
                self.recipients.credit_referrer(ref_name, payment.amount)
            except KeyError:
                if require_referrer:
                    raise
                return payment, False
        return payment, True

    def list_donations(self, username: str | None = None) -> list[models.Payment]:
        stmt = select(models.Payment).order_by(models.Payment.created_at.desc())
        if username:
            stmt = stmt.where(models.Payment.ref_name == username)
        return self.db.execute(stmt).scalars().all()
