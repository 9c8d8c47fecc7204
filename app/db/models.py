from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Float, LargeBinary, String, func, text as sql_text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class LetterState(str, Enum):
    """Offer-letter lifecycle of a recipient.

    ``GENERATED`` is carried for records migrated from the legacy
    ``quizPassed``/``offerLetterPath`` shape, where a letter was written
    but no send date was recorded.
    """

    NOT_GENERATED = "NotGenerated"
    GENERATED = "Generated"
    DELIVERY_FAILED = "DeliveryFailed"
    DELIVERED = "Delivered"


class QuizStatus(str, Enum):
    NOT_ATTEMPTED = "notAttempted"
    PASSED = "passed"
    FAILED = "failed"


class Recipient(Base):
    """A registered fundraiser and the recipient of their offer letter.

    At most one artifact representation is authoritative at a time:
    ``artifact_path`` for the filesystem backing, ``artifact_pdf`` for the
    inline backing.
    """

    __tablename__ = "recipients"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    avatar: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    username: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=sql_text("0"))
    quiz_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=QuizStatus.NOT_ATTEMPTED.value,
        server_default=sql_text("'notAttempted'"),
    )
    has_seen_tour: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=sql_text("true")
    )
    letter_state: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
        default=LetterState.NOT_GENERATED.value,
        server_default=sql_text("'NotGenerated'"),
    )
    artifact_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    artifact_pdf: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    offer_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class Payment(Base):
    """A donation, optionally credited to the fundraiser whose referral link was used.

    ``ref_name`` holds the referrer's ``Recipient.username``; it is not a
    foreign key because donations through an unknown link are still kept.
    """

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    ref_name: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=sql_text("false"))
    address: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    upi_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )
