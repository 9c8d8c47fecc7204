#!/usr/bin/env python3
"""Seed demo data: a handful of recipients in different letter states.

Usage:
    python scripts/seed_demo.py          # uses DATABASE_URL from env / .env
    DATABASE_URL=... python scripts/seed_demo.py
"""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from app.core.settings import get_settings
from app.db.base import Base
from app.db.models import LetterState, QuizStatus, Recipient


def seed(session: Session) -> list[Recipient]:
    """Insert demo recipients and return them."""
    demo_people = [
        # (name, email, username, amount, quiz_status, letter_state)
        ("Asha Rao", "asha@example.com", "asharao4821", 0, QuizStatus.NOT_ATTEMPTED, LetterState.NOT_GENERATED),
        ("Vikram Nair", "vikram.nair@example.com", "vikramnair1093", 1500, QuizStatus.PASSED, LetterState.NOT_GENERATED),
        ("Meera Iyer", "meera.iyer@example.com", "meeraiyer7310", 4200, QuizStatus.PASSED, LetterState.NOT_GENERATED),
        ("Rohan Das", "rohan.das@example.com", "rohandas5562", 300, QuizStatus.FAILED, LetterState.NOT_GENERATED),
        ("Fatima Sheikh", "fatima.s@example.com", "fatimasheikh2284", 900, QuizStatus.PASSED, LetterState.DELIVERY_FAILED),
    ]

    recipients: list[Recipient] = []
    for name, email, username, amount, quiz, state in demo_people:
        recipient = Recipient(
            name=name,
            email=email,
            username=username,
            amount=amount,
            quiz_status=quiz.value,
            letter_state=state.value,
        )
        session.add(recipient)
        recipients.append(recipient)

    session.flush()
    return recipients


def main() -> None:
    engine = create_engine(get_settings().database_url)
    Base.metadata.create_all(bind=engine)
    with Session(engine) as session:
        recipients = seed(session)
        session.commit()
        for r in recipients:
            print(f"{r.id}  {r.username:<20} {r.letter_state}")


if __name__ == "__main__":
    main()
