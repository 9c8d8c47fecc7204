"""Recipient (fundraiser) routes.

POST /api/users/check-user              -- does an email have an account
POST /api/users/register                -- create a recipient, fire the webhook
GET  /api/users/get-user/{email}        -- public profile
POST /api/users/quiz-status             -- set quiz status
GET  /api/users/quiz-status/{email}     -- read quiz status
POST /api/users/mark-tour-seen          -- dashboard tour flag

Safety: email addresses are never logged, only recipient ids.
"""
from __future__ import annotations

import logging
import random

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from app.api.deps import get_recipient_repository, get_webhook_notifier
from app.db.models import QuizStatus, Recipient
from app.db.repositories import RecipientRepository
from app.notification.email_sender import EMAIL_RE
from app.notification.webhook import WebhookNotifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["recipients"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class EmailBody(BaseModel):
    email: str | None = None


class RegisterBody(BaseModel):
    name: str | None = None
    email: str | None = None
    number: str | None = None
    avatar: str | None = None
    username: str | None = None


class QuizStatusBody(BaseModel):
    email: str
    status: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def generate_username(name: str) -> str:
    base = "".join(name.lower().split())
    return f"{base}{random.randint(1000, 9999)}"


def _public_profile(r: Recipient) -> dict:
    return {
        "id": str(r.id),
        "name": r.name,
        "username": r.username,
        "avatar": r.avatar,
        "amount": r.amount,
        "quizStatus": r.quiz_status,
        "letterState": r.letter_state,
        "hasSeenTour": r.has_seen_tour,
    }


def _field_error(message: str, field: str) -> JSONResponse:
    """Registration rejections name the offending field: ``{"error", "field"}``."""
    return JSONResponse(status_code=400, content={"error": message, "field": field})


def _get_by_email_or_404(recipients: RecipientRepository, email: str) -> Recipient:
    recipient = recipients.find_by_email(email)
    if recipient is None:
        raise HTTPException(status_code=404, detail="User not found")
    return recipient


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("/check-user", summary="Check whether a user exists")
def check_user(body: EmailBody, recipients: RecipientRepository = Depends(get_recipient_repository)):
    if not body.email:
        raise HTTPException(status_code=400, detail="Email is required")
    return {"exists": recipients.find_by_email(body.email) is not None}


@router.post("/register", status_code=201, summary="Register a fundraiser")
def register(
    body: RegisterBody,
    background_tasks: BackgroundTasks,
    recipients: RecipientRepository = Depends(get_recipient_repository),
    notifier: WebhookNotifier = Depends(get_webhook_notifier),
):
    if not body.email:
        return _field_error("Email is required", "email")
    if not body.name or not body.name.strip():
        return _field_error("Name is required", "name")

    email = body.email.strip().lower()
    if not EMAIL_RE.match(email):
        return _field_error("Invalid email format", "email")

    username = (body.username or "").strip() or generate_username(body.name)
    if recipients.find_by_email(email) is not None:
        return _field_error("email already exists", "email")
    if recipients.find_by_username(username) is not None:
        return _field_error("username already exists", "username")

    try:
        recipient = recipients.create(
            name=body.name.strip(),
            email=email,
            number=body.number.strip() if body.number else None,
            avatar=body.avatar,
            username=username,
        )
    except IntegrityError:
        recipients.db.rollback()
        return _field_error("User already exists", "email")

    logger.info("Registered recipient %s", recipient.id)
    background_tasks.add_task(
        notifier.deliver,
        {"name": recipient.name, "email": recipient.email, "number": recipient.number},
    )
    return {
        "success": True,
        "message": "User registered successfully",
        "user": {**_public_profile(recipient), "email": recipient.email},
    }


@router.get("/get-user/{email}", summary="Fetch a user's public profile")
def get_user(email: str, recipients: RecipientRepository = Depends(get_recipient_repository)):
    return _public_profile(_get_by_email_or_404(recipients, email))


@router.post("/quiz-status", summary="Update quiz status")
def update_quiz_status(body: QuizStatusBody, recipients: RecipientRepository = Depends(get_recipient_repository)):
    valid = {s.value for s in QuizStatus}
    if body.status not in valid:
        raise HTTPException(status_code=400, detail="Invalid status")
    recipient = _get_by_email_or_404(recipients, body.email)
    recipients.update(recipient, quiz_status=body.status)
    return {"success": True, "quizStatus": recipient.quiz_status}


@router.get("/quiz-status/{email}", summary="Read quiz status")
def get_quiz_status(email: str, recipients: RecipientRepository = Depends(get_recipient_repository)):
    return {"quizStatus": _get_by_email_or_404(recipients, email).quiz_status}


@router.post("/mark-tour-seen", summary="Mark the dashboard tour as seen")
def mark_tour_seen(body: EmailBody, recipients: RecipientRepository = Depends(get_recipient_repository)):
    if not body.email:
        raise HTTPException(status_code=400, detail="Email is required")
    recipient = _get_by_email_or_404(recipients, body.email)
    recipients.update(recipient, has_seen_tour=True)
    return {"success": True}
