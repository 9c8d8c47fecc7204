"""Referral payment ledger routes.

POST /api/store-payment     -- record a donation and credit the referrer
GET  /api/donations         -- list donations, newest first, optionally per referrer
POST /save-payment          -- checkout callback; credits the referrer when it exists

Gateway order creation and signature verification happen elsewhere; these
routes only see payments the gateway already captured.

Safety: donor names and addresses are never logged, only payment ids and
referrer usernames.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.api.deps import get_payment_repository
from app.db.models import Payment
from app.db.repositories import PaymentRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

IST = timezone(timedelta(hours=5, minutes=30), "IST")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class StorePaymentBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    amount: float | str | None = None
    order_id: str | None = Field(default=None, alias="orderId")
    payment_id: str | None = Field(default=None, alias="paymentId")
    upi_id: str | None = Field(default=None, alias="upiId")
    refname: str | None = None


class SavePaymentBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ref_name: str | None = Field(default=None, alias="refName")
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    amount: float | str | None = None
    anonymous: bool = False
    address: str | None = None
    razorpay_order_id: str | None = None
    razorpay_payment_id: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def format_ist_date(moment: datetime) -> str:
    """``dd-mm-yyyy`` in India Standard Time; naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(IST).strftime("%d-%m-%Y")


def parse_amount(raw: float | str | None) -> float | None:
    """A finite, non-negative amount, or ``None``."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value) or value < 0:
        return None
    return value


def _donation(p: Payment) -> dict:
    return {
        "id": str(p.id),
        "refName": p.ref_name,
        "name": p.name,
        "email": p.email,
        "phone": p.phone,
        "amount": p.amount,
        "anonymous": p.anonymous,
        "address": p.address,
        "orderId": p.order_id,
        "paymentId": p.payment_id,
        "upiId": p.upi_id,
        "createdAt": p.created_at.isoformat(),
        "formattedDate": format_ist_date(p.created_at),
    }


def _ledger_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("/api/donations", summary="List donations")
def list_donations(username: str | None = None, payments: PaymentRepository = Depends(get_payment_repository)):
    return [_donation(p) for p in payments.list_donations(username)]


@router.post("/api/store-payment", summary="Record a donation and credit the referrer")
def store_payment(body: StorePaymentBody, payments: PaymentRepository = Depends(get_payment_repository)):
    if not (body.name and body.email and body.amount and body.order_id and body.payment_id):
        return _ledger_error(400, "Missing required fields")
    amount = parse_amount(body.amount)
    if amount is None:
        return _ledger_error(400, "Invalid amount")

    try:
        payment, _ = payments.record_payment(
            name=body.name,
            email=body.email,
            phone=body.phone,
            amount=amount,
            order_id=body.order_id,
            payment_id=body.payment_id,
            upi_id=body.upi_id,
            ref_name=body.refname or None,
        )
    except KeyError:
        logger.info("Rejected payment %s: referrer %s not found", body.payment_id, body.refname)
        return _ledger_error(404, "Referred user not found")
    except IntegrityError:
        logger.info("Rejected payment %s: already recorded", body.payment_id)
        return _ledger_error(409, "Payment already recorded")
    except SQLAlchemyError:
        logger.exception("Storing payment %s failed", body.payment_id)
        return _ledger_error(500, "Server error")

    logger.info("Stored payment %s for referrer %s", payment.payment_id, payment.ref_name or "-")
    return {"success": True, "message": "Payment stored and user updated"}


@router.post("/save-payment", status_code=201, summary="Record a captured checkout payment")
def save_payment(body: SavePaymentBody, payments: PaymentRepository = Depends(get_payment_repository)):
    amount = parse_amount(body.amount)
    if not (body.name and body.email) or amount is None:
        return JSONResponse(status_code=400, content={"success": False, "error": "Missing required fields"})

    try:
        payment, credited = payments.record_payment(
            require_referrer=False,
            ref_name=body.ref_name or None,
            name=body.name,
            email=body.email,
            phone=body.phone,
            amount=amount,
            anonymous=body.anonymous,
            address=body.address,
            order_id=body.razorpay_order_id,
            payment_id=body.razorpay_payment_id,
        )
    except IntegrityError:
        logger.info("Ignored payment %s: already recorded", body.razorpay_payment_id)
        return JSONResponse(status_code=409, content={"success": False, "error": "Payment already recorded"})
    except SQLAlchemyError:
        logger.exception("Saving payment %s failed", body.razorpay_payment_id)
        return JSONResponse(status_code=500, content={"success": False, "error": "Server error"})

    if payment.ref_name and not credited:
        logger.warning("Payment %s names unknown referrer %s; saved uncredited", payment.payment_id, payment.ref_name)
    return {"success": True, "message": "Payment saved successfully!"}
