"""
Client payments against proposals and owner payouts through Stripe Connect.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from backend import config
from backend.core.errors import BadRequestError, NotFoundError
from backend.core.logging import LogEvent, log_event
from backend.core.utils import round_cents, to_minor_units, utcnow
from backend.database import Proposal, ProposalPayment, User
from backend.domain.enums import NotificationType, PaymentStatus, PaymentType
from backend.domain.models import PaymentIntentResult
from backend.metrics import record_webhook
from backend.payment_gateway import get_gateway
from backend.services import notifications
from backend.services.pricing import calculate_deposit, calculate_total
from backend.services.proposals import get_owned_proposal

logger = logging.getLogger(__name__)

# Terminal states a late or replayed webhook must not overwrite.
_SETTLED = (PaymentStatus.SUCCEEDED.value, PaymentStatus.REFUNDED.value)


def platform_fee_cents(amount: float) -> int:
    return int(math.floor(amount * config.PLATFORM_FEE_PCT * 100 + 0.5)) + config.PLATFORM_FEE_FIXED_CENTS


def payout_destination(db: Session, proposal: Proposal) -> Optional[str]:
    """Owner's Connect account when it can receive transfers."""
    owner = db.get(User, proposal.user_id)
    if owner is not None and owner.stripe_connect_id and owner.stripe_connect_enabled:
        return owner.stripe_connect_id
    return None


def create_payment_intent(db: Session, data: Dict[str, Any]) -> PaymentIntentResult:
    proposal = db.get(Proposal, data["proposal_id"])
    if proposal is None:
        raise NotFoundError("Proposal not found")

    pay_type = PaymentType(data.get("type") or PaymentType.DEPOSIT)
    amount = data.get("amount")
    if not amount:
        amount = calculate_deposit(proposal) if pay_type is PaymentType.DEPOSIT else calculate_total(proposal)
    if amount <= 0:
        raise BadRequestError("Invalid payment amount")

    destination = payout_destination(db, proposal)
    intent = get_gateway().create_payment_intent(
        amount_cents=to_minor_units(amount),
        currency=proposal.currency,
        metadata={
            "proposal_id": proposal.id,
            "proposal_title": proposal.title,
            "payment_type": pay_type.value,
            "user_id": proposal.user_id,
        },
        receipt_email=data["payer_email"],
        description=f"{pay_type.value.capitalize()} for: {proposal.title}",
        application_fee_amount=platform_fee_cents(amount) if destination else None,
        destination=destination,
    )

    db.add(ProposalPayment(
        proposal_id=proposal.id,
        type=pay_type.value,
        amount=amount,
        currency=proposal.currency,
        stripe_payment_intent_id=intent["id"],
        status=PaymentStatus.PENDING.value,
        payer_email=data["payer_email"],
        payer_name=data.get("payer_name"),
    ))
    db.commit()
    logger.info("Payment intent %s for proposal %s (%s %.2f)", intent["id"], proposal.id, pay_type.value, amount)
    return PaymentIntentResult(
        client_secret=intent.get("client_secret"),
        payment_intent_id=intent["id"],
        amount=amount,
        currency=proposal.currency,
    )


def _payment_by_intent(db: Session, intent_id: str) -> Optional[ProposalPayment]:
    return (
        db.query(ProposalPayment)
        .filter(ProposalPayment.stripe_payment_intent_id == intent_id)
        .first()
    )


def handle_payment_success(db: Session, intent_id: str) -> Optional[Dict[str, Any]]:
    """Mark the payment paid. Returns the owner's realtime event, if any."""
    payment = _payment_by_intent(db, intent_id)
    if payment is None:
        logger.warning("Payment record not found for intent %s", intent_id)
        return None

    if payment.status in _SETTLED:
        logger.info("Payment %s already %s; ignoring replayed success event", payment.id, payment.status)
        return None

    now = utcnow()
    payment.status = PaymentStatus.SUCCEEDED.value
    payment.paid_at = now

    proposal = db.get(Proposal, payment.proposal_id)
    if proposal is None:
        db.commit()
        return None
    if payment.type == PaymentType.DEPOSIT.value:
        proposal.deposit_paid = True
        proposal.deposit_paid_at = now
        proposal.stripe_payment_intent_id = intent_id

    payload = {
        "proposal_id": proposal.id,
        "payment_id": payment.id,
        "amount": payment.amount,
        "currency": payment.currency,
        "payment_type": payment.type,
    }
    notifications.create_notification(
        db,
        proposal.user_id,
        NotificationType.PAYMENT_RECEIVED,
        title="Payment Received!",
        message=f'{payment.payer_name or payment.payer_email} paid {payment.amount:.2f} '
                f'{payment.currency} for "{proposal.title}"',
        proposal_id=proposal.id,
        metadata=payload,
        commit=False,
    )
    db.commit()
    log_event(logger, LogEvent.PAYMENT_STATUS, proposal.id, payment_id=payment.id, status=payment.status,
              payment_type=payment.type, amount=payment.amount)
    return {"user_id": proposal.user_id, "payload": payload}


def handle_payment_failed(db: Session, intent_id: str, error: str) -> None:
    payment = _payment_by_intent(db, intent_id)
    if payment is None:
        logger.warning("Payment record not found for intent %s", intent_id)
        return
    if payment.status in _SETTLED:
        logger.info("Payment %s already %s; ignoring failure event", payment.id, payment.status)
        return
    payment.status = PaymentStatus.FAILED.value
    payment.meta = {**(payment.meta or {}), "error": error}
    db.commit()
    log_event(logger, LogEvent.PAYMENT_STATUS, payment.proposal_id, payment_id=payment.id,
              status=payment.status, error=error)


def handle_webhook_event(db: Session, event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Dispatch a decoded Stripe event. Unhandled types are acknowledged and ignored."""
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}
    record_webhook()
    if event_type == "payment_intent.succeeded":
        return handle_payment_success(db, obj.get("id"))
    if event_type == "payment_intent.payment_failed":
        error = (obj.get("last_payment_error") or {}).get("message") or "Payment failed"
        handle_payment_failed(db, obj.get("id"), error)
        return None
    logger.debug("Ignoring webhook event %s", event_type)
    return None


def list_payments(db: Session, user_id: str, proposal_id: str):
    get_owned_proposal(db, proposal_id, user_id)
    return (
        db.query(ProposalPayment)
        .filter(ProposalPayment.proposal_id == proposal_id)
        .order_by(ProposalPayment.created_at.desc())
        .all()
    )


def payment_summary(db: Session, user_id: str, proposal_id: str) -> Dict[str, Any]:
    proposal = get_owned_proposal(db, proposal_id, user_id)
    payments = list_payments(db, user_id, proposal_id)
    total = calculate_total(proposal)
    paid = sum(p.amount for p in payments if p.status == PaymentStatus.SUCCEEDED.value)
    return {
        "proposal_id": proposal.id,
        "total_value": total,
        "deposit_required": bool(proposal.deposit_required),
        "deposit_amount": calculate_deposit(proposal),
        "deposit_paid": bool(proposal.deposit_paid),
        "payments": [
            {
                "id": p.id,
                "type": p.type,
                "amount": p.amount,
                "status": p.status,
                "paid_at": p.paid_at.isoformat() if p.paid_at else None,
            }
            for p in payments
        ],
        "remaining_balance": round_cents(total - paid),
    }


def refund_payment(db: Session, payment_id: str, user_id: str, reason: Optional[str] = None) -> ProposalPayment:
    payment = db.get(ProposalPayment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found")
    proposal = db.get(Proposal, payment.proposal_id)
    if proposal is None or proposal.user_id != user_id:
        raise BadRequestError("Not authorized to refund this payment")
    if payment.status != PaymentStatus.SUCCEEDED.value:
        raise BadRequestError("Can only refund successful payments")

    if payment.stripe_payment_intent_id:
        get_gateway().refund(payment.stripe_payment_intent_id)

    payment.status = PaymentStatus.REFUNDED.value
    payment.refunded_at = utcnow()
    payment.meta = {**(payment.meta or {}), "refund_reason": reason}
    if payment.type == PaymentType.DEPOSIT.value:
        proposal.deposit_paid = False
        proposal.deposit_paid_at = None
    db.commit()
    log_event(logger, LogEvent.PAYMENT_STATUS, proposal.id, payment_id=payment.id, status=payment.status,
              reason=reason)
    return payment


# ---------------------------------------------------------------------------
# Stripe Connect
# ---------------------------------------------------------------------------

def _user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def create_connect_account(db: Session, user_id: str, country: str = "US") -> Dict[str, Any]:
    user = _user(db, user_id)
    account = get_gateway().create_account(user.email, country)
    user.stripe_connect_id = account["id"]
    user.stripe_connect_enabled = False
    db.commit()
    return {"account_id": account["id"], "enabled": False}


def create_connect_link(db: Session, user_id: str, return_url: Optional[str] = None,
                        refresh_url: Optional[str] = None) -> Dict[str, Any]:
    user = _user(db, user_id)
    if not user.stripe_connect_id:
        raise BadRequestError("Stripe Connect account not found")
    default = f"{config.FRONTEND_URL.rstrip('/')}/settings/payments"
    return get_gateway().create_account_link(
        user.stripe_connect_id,
        return_url=return_url or default,
        refresh_url=refresh_url or default,
    )


def connect_status(db: Session, user_id: str) -> Dict[str, Any]:
    user = _user(db, user_id)
    if not user.stripe_connect_id:
        return {"connected": False}

    account = get_gateway().retrieve_account(user.stripe_connect_id)
    enabled = account["charges_enabled"] and account["payouts_enabled"]
    if enabled != user.stripe_connect_enabled:
        user.stripe_connect_enabled = enabled
        db.commit()
    return {
        "connected": True,
        "enabled": enabled,
        "account_id": user.stripe_connect_id,
        "charges_enabled": account["charges_enabled"],
        "payouts_enabled": account["payouts_enabled"],
        "details_submitted": account["details_submitted"],
    }
