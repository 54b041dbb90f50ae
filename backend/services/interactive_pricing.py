"""
Client-configured pricing on the public proposal page.

The client ticks OPTIONAL items and picks quantities for QUANTITY items;
the proposal is re-priced from those choices on every change.  Selections
are not stored.  When a deposit is due, the pending deposit payment intent
is moved to the new amount so checkout always charges what the client saw.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from backend.core.errors import ForbiddenError, PaymentGatewayError
from backend.core.logging import LogEvent, log_event
from backend.core.utils import round_cents, to_minor_units
from backend.database import Proposal, ProposalPayment
from backend.domain.enums import BlockType, PaymentStatus, PaymentType, PricingItemType, ProposalStatus
from backend.domain.models import PricedLine, PricingBreakdown
from backend.payment_gateway import get_gateway
from backend.services.payments import payout_destination, platform_fee_cents
from backend.services.pricing import deposit_for_total, max_quantity, min_quantity, tax_on
from backend.services.proposals import get_by_slug

logger = logging.getLogger(__name__)


def price_lines(proposal: Any, selections: Mapping[str, Mapping[str, Any]]) -> List[PricedLine]:
    lines = []
    for block in proposal.blocks or []:
        if block.type != BlockType.PRICING_TABLE.value:
            continue
        for item in block.pricing_items or []:
            choice = selections.get(item.id) or {}
            selected, quantity = True, 1
            if item.type == PricingItemType.OPTIONAL.value:
                selected = bool(choice.get("selected"))
            elif item.type == PricingItemType.QUANTITY.value:
                wanted = choice.get("quantity") or min_quantity(item)
                quantity = max(min_quantity(item), min(max_quantity(item), int(wanted)))
            price = item.price or 0.0
            lines.append(PricedLine(
                id=item.id,
                name=item.name,
                price=price,
                quantity=quantity,
                selected=selected,
                line_total=round_cents(price * quantity) if selected else 0.0,
            ))
    return lines


def price_selections(proposal: Any, selections: Iterable[Mapping[str, Any]]) -> PricingBreakdown:
    """Price ``proposal`` for the given ``{"item_id", "selected", "quantity"}`` choices.

    Unknown item ids are ignored; REQUIRED items are always charged once.
    """
    by_item = {choice["item_id"]: choice for choice in selections or []}
    lines = price_lines(proposal, by_item)
    sub = round_cents(sum(line.line_total for line in lines))
    tax = round_cents(tax_on(proposal, sub))
    total = round_cents(sub + tax)
    return PricingBreakdown(
        subtotal=sub,
        tax_amount=tax,
        total=total,
        deposit_amount=deposit_for_total(proposal, total),
        currency=proposal.currency,
        line_items=lines,
    )


def pricing_breakdown(db: Session, slug: str) -> PricingBreakdown:
    """Initial prices before the client changes anything; no payment side effects."""
    return price_selections(get_by_slug(db, slug), [])


def calculate_pricing(db: Session, slug: str,
                      selections: Iterable[Mapping[str, Any]]) -> Tuple[Proposal, PricingBreakdown]:
    proposal = get_by_slug(db, slug)
    if proposal.locked:
        raise ForbiddenError("Proposal has already been finalised")
    if proposal.status == ProposalStatus.DECLINED.value:
        raise ForbiddenError("Proposal has been declined")

    result = price_selections(proposal, selections)
    if proposal.deposit_required and not proposal.deposit_paid and result.deposit_amount > 0:
        try:
            result.payment_intent_client_secret = _sync_deposit_intent(db, proposal, result.deposit_amount)
        except PaymentGatewayError as exc:
            db.rollback()
            logger.warning("Deposit intent for proposal %s not updated: %s", proposal.id, exc.detail)
    log_event(logger, LogEvent.PRICING_UPDATED, proposal.id, total=result.total,
              deposit_amount=result.deposit_amount,
              selected_items=sum(1 for line in result.line_items if line.selected))
    return proposal, result


def _pending_deposit(db: Session, proposal_id: str) -> Optional[ProposalPayment]:
    return (
        db.query(ProposalPayment)
        .filter(
            ProposalPayment.proposal_id == proposal_id,
            ProposalPayment.type == PaymentType.DEPOSIT.value,
            ProposalPayment.status == PaymentStatus.PENDING.value,
        )
        .order_by(ProposalPayment.created_at.desc())
        .first()
    )


def _sync_deposit_intent(db: Session, proposal: Proposal, amount: float) -> Optional[str]:
    """Point the pending deposit intent at ``amount``; create one if none is open."""
    gateway = get_gateway()
    metadata: Dict[str, str] = {
        "proposal_id": proposal.id,
        "proposal_slug": proposal.slug,
        "payment_type": PaymentType.DEPOSIT.value,
        "user_id": proposal.user_id,
    }

    pending = _pending_deposit(db, proposal.id)
    if pending is not None and pending.stripe_payment_intent_id:
        intent = gateway.update_payment_intent(pending.stripe_payment_intent_id, to_minor_units(amount), metadata)
        pending.amount = amount
        db.commit()
        logger.info("Deposit intent %s for proposal %s moved to %.2f", intent["id"], proposal.id, amount)
        return intent.get("client_secret")

    destination = payout_destination(db, proposal)
    intent = gateway.create_payment_intent(
        amount_cents=to_minor_units(amount),
        currency=proposal.currency,
        metadata=metadata,
        receipt_email=proposal.client_email,
        description=f"Deposit for: {proposal.title}",
        application_fee_amount=platform_fee_cents(amount) if destination else None,
        destination=destination,
    )
    db.add(ProposalPayment(
        proposal_id=proposal.id,
        type=PaymentType.DEPOSIT.value,
        amount=amount,
        currency=proposal.currency,
        stripe_payment_intent_id=intent["id"],
        status=PaymentStatus.PENDING.value,
        payer_email=proposal.client_email,
        payer_name=proposal.client_name,
    ))
    db.commit()
    logger.info("Deposit intent %s opened for proposal %s (%.2f)", intent["id"], proposal.id, amount)
    return intent.get("client_secret")
