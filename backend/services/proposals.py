"""
Proposal lifecycle: authoring, sending, and the public approve/decline flow.

Status moves DRAFT -> SENT -> VIEWED -> SIGNED | DECLINED.  Approving
locks the proposal; locked proposals reject every further edit.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from backend import config
from backend.core.constants import SLUG_BYTES
from backend.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from backend.core.logging import LogEvent, log_event
from backend.core.utils import utcnow
from backend.database import (
    PricingItem,
    Proposal,
    ProposalBlock,
    ProposalEngagement,
    ProposalInteraction,
    ProposalPayment,
    ProposalScrollTracking,
    ProposalViewSession,
)
from backend.domain.enums import NotificationType, Permission, ProposalStatus
from backend.services import notifications, teams
from backend.services.pricing import calculate_total

logger = logging.getLogger(__name__)

SCALAR_FIELDS = (
    "title",
    "description",
    "client_name",
    "client_email",
    "currency",
    "tax_rate",
    "deposit_required",
    "deposit_amount",
    "deposit_percentage",
)


def new_slug() -> str:
    return secrets.token_urlsafe(SLUG_BYTES)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _build_blocks(blocks: Iterable[Dict[str, Any]]) -> List[ProposalBlock]:
    built = []
    for index, data in enumerate(blocks or []):
        block = ProposalBlock(
            type=_enum_value(data["type"]),
            order=data.get("order") if data.get("order") is not None else index,
            content=data.get("content") or {},
        )
        for position, item in enumerate(data.get("pricing_items") or []):
            low = max(1, int(item.get("min_quantity") or 1))
            block.pricing_items.append(PricingItem(
                name=item["name"],
                description=item.get("description"),
                price=float(item.get("price") or 0.0),
                type=_enum_value(item.get("type") or "REQUIRED"),
                order=position,
                min_quantity=low,
                max_quantity=max(low, int(item.get("max_quantity") or 100)),
            ))
        built.append(block)
    return built


# ---------------------------------------------------------------------------
# Lookup / access
# ---------------------------------------------------------------------------

def _load(db: Session, proposal_id: str) -> Proposal:
    proposal = db.get(Proposal, proposal_id)
    if proposal is None:
        raise NotFoundError("Proposal not found")
    return proposal


def get_owned_proposal(db: Session, proposal_id: str, user_id: str) -> Proposal:
    proposal = _load(db, proposal_id)
    if proposal.user_id != user_id:
        raise ForbiddenError("You do not have access to this proposal")
    return proposal


def get_accessible_proposal(db: Session, proposal_id: str, user_id: str,
                            permission: Permission = Permission.VIEW_ANALYTICS) -> Proposal:
    """The proposal when ``user_id`` owns it or holds ``permission`` on its team."""
    proposal = _load(db, proposal_id)
    if proposal.user_id == user_id:
        return proposal
    if proposal.team_id and teams.check_permission(db, proposal.team_id, user_id, permission):
        return proposal
    raise ForbiddenError("You do not have access to this proposal")


def get_by_slug(db: Session, slug: str) -> Proposal:
    proposal = db.query(Proposal).filter(Proposal.slug == slug).first()
    if proposal is None:
        raise NotFoundError("Proposal not found")
    return proposal


# ---------------------------------------------------------------------------
# Authoring
# ---------------------------------------------------------------------------

def create_proposal(db: Session, user_id: str, data: Dict[str, Any]) -> Proposal:
    team_id = data.get("team_id")
    if team_id:
        teams.require_permission(db, team_id, user_id, Permission.CREATE_PROPOSALS)

    proposal = Proposal(
        user_id=user_id,
        team_id=team_id,
        slug=new_slug(),
        status=ProposalStatus.DRAFT.value,
        currency=(data.get("currency") or config.DEFAULT_CURRENCY).upper(),
    )
    for name in SCALAR_FIELDS:
        if name != "currency" and data.get(name) is not None:
            setattr(proposal, name, data[name])
    proposal.blocks = _build_blocks(data.get("blocks") or [])

    db.add(proposal)
    db.commit()
    db.refresh(proposal)
    logger.info("Proposal %s created by %s", proposal.id, user_id)
    return proposal


def list_proposals(db: Session, user_id: str, status: Optional[str] = None) -> List[Proposal]:
    q = db.query(Proposal).filter(Proposal.user_id == user_id)
    if status:
        q = q.filter(Proposal.status == ProposalStatus(status).value)
    return q.order_by(Proposal.created_at.desc()).all()


def update_proposal(db: Session, proposal_id: str, user_id: str, data: Dict[str, Any]) -> Proposal:
    proposal = get_owned_proposal(db, proposal_id, user_id)
    if proposal.locked:
        raise ForbiddenError("Proposal is locked and cannot be edited")

    for name in SCALAR_FIELDS:
        if name in data and data[name] is not None:
            value = data[name].upper() if name == "currency" else data[name]
            setattr(proposal, name, value)
    if data.get("blocks") is not None:
        proposal.blocks = _build_blocks(data["blocks"])

    proposal.updated_at = utcnow()
    db.commit()
    db.refresh(proposal)
    return proposal


def delete_proposal(db: Session, proposal_id: str, user_id: str) -> None:
    proposal = get_owned_proposal(db, proposal_id, user_id)
    payments = db.query(ProposalPayment).filter(ProposalPayment.proposal_id == proposal_id).count()
    if payments:
        raise ConflictError("Proposal has payment records and cannot be deleted")
    for model in (ProposalInteraction, ProposalScrollTracking, ProposalEngagement, ProposalViewSession):
        for row in db.query(model).filter(model.proposal_id == proposal_id).all():
            db.delete(row)
    db.delete(proposal)
    db.commit()
    logger.info("Proposal %s deleted", proposal_id)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def send_proposal(db: Session, proposal_id: str, user_id: str) -> Proposal:
    proposal = get_owned_proposal(db, proposal_id, user_id)
    if proposal.locked or not ProposalStatus(proposal.status).can_send:
        raise BadRequestError(f"Cannot send a proposal in status {proposal.status}")

    first_send = proposal.sent_at is None
    proposal.status = ProposalStatus.SENT.value
    proposal.sent_at = utcnow()
    if first_send:
        teams.record_proposal_sent(db, proposal.team_id, user_id)
    db.commit()
    log_event(logger, LogEvent.PROPOSAL_STATUS, proposal_id, status=proposal.status, first_send=first_send)
    return proposal


def approve_proposal(db: Session, slug: str, signature: Dict[str, Any]) -> Proposal:
    """Client signs the proposal through the public link."""
    proposal = get_by_slug(db, slug)
    if proposal.locked:
        raise ForbiddenError("Proposal has already been finalised")
    if proposal.status == ProposalStatus.DECLINED.value:
        raise ForbiddenError("Proposal has been declined")

    now = utcnow()
    proposal.status = ProposalStatus.SIGNED.value
    proposal.signed_at = now
    proposal.approved_at = now
    proposal.signer_name = signature.get("name") or signature.get("signer_name")
    proposal.signer_email = signature.get("email") or signature.get("signer_email")
    proposal.signature_data = signature.get("signature_data")
    proposal.locked = True

    teams.record_proposal_won(db, proposal.team_id, proposal.user_id, calculate_total(proposal))
    notifications.create_notification(
        db,
        proposal.user_id,
        NotificationType.PROPOSAL_SIGNED,
        title=f"{proposal.title} was signed",
        message=f"Signed by {proposal.signer_name or 'your client'}",
        proposal_id=proposal.id,
        metadata={"signer_email": proposal.signer_email},
        commit=False,
    )
    db.commit()
    log_event(logger, LogEvent.PROPOSAL_STATUS, proposal.id, status=proposal.status,
              signer_email=proposal.signer_email)
    return proposal


def decline_proposal(db: Session, slug: str, reason: Optional[str] = None) -> Proposal:
    proposal = get_by_slug(db, slug)
    if proposal.locked:
        raise ForbiddenError("Proposal has already been finalised")

    proposal.status = ProposalStatus.DECLINED.value
    proposal.declined_at = utcnow()
    proposal.decline_reason = reason
    notifications.create_notification(
        db,
        proposal.user_id,
        NotificationType.PROPOSAL_DECLINED,
        title=f"{proposal.title} was declined",
        message=reason,
        proposal_id=proposal.id,
        commit=False,
    )
    db.commit()
    log_event(logger, LogEvent.PROPOSAL_STATUS, proposal.id, status=proposal.status, reason=reason)
    return proposal
