"""
Proposal Endpoints
POST   /api/proposals                        - create
GET    /api/proposals                        - list the caller's proposals
GET    /api/proposals/{id}                   - fetch one
PATCH  /api/proposals/{id}                   - edit (rejected once locked)
DELETE /api/proposals/{id}                   - delete with its analytics
POST   /api/proposals/{id}/send              - mark as sent
GET    /api/proposals/public/{slug}          - client view
POST   /api/proposals/public/{slug}/approve  - client signs
POST   /api/proposals/public/{slug}/decline  - client declines
GET    /api/proposals/public/{slug}/pricing  - prices before any client choice
POST   /api/proposals/public/{slug}/pricing  - re-price for the client's selections
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Query, Request

from backend.api.schemas import (
    DeclineRequest,
    PricingSelectionsRequest,
    ProposalCreate,
    ProposalUpdate,
    SignatureRequest,
)
from backend.auth import require_user
from backend.database import get_db
from backend.domain.enums import RealtimeEvent
from backend.services import interactive_pricing
from backend.services import proposals as proposal_service
from backend.services.serializers import proposal_dict, public_proposal_dict
from backend.websocket import manager

router = APIRouter(prefix="/api/proposals", tags=["proposals"])


@router.post("", status_code=201)
async def create_proposal(body: ProposalCreate, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            proposal = proposal_service.create_proposal(db, user.user_id, body.model_dump())
            return proposal_dict(proposal)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("")
async def list_proposals(request: Request, status: Optional[str] = Query(default=None)):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            rows = proposal_service.list_proposals(db, user.user_id, status)
            return {"proposals": [proposal_dict(p, include_blocks=False) for p in rows]}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/public/{slug}")
async def get_public_proposal(slug: str):
    """Client-facing view of a proposal; no login required."""
    def _sync():
        db = get_db()
        try:
            return public_proposal_dict(proposal_service.get_by_slug(db, slug))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/public/{slug}/approve")
async def approve_proposal(slug: str, body: SignatureRequest):
    def _sync():
        db = get_db()
        try:
            proposal = proposal_service.approve_proposal(db, slug, body.model_dump())
            return proposal.user_id, public_proposal_dict(proposal)
        finally:
            db.close()

    owner_id, result = await asyncio.to_thread(_sync)
    await manager.send_to_user(owner_id, RealtimeEvent.PROPOSAL_SIGNED.value, {
        "proposal_id": result["id"],
        "title": result["title"],
        "signer_name": result.get("signer_name"),
    })
    return result


@router.post("/public/{slug}/decline")
async def decline_proposal(slug: str, body: Optional[DeclineRequest] = None):
    reason = body.reason if body else None

    def _sync():
        db = get_db()
        try:
            proposal = proposal_service.decline_proposal(db, slug, reason)
            return proposal.user_id, public_proposal_dict(proposal)
        finally:
            db.close()

    owner_id, result = await asyncio.to_thread(_sync)
    await manager.send_to_user(owner_id, RealtimeEvent.PROPOSAL_DECLINED.value, {
        "proposal_id": result["id"],
        "title": result["title"],
        "reason": reason,
    })
    return result


@router.get("/public/{slug}/pricing")
async def get_public_pricing(slug: str):
    def _sync():
        db = get_db()
        try:
            return interactive_pricing.pricing_breakdown(db, slug).to_dict()
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/public/{slug}/pricing")
async def update_public_pricing(slug: str, body: PricingSelectionsRequest):
    selections = [s.model_dump() for s in body.selections]

    def _sync():
        db = get_db()
        try:
            proposal, result = interactive_pricing.calculate_pricing(db, slug, selections)
            return proposal.user_id, proposal.id, result.to_dict()
        finally:
            db.close()

    owner_id, proposal_id, result = await asyncio.to_thread(_sync)
    await manager.send_to_user(owner_id, RealtimeEvent.PRICING_UPDATED.value, {
        "proposal_id": proposal_id,
        "total": result["total"],
        "deposit_amount": result["deposit_amount"],
        "selected_items": sum(1 for line in result["line_items"] if line["selected"]),
    })
    return result


@router.get("/{proposal_id}")
async def get_proposal(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return proposal_dict(proposal_service.get_accessible_proposal(db, proposal_id, user.user_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.patch("/{proposal_id}")
async def update_proposal(proposal_id: str, body: ProposalUpdate, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            data = body.model_dump(exclude_unset=True)
            return proposal_dict(proposal_service.update_proposal(db, proposal_id, user.user_id, data))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.delete("/{proposal_id}")
async def delete_proposal(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            proposal_service.delete_proposal(db, proposal_id, user.user_id)
            return {"status": "ok", "deleted": proposal_id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/{proposal_id}/send")
async def send_proposal(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return proposal_dict(proposal_service.send_proposal(db, proposal_id, user.user_id))
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
