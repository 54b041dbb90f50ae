"""
View Analytics Endpoints

Public (proposal viewer):
POST /api/view-analytics/session/start
POST /api/view-analytics/session/update
POST /api/view-analytics/session/end
POST /api/view-analytics/section/track

Owner:
GET  /api/view-analytics/proposal/{id}
GET  /api/view-analytics/proposal/{id}/heatmap
GET  /api/view-analytics/proposal/{id}/viewers
"""

import asyncio

from fastapi import APIRouter, Query, Request

from backend.api.schemas import (
    EndSessionRequest,
    StartSessionRequest,
    TrackSectionViewRequest,
    UpdateSessionRequest,
)
from backend.auth import require_user
from backend.core.constants import RECENT_VIEWERS_DEFAULT_LIMIT
from backend.database import get_db, row_to_dict
from backend.domain.enums import RealtimeEvent
from backend.services import view_analytics as view_service
from backend.websocket import manager

router = APIRouter(prefix="/api/view-analytics", tags=["view-analytics"])

VIEWER_FIELDS = (
    "id", "session_id", "viewer_email", "viewer_name", "viewer_company",
    "device", "country", "city", "total_duration", "scroll_depth",
    "started_at", "ended_at",
)


@router.post("/session/start")
async def start_session(body: StartSessionRequest, request: Request):
    data = body.model_dump()
    data["ip_address"] = data.get("ip_address") or (request.client.host if request.client else None)
    data["user_agent"] = data.get("user_agent") or request.headers.get("user-agent")

    def _sync():
        db = get_db()
        try:
            session, event = view_service.start_session(db, data)
            return {"success": True, "session_id": session.session_id}, event
        finally:
            db.close()

    result, event = await asyncio.to_thread(_sync)
    if event:
        await manager.send_to_user(event["user_id"], RealtimeEvent.PROPOSAL_VIEWED.value, event["payload"])
    return result


@router.post("/session/update")
async def update_session(body: UpdateSessionRequest):
    def _sync():
        db = get_db()
        try:
            session = view_service.update_session(db, body.model_dump())
            return {"success": True, "session_id": session.session_id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/session/end")
async def end_session(body: EndSessionRequest):
    def _sync():
        db = get_db()
        try:
            session = view_service.end_session(db, body.session_id)
            return {"success": True, "session_id": session.session_id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/section/track")
async def track_section(body: TrackSectionViewRequest):
    def _sync():
        db = get_db()
        try:
            row = view_service.track_section_view(db, body.model_dump())
            return {"success": True, "revisits": row.revisits or 0}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}")
async def proposal_analytics(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return view_service.proposal_analytics(db, user.user_id, proposal_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}/heatmap")
async def section_heatmap(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return {"sections": view_service.section_heatmap(db, user.user_id, proposal_id)}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}/viewers")
async def recent_viewers(
    proposal_id: str,
    request: Request,
    limit: int = Query(default=RECENT_VIEWERS_DEFAULT_LIMIT, ge=1, le=100),
):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            rows = view_service.recent_viewers(db, user.user_id, proposal_id, limit)
            return {"viewers": [
                {k: v for k, v in row_to_dict(r).items() if k in VIEWER_FIELDS} for r in rows
            ]}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
