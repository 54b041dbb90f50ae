"""
Heatmap & Engagement Endpoints

Public tracking (called by the proposal viewer, rate limited per IP):
POST /api/heatmaps/track/interaction
POST /api/heatmaps/track/interactions
POST /api/heatmaps/track/scroll
POST /api/heatmaps/track/engagement

Owner analytics:
POST /api/heatmaps/generate
POST /api/heatmaps/predictive-score
GET  /api/heatmaps/proposal/{id}/engagement|attention|clicks|scroll-depth|
                               realtime|most-clicked|scroll-heatmap
POST /api/heatmaps/proposal/{id}/sections
"""

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Query, Request

from backend import config
from backend.api.schemas import (
    GenerateHeatmapRequest,
    PredictiveScoreRequest,
    RecordEngagementRequest,
    RecordInteractionRequest,
    RecordInteractionsBatchRequest,
    RecordScrollRequest,
    SectionViewRatesRequest,
)
from backend.auth import require_user
from backend.core.constants import MOST_CLICKED_DEFAULT_LIMIT, REALTIME_DEFAULT_MINUTES
from backend.database import get_db
from backend.rate_limiter import check_rate_limit
from backend.services import heatmaps as heatmap_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/heatmaps", tags=["heatmaps"])


def _check_tracking_limit(request: Request) -> None:
    ip = request.client.host if request.client else "unknown"
    allowed, count = check_rate_limit("track", ip, config.TRACKING_RATE_LIMIT_PER_MINUTE)
    if not allowed:
        logger.warning("Tracking rate limit hit for %s (%d this minute)", ip, count)
        raise HTTPException(status_code=429, detail="Too many tracking events; slow down")


# ---------------------------------------------------------------------------
# Public tracking
# ---------------------------------------------------------------------------

@router.post("/track/interaction")
async def track_interaction(body: RecordInteractionRequest, request: Request):
    _check_tracking_limit(request)

    def _sync():
        db = get_db()
        try:
            row = heatmap_service.record_interaction(db, body.model_dump())
            return {"success": True, "id": row.id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/track/interactions")
async def track_interactions(body: RecordInteractionsBatchRequest, request: Request):
    _check_tracking_limit(request)
    if len(body.interactions) > config.TRACKING_MAX_BATCH:
        raise HTTPException(
            status_code=400,
            detail=f"Batch too large: at most {config.TRACKING_MAX_BATCH} interactions",
        )

    def _sync():
        db = get_db()
        try:
            count = heatmap_service.record_interactions_batch(
                db, [i.model_dump() for i in body.interactions],
            )
            return {"success": True, "count": count}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/track/scroll")
async def track_scroll(body: RecordScrollRequest, request: Request):
    _check_tracking_limit(request)

    def _sync():
        db = get_db()
        try:
            row = heatmap_service.record_scroll(db, body.model_dump())
            return {"success": True, "id": row.id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/track/engagement")
async def track_engagement(body: RecordEngagementRequest, request: Request):
    _check_tracking_limit(request)

    def _sync():
        db = get_db()
        try:
            row = heatmap_service.record_engagement(db, body.model_dump())
            return {"success": True, "id": row.id}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


# ---------------------------------------------------------------------------
# Owner analytics
# ---------------------------------------------------------------------------

@router.post("/generate")
async def generate_heatmap(body: GenerateHeatmapRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return heatmap_service.generate_heatmap(db, user.user_id, body.model_dump())
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/predictive-score")
async def predictive_score(body: PredictiveScoreRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return heatmap_service.predictive_score(db, user.user_id, body.proposal_id, body.session_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}/engagement")
async def engagement_metrics(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return heatmap_service.engagement_metrics(db, user.user_id, proposal_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}/attention")
async def attention_heatmap(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return heatmap_service.attention_heatmap(db, user.user_id, proposal_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}/clicks")
async def click_analytics(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return heatmap_service.click_analytics(db, user.user_id, proposal_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}/most-clicked")
async def most_clicked(
    proposal_id: str,
    request: Request,
    limit: int = Query(default=MOST_CLICKED_DEFAULT_LIMIT, ge=1, le=100),
):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return {"elements": heatmap_service.most_clicked_elements(db, user.user_id, proposal_id, limit)}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}/scroll-depth")
async def scroll_depth(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return heatmap_service.scroll_depth_analytics(db, user.user_id, proposal_id)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}/scroll-heatmap")
async def scroll_heatmap(proposal_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return {"data_points": heatmap_service.scroll_heatmap(db, user.user_id, proposal_id)}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/proposal/{proposal_id}/sections")
async def section_view_rates(proposal_id: str, body: SectionViewRatesRequest, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            sections = [s.model_dump() for s in body.sections]
            return {"sections": heatmap_service.section_view_rates(db, user.user_id, proposal_id, sections)}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.get("/proposal/{proposal_id}/realtime")
async def realtime(
    proposal_id: str,
    request: Request,
    minutes: int = Query(default=REALTIME_DEFAULT_MINUTES, ge=1, le=1440),
):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return heatmap_service.realtime_stats(db, user.user_id, proposal_id, minutes)
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
