"""
Viewer activity capture and the heatmap / engagement analytics built on it.

Writes come from the public viewer (no auth); every read checks that the
caller owns the proposal or can view analytics on its team.  Raw rows are
loaded here and handed to the pure functions in ``backend.analytics``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

import redis
from sqlalchemy import func
from sqlalchemy.orm import Session

from backend import config
from backend.analytics import clicks as click_stats
from backend.analytics import engagement as engagement_stats
from backend.analytics import scroll as scroll_stats
from backend.analytics.predictive import build_snapshot, score_engagement
from backend.cache_backend import analytics_cache_key, get_cache_backend
from backend.core.constants import (
    DEFAULT_HEATMAP_HEIGHT,
    DEFAULT_HEATMAP_WIDTH,
    MOST_CLICKED_DEFAULT_LIMIT,
    REALTIME_DEFAULT_MINUTES,
    TOP_SECTIONS_LIMIT,
)
from backend.core.utils import from_epoch_ms, mean_safe, utcnow
from backend.database import (
    ProposalEngagement,
    ProposalInteraction,
    ProposalPayment,
    ProposalScrollTracking,
)
from backend.domain.enums import HeatmapType, InteractionType, PaymentStatus, ProposalStatus
from backend.domain.models import PredictiveScore, SectionRange
from backend.metrics import record_cache_access, record_events
from backend.services.proposals import get_accessible_proposal

logger = logging.getLogger(__name__)

ENGAGEMENT_CACHE_KIND = "engagement"


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def invalidate_engagement_cache(proposal_ids: Iterable[str]) -> None:
    cache = get_cache_backend()
    for proposal_id in set(proposal_ids):
        try:
            cache.delete(analytics_cache_key(ENGAGEMENT_CACHE_KIND, proposal_id))
        except redis.RedisError as exc:
            logger.warning("engagement cache invalidation failed for %s: %s", proposal_id, exc)


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

def _interaction_row(data: Dict[str, Any]) -> ProposalInteraction:
    return ProposalInteraction(
        proposal_id=data["proposal_id"],
        session_id=data["session_id"],
        type=_enum_value(data["type"]),
        element_id=data.get("element_id"),
        element_type=data.get("element_type"),
        element_text=data.get("element_text"),
        x=data.get("x") or 0.0,
        y=data.get("y") or 0.0,
        scroll_depth=data.get("scroll_depth"),
        viewport_width=data.get("viewport_width"),
        viewport_height=data.get("viewport_height"),
        timestamp=from_epoch_ms(data.get("timestamp")),
        meta=data.get("metadata") or {},
    )


def record_interaction(db: Session, data: Dict[str, Any]) -> ProposalInteraction:
    row = _interaction_row(data)
    db.add(row)
    db.commit()
    record_events(1)
    invalidate_engagement_cache([row.proposal_id])
    return row


def record_interactions_batch(db: Session, items: Sequence[Dict[str, Any]]) -> int:
    rows = [_interaction_row(d) for d in items]
    db.add_all(rows)
    db.commit()
    record_events(len(rows))
    invalidate_engagement_cache(r.proposal_id for r in rows)
    return len(rows)


def record_scroll(db: Session, data: Dict[str, Any]) -> ProposalScrollTracking:
    row = ProposalScrollTracking(
        proposal_id=data["proposal_id"],
        session_id=data["session_id"],
        scroll_depth=scroll_stats.clamp_depth(data["scroll_depth"]),
        scroll_position=data["scroll_position"],
        document_height=data["document_height"],
        viewport_height=data["viewport_height"],
        time_spent=data.get("time_spent"),
        timestamp=from_epoch_ms(data.get("timestamp")),
    )
    db.add(row)
    db.commit()
    record_events(1)
    invalidate_engagement_cache([row.proposal_id])
    return row


def record_engagement(db: Session, data: Dict[str, Any]) -> ProposalEngagement:
    row = ProposalEngagement(
        proposal_id=data["proposal_id"],
        session_id=data["session_id"],
        time_spent=data["time_spent"],
        max_scroll_depth=scroll_stats.clamp_depth(data["max_scroll_depth"]),
        clicks=data.get("clicks") or 0,
        hovers=data.get("hovers") or 0,
        video_watched=bool(data.get("video_watched")),
        pricing_viewed=bool(data.get("pricing_viewed")),
        sections_viewed=data.get("sections_viewed") or [],
    )
    db.add(row)
    db.commit()
    record_events(1)
    invalidate_engagement_cache([row.proposal_id])
    return row


# ---------------------------------------------------------------------------
# Row loaders
# ---------------------------------------------------------------------------

def _interactions(db: Session, proposal_id: str, type_: Optional[InteractionType] = None,
                  session_id: Optional[str] = None, since=None) -> List[ProposalInteraction]:
    q = db.query(ProposalInteraction).filter(ProposalInteraction.proposal_id == proposal_id)
    if type_ is not None:
        q = q.filter(ProposalInteraction.type == type_.value)
    if session_id is not None:
        q = q.filter(ProposalInteraction.session_id == session_id)
    if since is not None:
        q = q.filter(ProposalInteraction.timestamp >= since)
    return q.order_by(ProposalInteraction.timestamp.asc(), ProposalInteraction.id.asc()).all()


def _scroll_samples(db: Session, proposal_id: str, session_id: Optional[str] = None) -> List[ProposalScrollTracking]:
    q = db.query(ProposalScrollTracking).filter(ProposalScrollTracking.proposal_id == proposal_id)
    if session_id is not None:
        q = q.filter(ProposalScrollTracking.session_id == session_id)
    return q.order_by(ProposalScrollTracking.timestamp.asc(), ProposalScrollTracking.id.asc()).all()


def _session_starts(db: Session, proposal_id: str) -> Dict[str, Any]:
    rows = (
        db.query(ProposalInteraction.session_id, func.min(ProposalInteraction.timestamp))
        .filter(ProposalInteraction.proposal_id == proposal_id)
        .group_by(ProposalInteraction.session_id)
        .all()
    )
    return {sid: started for sid, started in rows}


# ---------------------------------------------------------------------------
# Click analytics
# ---------------------------------------------------------------------------

def click_analytics(db: Session, user_id: str, proposal_id: str) -> Dict[str, Any]:
    get_accessible_proposal(db, proposal_id, user_id)
    clicks = _interactions(db, proposal_id, InteractionType.CLICK)
    return click_stats.click_analytics(proposal_id, clicks, _session_starts(db, proposal_id))


def click_heatmap(db: Session, user_id: str, proposal_id: str) -> List[Dict[str, Any]]:
    get_accessible_proposal(db, proposal_id, user_id)
    clicks = _interactions(db, proposal_id, InteractionType.CLICK)
    return [p.to_dict() for p in click_stats.grid_points(clicks)]


def most_clicked_elements(db: Session, user_id: str, proposal_id: str,
                          limit: int = MOST_CLICKED_DEFAULT_LIMIT) -> List[Dict[str, Any]]:
    get_accessible_proposal(db, proposal_id, user_id)
    clicks = _interactions(db, proposal_id, InteractionType.CLICK)
    return click_stats.most_clicked_elements(clicks, limit)


# ---------------------------------------------------------------------------
# Scroll analytics
# ---------------------------------------------------------------------------

def scroll_depth_analytics(db: Session, user_id: str, proposal_id: str) -> Dict[str, Any]:
    get_accessible_proposal(db, proposal_id, user_id)
    return scroll_stats.scroll_depth_analytics(proposal_id, _scroll_samples(db, proposal_id))


def scroll_heatmap(db: Session, user_id: str, proposal_id: str) -> List[Dict[str, Any]]:
    get_accessible_proposal(db, proposal_id, user_id)
    return [p.to_dict() for p in scroll_stats.scroll_bands(_scroll_samples(db, proposal_id))]


def section_view_rates(db: Session, user_id: str, proposal_id: str,
                       sections: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    get_accessible_proposal(db, proposal_id, user_id)
    ranges = [SectionRange(name=s["name"], start_y=s["start_y"], end_y=s["end_y"]) for s in sections]
    return scroll_stats.section_view_rates(_scroll_samples(db, proposal_id), ranges)


# ---------------------------------------------------------------------------
# Heatmaps & engagement
# ---------------------------------------------------------------------------

def generate_heatmap(db: Session, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    proposal_id = data["proposal_id"]
    get_accessible_proposal(db, proposal_id, user_id)
    heatmap_type = HeatmapType(_enum_value(data["type"]))

    clicks: Sequence[Any] = ()
    samples: Sequence[Any] = ()
    hovers: Sequence[Any] = ()
    if heatmap_type in (HeatmapType.CLICK, HeatmapType.ATTENTION):
        clicks = _interactions(db, proposal_id, InteractionType.CLICK)
    if heatmap_type in (HeatmapType.SCROLL, HeatmapType.ATTENTION):
        samples = _scroll_samples(db, proposal_id)
    if heatmap_type is HeatmapType.MOVEMENT:
        hovers = _interactions(db, proposal_id, InteractionType.HOVER)

    points = engagement_stats.heatmap_points(
        heatmap_type, clicks=clicks, scroll_samples=samples, hovers=hovers,
        intensity=data.get("intensity"),
    )
    session_ids = [
        sid for (sid,) in
        db.query(ProposalInteraction.session_id).filter(ProposalInteraction.proposal_id == proposal_id).all()
    ]
    return {
        "proposal_id": proposal_id,
        "type": heatmap_type.value,
        "data_points": [p.to_dict() for p in points],
        "total_interactions": len(session_ids),
        "unique_sessions": len(set(session_ids)),
        "width": data.get("width") or DEFAULT_HEATMAP_WIDTH,
        "height": data.get("height") or DEFAULT_HEATMAP_HEIGHT,
        "generated_at": utcnow().isoformat(),
    }


def attention_heatmap(db: Session, user_id: str, proposal_id: str) -> Dict[str, Any]:
    get_accessible_proposal(db, proposal_id, user_id)
    return {
        "proposal_id": proposal_id,
        "sections": engagement_stats.section_attention(_interactions(db, proposal_id)),
    }


def engagement_metrics(db: Session, user_id: str, proposal_id: str) -> Dict[str, Any]:
    proposal = get_accessible_proposal(db, proposal_id, user_id)

    cache = get_cache_backend()
    key = analytics_cache_key(ENGAGEMENT_CACHE_KIND, proposal_id)
    cached = cache.get_json(key)
    record_cache_access(cached is not None)
    if cached is not None:
        return cached

    interactions = _interactions(db, proposal_id)
    top_sections = engagement_stats.section_attention(interactions)[:TOP_SECTIONS_LIMIT]
    result = engagement_stats.engagement_metrics(
        proposal_id,
        session_ids=(i.session_id for i in interactions),
        scroll_samples=_scroll_samples(db, proposal_id),
        converted=ProposalStatus(proposal.status).is_converted,
        top_sections=top_sections,
    )
    cache.set_json(key, result, ttl_seconds=config.ANALYTICS_CACHE_TTL_SECONDS)
    return result


# ---------------------------------------------------------------------------
# Predictive scoring
# ---------------------------------------------------------------------------

def _is_returning(db: Session, proposal_id: str, session_id: Optional[str]) -> bool:
    if not session_id:
        return False
    other = (
        db.query(ProposalInteraction.id)
        .filter(
            ProposalInteraction.proposal_id == proposal_id,
            ProposalInteraction.session_id != session_id,
        )
        .first()
    )
    return other is not None


def compute_predictive_score(db: Session, proposal_id: str, session_id: Optional[str] = None) -> PredictiveScore:
    snapshot = build_snapshot(
        _interactions(db, proposal_id, session_id=session_id),
        _scroll_samples(db, proposal_id, session_id=session_id),
        is_returning=_is_returning(db, proposal_id, session_id),
    )
    return score_engagement(proposal_id, session_id, snapshot)


def predictive_score(db: Session, user_id: str, proposal_id: str,
                     session_id: Optional[str] = None) -> Dict[str, Any]:
    get_accessible_proposal(db, proposal_id, user_id)
    return compute_predictive_score(db, proposal_id, session_id).to_dict()


# ---------------------------------------------------------------------------
# Realtime
# ---------------------------------------------------------------------------

def realtime_stats(db: Session, user_id: str, proposal_id: str,
                   minutes: int = REALTIME_DEFAULT_MINUTES) -> Dict[str, Any]:
    get_accessible_proposal(db, proposal_id, user_id)
    since = utcnow() - timedelta(minutes=minutes)

    recent = _interactions(db, proposal_id, since=since)
    sessions = list(dict.fromkeys(i.session_id for i in recent))

    conversions = (
        db.query(ProposalPayment)
        .filter(
            ProposalPayment.proposal_id == proposal_id,
            ProposalPayment.status == PaymentStatus.SUCCEEDED.value,
            ProposalPayment.paid_at >= since,
        )
        .count()
    )
    scores = [compute_predictive_score(db, proposal_id, sid).engagement_score for sid in sessions]

    return {
        "proposal_id": proposal_id,
        "current_viewers": len(sessions),
        "recent_views": len(sessions),
        "recent_conversions": conversions,
        "avg_engagement_score": mean_safe(scores),
        "active_regions": engagement_stats.active_regions(recent),
        "devices": engagement_stats.device_counts(recent),
    }
