"""
Viewer sessions and per-section dwell tracking.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from backend.analytics import views as view_stats
from backend.core.constants import RECENT_VIEWERS_DEFAULT_LIMIT
from backend.core.errors import ConflictError, NotFoundError
from backend.core.utils import utcnow
from backend.database import Proposal, ProposalSectionView, ProposalViewSession
from backend.domain.enums import NotificationType, ProposalStatus
from backend.services import notifications
from backend.services.proposals import get_accessible_proposal

logger = logging.getLogger(__name__)

SESSION_FIELDS = (
    "visitor_id", "viewer_email", "viewer_name", "viewer_company",
    "ip_address", "user_agent", "device", "browser", "os", "country", "city",
)
UPDATABLE_FIELDS = ("total_duration", "scroll_depth", "pages_viewed", "interactions")


def _get_session(db: Session, session_id: str) -> ProposalViewSession:
    session = (
        db.query(ProposalViewSession)
        .filter(ProposalViewSession.session_id == session_id)
        .first()
    )
    if session is None:
        raise NotFoundError("View session not found")
    return session


def start_session(db: Session, data: Dict[str, Any]) -> Tuple[ProposalViewSession, Optional[Dict[str, Any]]]:
    """Open a viewer session.

    Returns the session and the realtime event for the proposal owner
    (``None`` when there is nobody to notify).
    """
    proposal = db.get(Proposal, data["proposal_id"])
    if proposal is None:
        raise NotFoundError("Proposal not found")
    taken = (
        db.query(ProposalViewSession.id)
        .filter(ProposalViewSession.session_id == data["session_id"])
        .first()
    )
    if taken is not None:
        raise ConflictError("View session already started")

    session = ProposalViewSession(
        proposal_id=proposal.id,
        session_id=data["session_id"],
        **{name: data.get(name) for name in SESSION_FIELDS},
    )
    db.add(session)

    now = utcnow()
    proposal.view_count = (proposal.view_count or 0) + 1
    proposal.last_viewed_at = now
    if proposal.first_viewed_at is None:
        proposal.first_viewed_at = now
    if proposal.status == ProposalStatus.SENT.value:
        proposal.status = ProposalStatus.VIEWED.value

    city, country = data.get("city"), data.get("country")
    event = {
        "user_id": proposal.user_id,
        "payload": {
            "proposal_id": proposal.id,
            "title": proposal.title,
            "viewer_name": data.get("viewer_name"),
            "viewer_email": data.get("viewer_email"),
            "device": data.get("device"),
            "location": f"{city}, {country}" if city and country else None,
        },
    }
    notifications.create_notification(
        db,
        proposal.user_id,
        NotificationType.PROPOSAL_VIEWED,
        title=f"{proposal.title} was opened",
        message=data.get("viewer_name") or data.get("viewer_email"),
        proposal_id=proposal.id,
        metadata=event["payload"],
        commit=False,
    )
    db.commit()
    logger.info("View session %s started on proposal %s", session.session_id, proposal.id)
    return session, event


def update_session(db: Session, data: Dict[str, Any]) -> ProposalViewSession:
    session = _get_session(db, data["session_id"])
    for name in UPDATABLE_FIELDS:
        if data.get(name) is not None:
            setattr(session, name, data[name])
    session.last_activity_at = utcnow()
    db.commit()
    return session


def end_session(db: Session, session_id: str) -> ProposalViewSession:
    session = _get_session(db, session_id)
    session.ended_at = utcnow()
    db.commit()
    return session


def track_section_view(db: Session, data: Dict[str, Any]) -> ProposalSectionView:
    """Record time on a section; a repeat visit accumulates into one row."""
    _get_session(db, data["session_id"])
    existing = (
        db.query(ProposalSectionView)
        .filter(
            ProposalSectionView.session_id == data["session_id"],
            ProposalSectionView.section_type == data["section_type"],
            ProposalSectionView.section_index == data["section_index"],
        )
        .first()
    )
    duration = data.get("view_duration") or 0
    interactions = data.get("interactions") or 0
    depth = data.get("scroll_depth")

    if existing is not None:
        existing.view_duration += duration
        if depth is not None:
            existing.scroll_depth = max(existing.scroll_depth, depth)
        existing.interactions += interactions
        existing.revisits += 1
        existing.last_viewed_at = utcnow()
        db.commit()
        return existing

    row = ProposalSectionView(
        session_id=data["session_id"],
        section_type=data["section_type"],
        section_index=data["section_index"],
        block_id=data.get("block_id"),
        view_duration=duration,
        scroll_depth=depth or 0.0,
        interactions=interactions,
    )
    db.add(row)
    db.commit()
    return row


def _section_views(db: Session, proposal_id: str) -> List[ProposalSectionView]:
    return (
        db.query(ProposalSectionView)
        .join(ProposalViewSession, ProposalSectionView.session_id == ProposalViewSession.session_id)
        .filter(ProposalViewSession.proposal_id == proposal_id)
        .order_by(ProposalSectionView.id.asc())
        .all()
    )


def proposal_analytics(db: Session, user_id: str, proposal_id: str) -> Dict[str, Any]:
    get_accessible_proposal(db, proposal_id, user_id)
    sessions = (
        db.query(ProposalViewSession)
        .filter(ProposalViewSession.proposal_id == proposal_id)
        .order_by(ProposalViewSession.started_at.asc())
        .all()
    )
    return view_stats.proposal_view_summary(sessions, _section_views(db, proposal_id))


def section_heatmap(db: Session, user_id: str, proposal_id: str) -> List[Dict[str, Any]]:
    get_accessible_proposal(db, proposal_id, user_id)
    return view_stats.section_heatmap(_section_views(db, proposal_id))


def recent_viewers(db: Session, user_id: str, proposal_id: str,
                   limit: int = RECENT_VIEWERS_DEFAULT_LIMIT) -> List[ProposalViewSession]:
    get_accessible_proposal(db, proposal_id, user_id)
    return (
        db.query(ProposalViewSession)
        .filter(ProposalViewSession.proposal_id == proposal_id)
        .order_by(ProposalViewSession.started_at.desc())
        .limit(limit)
        .all()
    )
