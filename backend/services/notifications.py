"""
Persistent owner notifications (the bell menu in the dashboard).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from backend.core.errors import NotFoundError
from backend.database import Notification
from backend.domain.enums import NotificationType

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    user_id: str,
    type: NotificationType,
    title: str,
    message: Optional[str] = None,
    proposal_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    commit: bool = True,
) -> Notification:
    """Store a notification; pass ``commit=False`` inside a larger write."""
    note = Notification(
        user_id=user_id,
        type=NotificationType(type).value,
        title=title,
        message=message,
        proposal_id=proposal_id,
        meta=metadata or {},
    )
    db.add(note)
    if commit:
        db.commit()
    else:
        db.flush()
    logger.debug("Notification %s for user %s", note.type, user_id)
    return note


def list_notifications(
    db: Session,
    user_id: str,
    unread_first: bool = False,
    unread_only: bool = False,
    limit: int = 50,
) -> List[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.read.is_(False))
    if unread_first:
        q = q.order_by(Notification.read.asc(), Notification.created_at.desc())
    else:
        q = q.order_by(Notification.created_at.desc())
    return q.limit(limit).all()


def unread_count(db: Session, user_id: str) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .count()
    )


def mark_read(db: Session, notification_id: str, user_id: str) -> Notification:
    note = db.get(Notification, notification_id)
    if note is None or note.user_id != user_id:
        raise NotFoundError("Notification not found")
    note.read = True
    db.commit()
    return note


def mark_all_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return updated
