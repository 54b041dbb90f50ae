"""
Notification Endpoints
GET  /api/notifications             - newest first (?unread_first=1, ?unread_only=1)
POST /api/notifications/{id}/read   - mark one read
POST /api/notifications/read-all    - mark everything read
"""

import asyncio

from fastapi import APIRouter, Query, Request

from backend.auth import require_user
from backend.database import get_db
from backend.services import notifications as notification_service
from backend.services.serializers import rows

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    request: Request,
    unread_first: bool = Query(default=False),
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            notes = notification_service.list_notifications(
                db, user.user_id, unread_first=unread_first, unread_only=unread_only, limit=limit,
            )
            return {
                "notifications": rows(notes),
                "unread": notification_service.unread_count(db, user.user_id),
            }
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/read-all")
async def mark_all_read(request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            return {"success": True, "updated": notification_service.mark_all_read(db, user.user_id)}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, request: Request):
    user = require_user(request)

    def _sync():
        db = get_db()
        try:
            notification_service.mark_read(db, notification_id, user.user_id)
            return {"success": True}
        finally:
            db.close()

    return await asyncio.to_thread(_sync)
