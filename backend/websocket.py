"""
WebSocket connection registry for owner notifications.

Each authenticated dashboard tab holds one socket on /ws/events; events
about a proposal are pushed to every socket of the proposal owner.
"""

import asyncio
import json
import logging
from typing import Dict, List

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks open sockets per user id."""

    def __init__(self):
        self.connections: Dict[str, List[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: str, websocket: WebSocket):
        await websocket.accept()
        async with self._lock:
            self.connections.setdefault(user_id, []).append(websocket)
        logger.info("WebSocket connected for user %s. Total clients: %d", user_id, self.client_count)

    async def disconnect(self, user_id: str, websocket: WebSocket):
        async with self._lock:
            sockets = self.connections.get(user_id, [])
            if websocket in sockets:
                sockets.remove(websocket)
            if not sockets:
                self.connections.pop(user_id, None)
        logger.info("WebSocket disconnected for user %s. Total clients: %d", user_id, self.client_count)

    async def send_to_user(self, user_id: str, event: str, data: dict) -> int:
        """Push ``{"event", "data"}`` to the user's sockets.

        Returns the number of sockets reached; dead sockets are dropped.
        """
        payload = json.dumps({"event": event, "data": data}, default=str)

        async with self._lock:
            sockets = list(self.connections.get(user_id, []))

        stale: List[WebSocket] = []
        delivered = 0
        for ws in sockets:
            try:
                await ws.send_text(payload)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError, OSError):
                stale.append(ws)

        for ws in stale:
            await self.disconnect(user_id, ws)
        if stale:
            logger.info("Removed %d stale WebSocket connections", len(stale))
        return delivered

    @property
    def client_count(self) -> int:
        return sum(len(v) for v in self.connections.values())


# Singleton used across the application
manager = ConnectionManager()
