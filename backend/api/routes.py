"""
Proposal Suite: Centralised router registration.

This module is the single place where every APIRouter is mounted onto the
FastAPI application.  Import and call ``register_routes(app)`` once in
``backend.app``.

Endpoints defined here (beyond the feature routers):

  GET  /api/health - database, cache and runtime counters
"""

from __future__ import annotations

import asyncio
import logging
import time

from fastapi import APIRouter, FastAPI

from backend import config
from backend.api.schemas import HealthResponse
from backend.cache_backend import get_cache_backend
from backend.database import ping_db
from backend.metrics import metrics_snapshot
from backend.websocket import manager

logger = logging.getLogger(__name__)

# Module-level start time for uptime reporting
_START_TIME: float = time.time()


# ---------------------------------------------------------------------------
# System endpoints
# ---------------------------------------------------------------------------

system_router = APIRouter(prefix="/api", tags=["system"])


@system_router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check():
    db_ok = await asyncio.to_thread(ping_db)
    counters = metrics_snapshot()
    return HealthResponse(
        status="ok" if db_ok else "degraded",
        version=config.APP_VERSION,
        database=db_ok,
        cache_backend=get_cache_backend().backend,
        websocket_clients=manager.client_count,
        uptime_seconds=round(time.time() - _START_TIME, 1),
        events_recorded=int(counters["events_recorded"]),
        webhooks_processed=int(counters["webhooks_processed"]),
        cache_hit_rate=float(counters["cache_hit_rate"]),
        errors_last_hour=int(counters["errors_last_hour"]),
    )


def register_routes(app: FastAPI) -> None:
    """Mount all routers onto ``app``.

    Call this once from ``backend.app`` after creating the FastAPI instance.
    """
    from backend.auth import router as auth_router
    from backend.routers import custom_fields, heatmaps, notifications, payments
    from backend.routers import proposals, teams, view_analytics

    app.include_router(auth_router)
    app.include_router(proposals.router)
    app.include_router(heatmaps.router)
    app.include_router(view_analytics.router)
    app.include_router(teams.router)
    app.include_router(custom_fields.router)
    app.include_router(payments.router)
    app.include_router(notifications.router)
    app.include_router(system_router)

    logger.info(
        "Routes registered: %d total endpoints",
        sum(1 for r in app.routes if hasattr(r, "path")),
    )
