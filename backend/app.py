"""
Proposal Suite - FastAPI Application
Main entry point for the backend server.

Run with:
    uvicorn backend.app:app --reload --host 0.0.0.0 --port 8001
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend import config
from backend.api.routes import register_routes
from backend.auth import get_current_user, requires_auth, user_from_token
from backend.core.errors import ServiceError
from backend.core.logging import LogEvent, bind_request_id, configure_logging, log_event, reset_request_id
from backend.database import init_db
from backend.metrics import record_error
from backend.websocket import manager

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
configure_logging()
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("backend.requests")


# ---------------------------------------------------------------------------
# Lifespan (startup / shutdown)
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Runs once on startup, yields for the lifetime of the app."""
    logger.info("Initialising database...")
    init_db()
    logger.info("Database ready.")

    yield  # Application is running


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Proposal Suite",
    version=config.APP_VERSION,
    description="Sales proposals with engagement analytics, payments and team workspaces",
    lifespan=lifespan,
)

# allow_credentials=True is needed so the browser's preflight (OPTIONS)
# permits the Authorization header on requests from different origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        record_error()
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    record_error()
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "type": type(exc).__name__,
            "path": request.url.path,
        },
    )


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

async def request_logging_middleware(request: Request, call_next):
    """Tag every response with ``X-Request-ID`` and emit one ``request_log`` line."""
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
    token = bind_request_id(request_id)
    try:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        user = getattr(request.state, "user", None)
        log_event(
            request_logger, LogEvent.REQUEST,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(elapsed_ms, 1),
            user_id=user.user_id if user else None,
            client=request.client.host if request.client else None,
        )
    finally:
        reset_request_id(token)
    response.headers["X-Request-ID"] = request_id
    return response


async def auth_middleware(request: Request, call_next):
    """Attach the caller to ``request.state.user``; reject anonymous calls to protected paths."""
    user = get_current_user(request)
    request.state.user = user
    if user is None and request.method != "OPTIONS" and requires_auth(request):
        return JSONResponse(
            status_code=401,
            content={"detail": "Not authenticated. Sign in via /api/auth/login."},
        )
    return await call_next(request)


# Registered innermost first: request logging wraps auth so 401s are logged too.
app.middleware("http")(auth_middleware)
app.middleware("http")(request_logging_middleware)


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

register_routes(app)


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------

@app.websocket("/ws/events")
async def websocket_events(websocket: WebSocket, token: str = Query(default="")):
    """Push proposal activity (views, signatures, payments) to the owner's dashboard."""
    user = user_from_token(token)
    if user is None:
        await websocket.close(code=4401)
        return

    await manager.connect(user.user_id, websocket)
    try:
        while True:
            await websocket.receive_text()
            await websocket.send_text('{"event":"ack"}')
    except WebSocketDisconnect:
        await manager.disconnect(user.user_id, websocket)


# ---------------------------------------------------------------------------
# Development entry-point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.app:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=True,
    )
