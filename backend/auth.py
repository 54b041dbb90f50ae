"""
Email/password authentication for the Proposal Suite API.

Flow:
  1. POST /api/auth/register or /api/auth/login  -> signed token issued
  2. Dashboard sends it as ``Authorization: Bearer <token>`` (or the
     session cookie set by login for same-origin use)
  3. The app middleware resolves the token on every protected /api/* path
     and stores the caller on ``request.state.user``

Tokens are ``base64(payload).hmac_sha256`` with ``sub``, ``email`` and
``exp``; passwords are PBKDF2-HMAC-SHA256 with a per-user salt.
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from backend import config
from backend.api.schemas import LoginRequest, RegisterRequest
from backend.core.errors import ConflictError
from backend.database import User, get_db, get_user_by_email
from backend.domain.models import AuthUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

COOKIE_NAME = "proposal_suite_session"
HASH_ALGORITHM = "pbkdf2_sha256"


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str, salt: Optional[str] = None, iterations: Optional[int] = None) -> str:
    """Return ``pbkdf2_sha256$<iterations>$<salt>$<hex digest>``."""
    salt = salt or secrets.token_hex(16)
    iterations = iterations or config.PASSWORD_HASH_ITERATIONS
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), iterations).hex()
    return f"{HASH_ALGORITHM}${iterations}${salt}${digest}"


def verify_password(password: str, stored: str) -> bool:
    try:
        algorithm, iterations, salt, _ = stored.split("$", 3)
    except ValueError:
        return False
    if algorithm != HASH_ALGORITHM:
        return False
    candidate = hash_password(password, salt=salt, iterations=int(iterations))
    return hmac.compare_digest(candidate, stored)


# ---------------------------------------------------------------------------
# HMAC-signed session tokens
# ---------------------------------------------------------------------------

def _sign(payload_bytes: bytes) -> str:
    return hmac.new(config.AUTH_SECRET.encode(), payload_bytes, hashlib.sha256).hexdigest()


def create_token(user_id: str, email: str, name: Optional[str] = None) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "exp": int(time.time()) + config.SESSION_EXPIRY_SECONDS,
    }
    payload_b64 = base64.urlsafe_b64encode(json.dumps(payload).encode()).decode()
    return f"{payload_b64}.{_sign(payload_b64.encode())}"


def decode_token(token: str) -> Optional[dict]:
    """Verified payload, or None for a malformed, forged or expired token."""
    payload_b64, sep, sig = token.partition(".")
    if not sep:
        return None
    if not hmac.compare_digest(sig, _sign(payload_b64.encode())):
        return None
    try:
        payload = json.loads(base64.urlsafe_b64decode(payload_b64))
    except ValueError:
        return None
    if not isinstance(payload, dict) or "sub" not in payload:
        return None
    if payload.get("exp", 0) < time.time():
        return None
    return payload


def user_from_token(token: Optional[str]) -> Optional[AuthUser]:
    if not token:
        return None
    payload = decode_token(token)
    return AuthUser.from_token_payload(payload) if payload else None


def get_current_user(request: Request) -> Optional[AuthUser]:
    """Resolve the caller from the Bearer header, then the session cookie."""
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        user = user_from_token(auth_header[7:])
        if user:
            return user
    return user_from_token(request.cookies.get(COOKIE_NAME))


def require_user(request: Request) -> AuthUser:
    """The authenticated caller; raises 401 when there is none."""
    user = getattr(request.state, "user", None) or get_current_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    return user


# ---------------------------------------------------------------------------
# Auth middleware helpers
# ---------------------------------------------------------------------------

PUBLIC_PREFIXES = (
    "/api/auth/register",
    "/api/auth/login",
    "/api/auth/logout",
    "/api/health",
    "/api/proposals/public/",
    "/api/heatmaps/track/",
    "/api/view-analytics/session/",
    "/api/view-analytics/section/",
    "/api/payments/create-intent",
    "/api/payments/webhook",
    "/docs",
    "/openapi.json",
    "/ws/",
)


def requires_auth(request: Request) -> bool:
    """Return True if this request path needs authentication."""
    path = request.url.path
    if path.startswith(PUBLIC_PREFIXES):
        return False
    return path.startswith("/api/")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "company_name": user.company_name,
    }


def _session_response(user: User, status_code: int = 200) -> JSONResponse:
    token = create_token(user.id, user.email, user.name)
    response = JSONResponse({"token": token, "user": _user_dict(user)}, status_code=status_code)
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=config.SESSION_EXPIRY_SECONDS,
        httponly=True,
        samesite="lax",
    )
    return response


def register_user(email: str, password: str, name: Optional[str] = None,
                  company_name: Optional[str] = None) -> User:
    db = get_db()
    try:
        email = email.strip().lower()
        if get_user_by_email(db, email) is not None:
            raise ConflictError("An account with this email already exists")
        user = User(
            email=email,
            name=name,
            company_name=company_name,
            password_hash=hash_password(password),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    finally:
        db.close()


def authenticate(email: str, password: str) -> Optional[User]:
    db = get_db()
    try:
        user = get_user_by_email(db, email)
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user
    finally:
        db.close()


@router.post("/register")
async def register(body: RegisterRequest):
    if not config.ALLOW_REGISTRATION:
        raise HTTPException(status_code=403, detail="Registration is disabled.")
    user = await asyncio.to_thread(register_user, body.email, body.password, body.name, body.company_name)
    logger.info("User registered: %s", user.id)
    return _session_response(user, status_code=201)


@router.post("/login")
async def login(body: LoginRequest):
    user = await asyncio.to_thread(authenticate, body.email, body.password)
    if user is None:
        logger.warning("Failed login for %s", body.email)
        raise HTTPException(status_code=401, detail="Invalid email or password.")
    logger.info("User logged in: %s", user.id)
    return _session_response(user)


@router.get("/me")
async def me(request: Request):
    """Return the current logged-in user, or 401 if not authenticated."""
    caller = require_user(request)

    def _sync():
        db = get_db()
        try:
            return db.get(User, caller.user_id)
        finally:
            db.close()

    user = await asyncio.to_thread(_sync)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    return _user_dict(user)


@router.post("/logout")
async def logout():
    """Clear the session cookie."""
    response = JSONResponse({"status": "logged_out"})
    response.delete_cookie(COOKIE_NAME)
    return response
