"""
Centralized configuration for the Proposal Suite backend.
All settings come from environment variables for 12-factor deployment.
"""

import os
import secrets


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.environ.get(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str = "") -> list:
    return [s.strip() for s in os.environ.get(name, default).split(",") if s.strip()]


# ---------------------------------------------------------------------------
# Database / cache
# ---------------------------------------------------------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///proposals.db")
SQL_ECHO = _env_bool("SQL_ECHO", False)
REDIS_URL = os.environ.get("REDIS_URL", "").strip()

# ---------------------------------------------------------------------------
# URLs
# ---------------------------------------------------------------------------
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------
AUTH_SECRET = os.environ.get("AUTH_SECRET", "") or secrets.token_hex(32)
SESSION_EXPIRY_SECONDS = int(os.environ.get("SESSION_EXPIRY_SECONDS", str(7 * 24 * 3600)))
PASSWORD_HASH_ITERATIONS = int(os.environ.get("PASSWORD_HASH_ITERATIONS", "240000"))
ALLOW_REGISTRATION = _env_bool("ALLOW_REGISTRATION", True)

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------
PORT = int(os.environ.get("PORT", "8001"))
APP_VERSION = "1.0.0"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").strip() or "INFO"

# ---------------------------------------------------------------------------
# CORS: Starlette mirrors the request Origin when credentials=True + "*",
# so the dashboard can send Bearer tokens from any configured origin.
# ---------------------------------------------------------------------------
CORS_ORIGINS = _env_list("CORS_ORIGINS", "*")

# ---------------------------------------------------------------------------
# Payments (Stripe)
# ---------------------------------------------------------------------------
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "").strip()
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "").strip()
# Platform fee on Connect payments: PCT of the amount plus a fixed charge.
PLATFORM_FEE_PCT = float(os.environ.get("PLATFORM_FEE_PCT", "0.029"))
PLATFORM_FEE_FIXED_CENTS = int(os.environ.get("PLATFORM_FEE_FIXED_CENTS", "30"))
DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "USD").upper()

# ---------------------------------------------------------------------------
# Tracking / analytics
# ---------------------------------------------------------------------------
# Per-IP cap on the public tracking endpoints (0 disables the limit).
TRACKING_RATE_LIMIT_PER_MINUTE = int(os.environ.get("TRACKING_RATE_LIMIT_PER_MINUTE", "600"))
# Maximum events accepted by a single batch tracking request.
TRACKING_MAX_BATCH = int(os.environ.get("TRACKING_MAX_BATCH", "500"))
ANALYTICS_CACHE_TTL_SECONDS = int(os.environ.get("ANALYTICS_CACHE_TTL_SECONDS", "30"))
