"""
Fixed-window request limiter backed by the shared cache.
"""

from __future__ import annotations

import logging
import time

import redis

from backend.cache_backend import get_cache_backend

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


def check_rate_limit(
    bucket: str,
    identity: str,
    limit_per_minute: int,
) -> tuple[bool, int]:
    """Count one hit for ``identity`` in ``bucket``.

    Returns ``(allowed, count)``.  A non-positive limit disables the check
    and cache failures let the request through.
    """
    if limit_per_minute <= 0:
        return True, 0

    window = int(time.time() // WINDOW_SECONDS)
    key = f"rl:{bucket}:{identity}:{window}"
    try:
        count = get_cache_backend().incr(key, ttl_seconds=WINDOW_SECONDS + 10)
    except redis.RedisError as exc:
        logger.warning("rate limiter unavailable, allowing request: %s", exc)
        return True, 0
    return count <= int(limit_per_minute), count
