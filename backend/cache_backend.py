"""
Shared cache for analytics responses and rate-limit counters.

Redis when ``REDIS_URL`` is configured and reachable, otherwise an
in-process TTL store.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

import redis

from backend import config

logger = logging.getLogger(__name__)


class CacheBackend:
    backend: str = "none"

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def incr(self, key: str, ttl_seconds: int = 60) -> int:
        raise NotImplementedError

    def get_json(self, key: str) -> Optional[Any]:
        """Decoded value, or None on a miss or an unreadable entry."""
        try:
            raw = self.get(key)
        except redis.RedisError as exc:
            logger.warning("cache get failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        try:
            self.set(key, json.dumps(value, default=str), ttl_seconds=ttl_seconds)
        except redis.RedisError as exc:
            logger.warning("cache set failed for %s: %s", key, exc)


class MemoryCacheBackend(CacheBackend):
    """Process-local TTL store.

    Expired entries are swept every ``sweep_every`` writes, and the oldest
    entries are evicted once ``max_entries`` is exceeded, so per-window keys
    such as rate-limit counters cannot accumulate.
    """

    backend = "memory"

    def __init__(self, max_entries: int = 10_000, sweep_every: int = 256) -> None:
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()
        self._max_entries = max(1, max_entries)
        self._sweep_every = max(1, sweep_every)
        self._writes = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, key: str, now: float) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] is not None and now > entry[1]:
            del self._entries[key]
            return None
        return entry

    def _store(self, key: str, entry: Tuple[str, Optional[float]], now: float) -> None:
        # caller holds the lock
        self._entries[key] = entry
        self._writes += 1
        if self._writes >= self._sweep_every or len(self._entries) > self._max_entries:
            self._sweep(now)

    def _sweep(self, now: float) -> None:
        self._writes = 0
        expired = [k for k, (_, exp) in self._entries.items() if exp is not None and now > exp]
        for key in expired:
            del self._entries[key]
        overflow = len(self._entries) - self._max_entries
        if overflow > 0:
            # dicts keep insertion order: evict the oldest keys first
            for key in list(itertools.islice(self._entries, overflow)):
                del self._entries[key]
            logger.debug("memory cache evicted %d entries over the %d cap", overflow, self._max_entries)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key, time.time())
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        now = time.time()
        expires_at = now + max(1, ttl_seconds) if ttl_seconds is not None else None
        with self._lock:
            self._store(key, (value, expires_at), now)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def incr(self, key: str, ttl_seconds: int = 60) -> int:
        now = time.time()
        with self._lock:
            entry = self._live(key, now)
            if entry is None:
                count, expires_at = 1, now + max(1, ttl_seconds)
            else:
                count, expires_at = int(entry[0]) + 1, entry[1]
            self._store(key, (str(count), expires_at), now)
            return count


class RedisCacheBackend(CacheBackend):
    backend = "redis"

    def __init__(self, url: str) -> None:
        self._client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=1,
            socket_timeout=1,
        )
        # Fail fast so startup can fall back to the memory store.
        self._client.ping()

    def get(self, key: str) -> Optional[str]:
        return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds:
            self._client.setex(key, max(1, int(ttl_seconds)), value)
        else:
            self._client.set(key, value)

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def incr(self, key: str, ttl_seconds: int = 60) -> int:
        # EXPIRE only on the first hit so the window never slides; works
        # on servers without EXPIRE NX (Redis < 7).
        count = int(self._client.incr(key))
        if count == 1:
            self._client.expire(key, max(1, int(ttl_seconds)))
        return count


_backend: Optional[CacheBackend] = None
_backend_lock = threading.Lock()


def get_cache_backend() -> CacheBackend:
    global _backend
    if _backend is not None:
        return _backend

    with _backend_lock:
        if _backend is None:
            _backend = _build_backend()
        return _backend


def _build_backend() -> CacheBackend:
    if config.REDIS_URL:
        try:
            backend = RedisCacheBackend(config.REDIS_URL)
            logger.info("Cache backend: redis")
            return backend
        except redis.RedisError as exc:
            logger.warning("Redis unavailable (%s); using in-process cache", exc)
    return MemoryCacheBackend()


def analytics_cache_key(kind: str, proposal_id: str) -> str:
    return f"analytics:{kind}:{proposal_id}"


def reset_cache_backend_for_tests() -> None:
    """Test helper to clear singleton cache backend."""
    global _backend
    with _backend_lock:
        _backend = None
