"""
In-process runtime counters surfaced on /api/health.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Deque, Dict

ERROR_WINDOW_SECONDS = 3600.0


class _RuntimeMetrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cache_hits = 0
        self._cache_misses = 0
        self._events_recorded = 0
        self._webhooks_processed = 0
        self._errors: Deque[float] = deque()

    def record_cache_access(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._cache_hits += 1
            else:
                self._cache_misses += 1

    def record_events(self, count: int = 1) -> None:
        with self._lock:
            self._events_recorded += max(0, int(count))

    def record_webhook(self) -> None:
        with self._lock:
            self._webhooks_processed += 1

    def record_error(self, ts: float | None = None) -> None:
        now = ts if ts is not None else time.time()
        with self._lock:
            self._errors.append(now)
            self._trim(now)

    def snapshot(self) -> Dict[str, float | int]:
        now = time.time()
        with self._lock:
            self._trim(now)
            lookups = self._cache_hits + self._cache_misses
            return {
                "events_recorded": self._events_recorded,
                "webhooks_processed": self._webhooks_processed,
                "cache_hit_rate": round(self._cache_hits / lookups, 4) if lookups else 0.0,
                "errors_last_hour": len(self._errors),
            }

    def reset_for_tests(self) -> None:
        with self._lock:
            self._cache_hits = 0
            self._cache_misses = 0
            self._events_recorded = 0
            self._webhooks_processed = 0
            self._errors.clear()

    def _trim(self, now: float) -> None:
        cutoff = now - ERROR_WINDOW_SECONDS
        while self._errors and self._errors[0] < cutoff:
            self._errors.popleft()


_METRICS = _RuntimeMetrics()


def record_cache_access(hit: bool) -> None:
    _METRICS.record_cache_access(hit)


def record_events(count: int = 1) -> None:
    _METRICS.record_events(count)


def record_webhook() -> None:
    _METRICS.record_webhook()


def record_error(ts: float | None = None) -> None:
    _METRICS.record_error(ts)


def metrics_snapshot() -> Dict[str, float | int]:
    return _METRICS.snapshot()


def reset_metrics_for_tests() -> None:
    _METRICS.reset_for_tests()
