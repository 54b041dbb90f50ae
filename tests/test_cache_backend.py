from __future__ import annotations

import time
from types import SimpleNamespace

import redis

from backend import cache_backend


class FakeRedisClient:
    """Mimics a pre-7 Redis: ``EXPIRE`` takes no NX/XX flags."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.expire_calls = []

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value):
        self.store[key] = value

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.store.pop(key, None)

    def incr(self, key):
        current = int(self.store.get(key, "0")) + 1
        self.store[key] = str(current)
        return current

    def expire(self, key, ttl):
        self.expire_calls.append((key, ttl))
        self.ttls[key] = ttl
        return True

def test_memory_cache_backend_round_trip_and_ttl(monkeypatch):
    backend = cache_backend.MemoryCacheBackend()
    backend.set("k", "v", ttl_seconds=1)
    assert backend.get("k") == "v"
    assert backend.incr("counter", ttl_seconds=10) == 1
    assert backend.incr("counter", ttl_seconds=10) == 2

    later = time.time() + 5
    monkeypatch.setattr(cache_backend, "time", SimpleNamespace(time=lambda: later))
    assert backend.get("k") is None
    assert backend.incr("counter", ttl_seconds=10) == 3


def test_memory_json_and_delete():
    backend = cache_backend.MemoryCacheBackend()
    backend.set_json("metrics", {"total_views": 2, "rates": [1.5]})
    assert backend.get_json("metrics") == {"total_views": 2, "rates": [1.5]}
    backend.set("broken", "{not json")
    assert backend.get_json("broken") is None
    backend.delete("metrics")
    assert backend.get_json("metrics") is None


def test_get_cache_backend_falls_back_to_memory(monkeypatch):
    monkeypatch.setattr(cache_backend.config, "REDIS_URL", "")
    cache_backend.reset_cache_backend_for_tests()
    backend = cache_backend.get_cache_backend()
    assert backend.backend == "memory"
    assert cache_backend.get_cache_backend() is backend


def test_get_cache_backend_uses_redis_when_available(monkeypatch):
    fake_client = FakeRedisClient()
    monkeypatch.setattr(cache_backend.config, "REDIS_URL", "redis://example")
    monkeypatch.setattr(cache_backend.redis, "from_url", lambda *_args, **_kwargs: fake_client)
    cache_backend.reset_cache_backend_for_tests()

    backend = cache_backend.get_cache_backend()
    assert backend.backend == "redis"
    backend.set_json("sample", {"ok": True}, ttl_seconds=30)
    assert backend.get_json("sample") == {"ok": True}
    assert fake_client.ttls["sample"] == 30
    assert backend.incr("counter", ttl_seconds=30) == 1
    assert backend.incr("counter", ttl_seconds=99) == 2
    assert fake_client.ttls["counter"] == 30
    assert fake_client.expire_calls == [("counter", 30)]
    backend.delete("sample")
    assert backend.get("sample") is None


def test_get_cache_backend_falls_back_when_redis_ping_fails(monkeypatch):
    class BadRedisClient:
        def ping(self):
            raise redis.ConnectionError("cannot connect")

    monkeypatch.setattr(cache_backend.config, "REDIS_URL", "redis://broken")
    monkeypatch.setattr(cache_backend.redis, "from_url", lambda *_args, **_kwargs: BadRedisClient())
    cache_backend.reset_cache_backend_for_tests()

    backend = cache_backend.get_cache_backend()
    assert backend.backend == "memory"


def test_json_helpers_swallow_redis_errors():
    class FlakyBackend(cache_backend.CacheBackend):
        def get(self, key):
            raise redis.TimeoutError("slow")

        def set(self, key, value, ttl_seconds=None):
            raise redis.TimeoutError("slow")

    backend = FlakyBackend()
    assert backend.get_json("x") is None
    backend.set_json("x", {"a": 1})


def test_analytics_cache_key():
    assert cache_backend.analytics_cache_key("engagement", "p1") == "analytics:engagement:p1"


def test_memory_sweeps_expired_keys_nobody_reads_again(monkeypatch):
    now = [1_000.0]
    monkeypatch.setattr(cache_backend, "time", SimpleNamespace(time=lambda: now[0]))
    backend = cache_backend.MemoryCacheBackend(sweep_every=10)

    # one rate-limit key per client per minute, never read again
    for minute in range(5):
        for client in range(20):
            backend.incr(f"rl:track:ip{client}:{minute}", ttl_seconds=70)
        now[0] += 60
    assert len(backend) <= 40


def test_memory_evicts_oldest_entries_over_cap():
    backend = cache_backend.MemoryCacheBackend(max_entries=3)
    for i in range(5):
        backend.set(f"k{i}", str(i))
    assert len(backend) == 3
    assert backend.get("k0") is None and backend.get("k1") is None
    assert backend.get("k4") == "4"
