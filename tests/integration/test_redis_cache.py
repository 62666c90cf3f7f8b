"""Integration tests for Redis and InMemory cache adapters.

Tests the CachePort implementations without requiring a real Redis instance.
Uses a simple in-memory dict mock for Redis behavior.
"""

import fnmatch
from datetime import datetime, timezone

import pytest
import redis

from adapters.outbound.redis_cache import InMemoryCacheAdapter, RedisCacheAdapter
from domain.ports import CachePort


class MockRedis:
    def __init__(self):
        self._data = {}
        self.ttls = {}

    def get(self, key):
        return self._data.get(key)

    def setex(self, key, ttl, value):
        self._data[key] = value
        self.ttls[key] = ttl

    def scan_iter(self, pattern):
        return [k for k in self._data if fnmatch.fnmatch(k, pattern)]

    def delete(self, key):
        self._data.pop(key, None)


class TestInMemoryCacheAdapter:
    """Tests for the InMemoryCacheAdapter (dict-based, for testing)."""

    def test_implements_cache_port(self):
        assert isinstance(InMemoryCacheAdapter(), CachePort)

    def test_set_and_get(self):
        cache = InMemoryCacheAdapter()
        cache.set("rules:statistics:5", {"total_active_rules": 2})
        assert cache.get("rules:statistics:5") == {"total_active_rules": 2}

    def test_get_missing_key(self):
        assert InMemoryCacheAdapter().get("nonexistent") is None

    def test_invalidate_by_prefix(self):
        cache = InMemoryCacheAdapter()
        cache.set("rules:statistics:5", 1)
        cache.set("rules:statistics:10", 2)
        cache.set("patterns:total", 3)
        cache.invalidate("rules:")
        assert cache.get("rules:statistics:5") is None
        assert cache.get("rules:statistics:10") is None
        assert cache.get("patterns:total") == 3

    def test_entries_expire(self):
        now = [100.0]
        cache = InMemoryCacheAdapter(clock=lambda: now[0])
        cache.set("key", "value", ttl=10)
        now[0] = 109.0
        assert cache.get("key") == "value"
        now[0] = 110.0
        assert cache.get("key") is None


class TestRedisCacheAdapter:
    """Tests for the RedisCacheAdapter (Redis-backed with JSON serialization)."""

    def test_implements_cache_port(self):
        assert isinstance(RedisCacheAdapter(), CachePort)

    def test_no_redis_is_noop(self):
        cache = RedisCacheAdapter(redis_client=None)
        cache.set("key", "value")
        cache.invalidate("prefix")
        assert cache.get("key") is None

    def test_keys_are_prefixed_and_ttl_applied(self):
        client = MockRedis()
        cache = RedisCacheAdapter(redis_client=client, ttl=60)
        cache.set("rules:statistics:5", {"value": 123})
        cache.set("rules:other", 1, ttl=5)
        assert client.ttls == {"docmapper:rules:statistics:5": 60, "docmapper:rules:other": 5}
        assert cache.get("rules:statistics:5") == {"value": 123}

    def test_datetimes_serialized_as_strings(self):
        cache = RedisCacheAdapter(redis_client=MockRedis())
        stamp = datetime(2024, 2, 15, tzinfo=timezone.utc)
        cache.set("stamp", {"last_used": stamp})
        assert cache.get("stamp") == {"last_used": str(stamp)}

    def test_invalidate(self):
        cache = RedisCacheAdapter(redis_client=MockRedis())
        cache.set("rules:x", 1)
        cache.set("rules:y", 2)
        cache.set("patterns:z", 3)
        cache.invalidate("rules:")
        assert cache.get("rules:x") is None
        assert cache.get("rules:y") is None
        assert cache.get("patterns:z") == 3


class TestFromUrl:
    def test_no_url_gives_noop(self):
        cache = RedisCacheAdapter.from_url(None)
        cache.set("key", 1)
        assert cache.get("key") is None

    def test_unreachable_server_gives_noop(self, monkeypatch, caplog):
        class DeadClient:
            def ping(self):
                raise redis.ConnectionError("connection refused")

        monkeypatch.setattr(redis, "from_url", lambda url: DeadClient())
        with caplog.at_level("WARNING"):
            cache = RedisCacheAdapter.from_url("redis://localhost:6379/0", ttl=30)
        assert cache.get("key") is None
        assert cache.ttl == 30
        assert "caching disabled" in caplog.text

    def test_reachable_server(self, monkeypatch):
        class LiveClient(MockRedis):
            def ping(self):
                return True

        monkeypatch.setattr(redis, "from_url", lambda url: LiveClient())
        cache = RedisCacheAdapter.from_url("redis://localhost:6379/0")
        cache.set("key", [1, 2])
        assert cache.get("key") == [1, 2]


@pytest.mark.parametrize("adapter", [InMemoryCacheAdapter, lambda: RedisCacheAdapter(MockRedis())])
def test_overwrite_value(adapter):
    cache = adapter()
    cache.set("key", "old")
    cache.set("key", "new")
    assert cache.get("key") == "new"
