"""Redis cache adapter implementing CachePort.

Falls back to no-op when Redis is unavailable.
"""

from __future__ import annotations

import json
import logging
import time

import redis

from domain.ports import CachePort

logger = logging.getLogger(__name__)


class RedisCacheAdapter(CachePort):
    """CachePort implementation backed by Redis with JSON serialization.

    When *redis_client* is ``None`` every operation is a silent no-op,
    which makes it safe to use in environments where Redis is not available.
    """

    PREFIX = "docmapper:"

    def __init__(self, redis_client=None, ttl: int = 3600):
        self._redis = redis_client
        self.ttl = ttl

    @classmethod
    def from_url(cls, redis_url: str | None, ttl: int = 3600) -> "RedisCacheAdapter":
        """Connect to *redis_url*; an unreachable server yields a no-op cache."""
        if not redis_url:
            return cls(None, ttl)
        try:
            client = redis.from_url(redis_url)
            client.ping()
        except redis.RedisError:
            logger.warning("Redis unavailable at %s, caching disabled", redis_url)
            return cls(None, ttl)
        return cls(client, ttl)

    def _key(self, key: str) -> str:
        return f"{self.PREFIX}{key}"

    # ── CachePort interface ──────────────────────────────────────────────

    def get(self, key: str) -> object | None:
        if not self._redis:
            return None
        raw = self._redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: object, ttl: int | None = None) -> None:
        if not self._redis:
            return
        self._redis.setex(self._key(key), ttl or self.ttl, json.dumps(value, default=str))

    def invalidate(self, prefix: str) -> None:
        if not self._redis:
            return
        full_prefix = self._key(prefix)
        for k in self._redis.scan_iter(f"{full_prefix}*"):
            self._redis.delete(k)


class InMemoryCacheAdapter(CachePort):
    """CachePort implementation using a simple in-memory dict.

    Intended for testing and single-process embedding. Entries expire after
    their TTL, measured on *clock* (monotonic seconds).
    """

    def __init__(self, clock=time.monotonic):
        self._store: dict[str, tuple[float, object]] = {}
        self._clock = clock

    def get(self, key: str) -> object | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: object, ttl: int = 3600) -> None:
        self._store[key] = (self._clock() + ttl, value)

    def invalidate(self, prefix: str) -> None:
        for k in [k for k in self._store if k.startswith(prefix)]:
            del self._store[k]
