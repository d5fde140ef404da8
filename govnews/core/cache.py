"""
Namespaced session cache for per-source fetch results.

The cache is advisory: read and write failures are logged and never raised.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any, Protocol

import redis
import structlog

from govnews.core.config import Settings, settings
from govnews.core.observability import record_cache_lookup

logger = structlog.get_logger(__name__)


class CacheQuotaExceeded(Exception):
    """Raised by a backend when a write would exceed its storage quota."""


class CacheBackend(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str, ttl_seconds: int | None) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryBackend:
    """Process-lifetime string store with an optional byte quota."""

    def __init__(self, max_bytes: int | None = None) -> None:
        self.max_bytes = max_bytes
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str, ttl_seconds: int | None) -> None:
        _ = ttl_seconds
        if self.max_bytes is not None:
            current = self.used_bytes() - self._size(key, self._items.get(key))
            if current + self._size(key, value) > self.max_bytes:
                msg = f"Cache quota of {self.max_bytes} bytes exceeded"
                raise CacheQuotaExceeded(msg)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    def used_bytes(self) -> int:
        return sum(self._size(key, value) for key, value in self._items.items())

    @staticmethod
    def _size(key: str, value: str | None) -> int:
        if value is None:
            return 0
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class RedisBackend:
    """Redis-backed store shared across worker processes."""

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        redis_client: redis.Redis[str] | None = None,
    ) -> None:
        self.redis_url = settings.REDIS_URL if redis_url is None else redis_url
        self._redis_client = redis_client

    def get_item(self, key: str) -> str | None:
        value = self._client().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str, ttl_seconds: int | None) -> None:
        if ttl_seconds:
            self._client().setex(key, ttl_seconds, value)
        else:
            self._client().set(key, value)

    def remove_item(self, key: str) -> None:
        self._client().delete(key)

    def keys(self) -> list[str]:
        return [str(key) for key in self._client().scan_iter(match="*")]

    def _client(self) -> redis.Redis[str]:
        if self._redis_client is None:
            self._redis_client = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=0.5,
                socket_timeout=0.5,
            )
        return self._redis_client


class CacheStore:
    """
    Namespaced key/value cache of JSON payloads.

    Entries are stored as ``{"data": ..., "timestamp": ...}`` under
    ``f"{prefix}{key}"``. When ``ttl_seconds`` is set, older entries are
    treated as misses and removed.
    """

    def __init__(
        self,
        *,
        prefix: str | None = None,
        backend: CacheBackend | None = None,
        ttl_seconds: int | None = None,
        wall_time_fn: Callable[[], float] | None = None,
    ) -> None:
        self.prefix = settings.CACHE_PREFIX if prefix is None else prefix
        self.backend: CacheBackend = backend or MemoryBackend()
        self.ttl_seconds = ttl_seconds
        self._wall_time_fn = wall_time_fn or time.time

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> CacheStore:
        config = config or settings
        backend: CacheBackend
        if config.CACHE_BACKEND == "redis":
            backend = RedisBackend(redis_url=config.REDIS_URL)
        else:
            backend = MemoryBackend(max_bytes=config.CACHE_MAX_BYTES)
        return cls(
            prefix=config.CACHE_PREFIX,
            backend=backend,
            ttl_seconds=config.CACHE_TTL_SECONDS,
        )

    def storage_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key: str) -> Any | None:
        storage_key = self.storage_key(key)
        try:
            raw = self.backend.get_item(storage_key)
            if raw is None:
                record_cache_lookup(layer="store", result="miss")
                return None
            parsed = json.loads(raw)
            if not isinstance(parsed, dict) or "data" not in parsed:
                msg = "cache entry is not a data envelope"
                raise ValueError(msg)
            if self._is_expired(parsed.get("timestamp")):
                self.backend.remove_item(storage_key)
                record_cache_lookup(layer="store", result="expired")
                return None
        except Exception as exc:
            logger.error("Error reading from cache", key=storage_key, error=str(exc))
            record_cache_lookup(layer="store", result="error")
            return None
        record_cache_lookup(layer="store", result="hit")
        return parsed["data"]

    def set(self, key: str, data: Any) -> None:
        storage_key = self.storage_key(key)
        try:
            payload = json.dumps(
                {"data": data, "timestamp": self._wall_time_fn()},
                ensure_ascii=False,
            )
            self.backend.set_item(storage_key, payload, self.ttl_seconds)
        except Exception as exc:
            # No eviction: once the backend is full, writes are dropped.
            logger.error("Error writing to cache", key=storage_key, error=str(exc))

    def remove(self, key: str) -> None:
        try:
            self.backend.remove_item(self.storage_key(key))
        except Exception as exc:
            logger.error("Error removing cache entry", key=key, error=str(exc))

    def clear(self) -> int:
        """Remove every entry in this store's namespace."""
        removed = 0
        try:
            for storage_key in self.backend.keys():
                if storage_key.startswith(self.prefix):
                    self.backend.remove_item(storage_key)
                    removed += 1
        except Exception as exc:
            logger.error("Error clearing cache", prefix=self.prefix, error=str(exc))
        return removed

    def _is_expired(self, timestamp: Any) -> bool:
        if self.ttl_seconds is None:
            return False
        if not isinstance(timestamp, int | float):
            return True
        return self._wall_time_fn() - float(timestamp) > self.ttl_seconds


_default_store: CacheStore | None = None


def get_default_store() -> CacheStore:
    global _default_store
    if _default_store is None:
        _default_store = CacheStore.from_settings()
    return _default_store


def get_from_cache(key: str) -> Any | None:
    return get_default_store().get(key)


def set_in_cache(key: str, data: Any) -> None:
    get_default_store().set(key, data)
