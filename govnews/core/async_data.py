"""
Async data loading with retry, an in-memory TTL cache and stale-result
protection.

A loader owns one ``AsyncDataState``. Every ``execute``/``refresh`` starts a
new generation and cancels the previous in-flight task; results are only
committed while their generation is current, so a superseded call can never
overwrite a newer one.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

import structlog

from govnews.core.config import settings
from govnews.core.observability import record_cache_lookup

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Coroutine[Any, Any, None]]


@dataclass(slots=True)
class AsyncDataState(Generic[T]):
    data: T | None = None
    loading: bool = False
    error: str | None = None
    last_fetched: datetime | None = None


@dataclass(slots=True)
class _TTLEntry:
    data: Any
    timestamp: float
    ttl: float


@dataclass(slots=True, frozen=True)
class CacheStats:
    size: int
    keys: list[str] = field(default_factory=list)
    total_bytes: int = 0


class TTLCache:
    """Process-wide in-memory cache with per-entry expiry (seconds)."""

    def __init__(
        self,
        default_ttl: float | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.default_ttl = (
            settings.ASYNC_DATA_CACHE_TTL_SECONDS if default_ttl is None else default_ttl
        )
        self._clock = clock or time.monotonic
        self._entries: dict[str, _TTLEntry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            record_cache_lookup(layer="ttl", result="miss")
            return None
        if self._clock() - entry.timestamp > entry.ttl:
            del self._entries[key]
            record_cache_lookup(layer="ttl", result="expired")
            return None
        record_cache_lookup(layer="ttl", result="hit")
        return entry.data

    def set(self, key: str, data: Any, ttl: float | None = None) -> None:
        self._entries[key] = _TTLEntry(
            data=data,
            timestamp=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> CacheStats:
        values = [entry.data for entry in self._entries.values()]
        return CacheStats(
            size=len(self._entries),
            keys=list(self._entries),
            total_bytes=len(json.dumps(values, default=str)),
        )


_default_ttl_cache: TTLCache | None = None


def get_default_ttl_cache() -> TTLCache:
    global _default_ttl_cache
    if _default_ttl_cache is None:
        _default_ttl_cache = TTLCache()
    return _default_ttl_cache


def clear_all_cache() -> None:
    get_default_ttl_cache().clear()


def get_cache_stats() -> CacheStats:
    return get_default_ttl_cache().stats()


class AsyncDataLoader(Generic[T]):
    """
    Drive a zero-argument async fetch function and expose its state.

    A fresh TTL cache hit sets state without invoking ``fetch_fn``. Failures
    are retried ``retries`` times with ``retry_delay * 2**attempt`` backoff
    before the loader settles into the error state and calls ``on_error``.
    """

    def __init__(
        self,
        fetch_fn: Callable[[], Awaitable[T]],
        *,
        cache_key: str | None = None,
        cache_ttl: float | None = None,
        retries: int = 0,
        retry_delay: float = 1.0,
        on_success: Callable[[T], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
        ttl_cache: TTLCache | None = None,
        sleep_fn: SleepFn | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        if retries < 0:
            msg = "retries must be >= 0"
            raise ValueError(msg)
        self.fetch_fn = fetch_fn
        self.cache_key = cache_key
        self.cache_ttl = cache_ttl
        self.retries = retries
        self.retry_delay = retry_delay
        self.on_success = on_success
        self.on_error = on_error
        self.ttl_cache = ttl_cache or get_default_ttl_cache()
        self._sleep = sleep_fn or asyncio.sleep
        self._now = now_fn or (lambda: datetime.now(tz=UTC))
        self._state: AsyncDataState[T] = AsyncDataState()
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def state(self) -> AsyncDataState[T]:
        return replace(self._state)

    @property
    def data(self) -> T | None:
        return self._state.data

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def error(self) -> str | None:
        return self._state.error

    @property
    def last_fetched(self) -> datetime | None:
        return self._state.last_fetched

    @property
    def is_stale(self) -> bool:
        if self.cache_key is None:
            return False
        return self.ttl_cache.get(self.cache_key) is None

    async def execute(self) -> None:
        self._ensure_open()
        if self.cache_key is not None:
            cached = self.ttl_cache.get(self.cache_key)
            if cached is not None:
                self._state = AsyncDataState(data=cached, last_fetched=self._now())
                return
        await self._start()

    async def refresh(self) -> None:
        """Evict the cached value and fetch again."""
        self._ensure_open()
        if self.cache_key is not None:
            self.ttl_cache.delete(self.cache_key)
        await self._start()

    def clear(self) -> None:
        """Cancel in-flight work and pending retries, evict, and reset state."""
        self._supersede()
        if self.cache_key is not None:
            self.ttl_cache.delete(self.cache_key)
        self._state = AsyncDataState()

    def close(self) -> None:
        """Dispose the loader; no state changes happen afterwards."""
        self._supersede()
        self._closed = True

    async def __aenter__(self) -> AsyncDataLoader[T]:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        task = self._task
        self.close()
        if task is not None:
            await asyncio.wait({task})

    async def _start(self) -> None:
        self._supersede()
        generation = self._generation
        task = asyncio.create_task(self._run(generation))
        self._task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise

    def _supersede(self) -> None:
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    async def _run(self, generation: int) -> None:
        for attempt in range(self.retries + 1):
            self._state = replace(self._state, loading=True, error=None)
            try:
                data = await self.fetch_fn()
            except Exception as exc:
                if not self._is_current(generation):
                    return
                if attempt < self.retries:
                    delay = self.retry_delay * (2**attempt)
                    logger.debug(
                        "Async data fetch failed; retrying",
                        cache_key=self.cache_key,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                        error=str(exc),
                    )
                    await self._sleep(delay)
                    continue
                self._state = replace(
                    self._state,
                    loading=False,
                    error=str(exc) or "Unknown error occurred",
                )
                if self.on_error is not None:
                    self.on_error(exc)
                return

            if not self._is_current(generation):
                return
            self._state = AsyncDataState(data=data, last_fetched=self._now())
            if self.cache_key is not None:
                self.ttl_cache.set(self.cache_key, data, self.cache_ttl)
            if self.on_success is not None:
                self.on_success(data)
            return

    def _ensure_open(self) -> None:
        if self._closed:
            msg = "AsyncDataLoader is closed"
            raise RuntimeError(msg)


class MultiAsyncDataLoader:
    """Run several named loaders concurrently and aggregate their state."""

    def __init__(
        self,
        sources: Mapping[str, Callable[[], Awaitable[Any]]],
        *,
        cache_keys: Mapping[str, str] | None = None,
        on_success: Callable[[dict[str, Any]], None] | None = None,
        on_error: Callable[[dict[str, str]], None] | None = None,
        **options: Any,
    ) -> None:
        keys = dict(cache_keys or {})
        self.loaders: dict[str, AsyncDataLoader[Any]] = {
            name: AsyncDataLoader(fetch_fn, cache_key=keys.get(name), **options)
            for name, fetch_fn in sources.items()
        }
        self.on_success = on_success
        self.on_error = on_error

    @property
    def data(self) -> dict[str, Any]:
        return {
            name: loader.data
            for name, loader in self.loaders.items()
            if loader.last_fetched is not None
        }

    @property
    def errors(self) -> dict[str, str]:
        return {
            name: loader.error
            for name, loader in self.loaders.items()
            if loader.error is not None
        }

    @property
    def loading(self) -> dict[str, bool]:
        return {name: loader.loading for name, loader in self.loaders.items()}

    @property
    def all_loaded(self) -> bool:
        return all(
            loader.last_fetched is not None or loader.error is not None
            for loader in self.loaders.values()
        )

    async def execute_all(self) -> None:
        await self._settle([loader.execute() for loader in self.loaders.values()])

    async def refresh_all(self) -> None:
        await self._settle([loader.refresh() for loader in self.loaders.values()])

    def close(self) -> None:
        for loader in self.loaders.values():
            loader.close()

    async def _settle(self, calls: list[Coroutine[Any, Any, None]]) -> None:
        results = await asyncio.gather(*calls, return_exceptions=True)
        for name, result in zip(self.loaders, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("Async data loader raised", source=name, error=str(result))

        errors = self.errors
        if errors and self.on_error is not None:
            self.on_error(errors)
        elif not errors and self.on_success is not None:
            self.on_success(self.data)
