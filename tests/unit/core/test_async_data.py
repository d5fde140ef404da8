from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from govnews.core.async_data import AsyncDataLoader, MultiAsyncDataLoader, TTLCache

pytestmark = pytest.mark.unit


class _Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_ttl_cache_expires_entries_and_reports_stats() -> None:
    clock = _Clock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("a", {"value": 1})
    cache.set("b", [1, 2], ttl=100)

    stats = cache.stats()
    assert stats.size == 2
    assert stats.keys == ["a", "b"]
    assert stats.total_bytes > 0

    clock.now = 11
    assert cache.get("a") is None
    assert cache.get("b") == [1, 2]
    assert cache.stats().keys == ["b"]


@pytest.mark.asyncio
async def test_execute_commits_data_caches_and_calls_on_success() -> None:
    cache = TTLCache(default_ttl=60)
    on_success = MagicMock()
    fetch = AsyncMock(return_value=["article"])
    loader = AsyncDataLoader(fetch, cache_key="news", ttl_cache=cache, on_success=on_success)

    await loader.execute()

    assert loader.data == ["article"]
    assert loader.loading is False
    assert loader.error is None
    assert loader.last_fetched is not None
    assert cache.get("news") == ["article"]
    on_success.assert_called_once_with(["article"])


@pytest.mark.asyncio
async def test_fresh_cache_hit_skips_fetch() -> None:
    cache = TTLCache(default_ttl=60)
    cache.set("news", ["cached"])
    fetch = AsyncMock(return_value=["live"])
    loader = AsyncDataLoader(fetch, cache_key="news", ttl_cache=cache)

    await loader.execute()

    fetch.assert_not_awaited()
    assert loader.data == ["cached"]
    assert loader.last_fetched is not None


@pytest.mark.asyncio
async def test_expired_cache_entry_invokes_fetch_again() -> None:
    clock = _Clock()
    cache = TTLCache(default_ttl=5, clock=clock)
    fetch = AsyncMock(side_effect=["first", "second"])
    loader = AsyncDataLoader(fetch, cache_key="news", ttl_cache=cache)

    await loader.execute()
    await loader.execute()
    assert fetch.await_count == 1

    clock.now = 6
    assert loader.is_stale is True
    await loader.execute()

    assert fetch.await_count == 2
    assert loader.data == "second"


@pytest.mark.asyncio
async def test_failures_retry_with_exponential_backoff() -> None:
    sleep = AsyncMock()
    fetch = AsyncMock(side_effect=[RuntimeError("one"), RuntimeError("two"), "ok"])
    loader = AsyncDataLoader(
        fetch,
        retries=2,
        retry_delay=1.5,
        ttl_cache=TTLCache(),
        sleep_fn=sleep,
    )

    await loader.execute()

    assert loader.data == "ok"
    assert loader.error is None
    assert [call.args[0] for call in sleep.await_args_list] == [1.5, 3.0]


@pytest.mark.asyncio
async def test_exhausted_retries_settle_into_error_state() -> None:
    on_error = MagicMock()
    fetch = AsyncMock(side_effect=RuntimeError("service down"))
    loader = AsyncDataLoader(
        fetch,
        cache_key="news",
        retries=1,
        ttl_cache=TTLCache(),
        on_error=on_error,
        sleep_fn=AsyncMock(),
    )

    await loader.execute()

    assert fetch.await_count == 2
    assert loader.error == "service down"
    assert loader.loading is False
    assert loader.is_stale is True
    on_error.assert_called_once()


@pytest.mark.asyncio
async def test_superseded_result_never_overwrites_newer_result() -> None:
    started = asyncio.Event()
    release = asyncio.Event()
    calls = 0

    async def _fetch() -> str:
        nonlocal calls
        calls += 1
        if calls == 1:
            started.set()
            await release.wait()
            return "stale"
        return "fresh"

    loader = AsyncDataLoader(_fetch, ttl_cache=TTLCache())
    first = asyncio.create_task(loader.execute())
    await started.wait()

    await loader.refresh()
    release.set()
    await first

    assert loader.data == "fresh"
    assert calls == 2


@pytest.mark.asyncio
async def test_refresh_bypasses_cache() -> None:
    cache = TTLCache(default_ttl=60)
    cache.set("news", "cached")
    fetch = AsyncMock(return_value="live")
    loader = AsyncDataLoader(fetch, cache_key="news", ttl_cache=cache)

    await loader.refresh()

    fetch.assert_awaited_once()
    assert loader.data == "live"
    assert cache.get("news") == "live"


@pytest.mark.asyncio
async def test_clear_cancels_pending_retry_and_resets_state() -> None:
    sleeping = asyncio.Event()

    async def _blocking_sleep(_delay: float) -> None:
        sleeping.set()
        await asyncio.Event().wait()

    cache = TTLCache(default_ttl=60)
    fetch = AsyncMock(side_effect=RuntimeError("down"))
    loader = AsyncDataLoader(
        fetch,
        cache_key="news",
        retries=3,
        ttl_cache=cache,
        sleep_fn=_blocking_sleep,
    )
    running = asyncio.create_task(loader.execute())
    await sleeping.wait()

    loader.clear()
    await running

    assert fetch.await_count == 1
    assert loader.data is None
    assert loader.loading is False
    assert loader.error is None
    assert loader.last_fetched is None


@pytest.mark.asyncio
async def test_close_prevents_further_state_changes() -> None:
    started = asyncio.Event()
    release = asyncio.Event()

    async def _fetch() -> str:
        started.set()
        await release.wait()
        return "late"

    loader = AsyncDataLoader(_fetch, ttl_cache=TTLCache())
    running = asyncio.create_task(loader.execute())
    await started.wait()

    loader.close()
    release.set()
    await running

    assert loader.data is None
    with pytest.raises(RuntimeError, match="closed"):
        await loader.execute()


def test_negative_retries_rejected() -> None:
    with pytest.raises(ValueError, match="retries"):
        AsyncDataLoader(AsyncMock(), retries=-1)


@pytest.mark.asyncio
async def test_multi_loader_aggregates_data_and_errors() -> None:
    on_error = MagicMock()
    on_success = MagicMock()
    loader = MultiAsyncDataLoader(
        {
            "gdelt": AsyncMock(return_value=["article"]),
            "ucdp": AsyncMock(side_effect=RuntimeError("timeout")),
        },
        cache_keys={"gdelt": "gdelt-Turkey"},
        ttl_cache=TTLCache(),
        on_success=on_success,
        on_error=on_error,
    )

    await loader.execute_all()

    assert loader.data == {"gdelt": ["article"]}
    assert loader.errors == {"ucdp": "timeout"}
    assert loader.all_loaded is True
    assert loader.loading == {"gdelt": False, "ucdp": False}
    on_error.assert_called_once_with({"ucdp": "timeout"})
    on_success.assert_not_called()


@pytest.mark.asyncio
async def test_multi_loader_refresh_all_refetches_every_source() -> None:
    gdelt = AsyncMock(side_effect=["a", "b"])
    ucdp = AsyncMock(side_effect=[1, 2])
    on_success = MagicMock()
    loader = MultiAsyncDataLoader(
        {"gdelt": gdelt, "ucdp": ucdp},
        cache_keys={"gdelt": "g", "ucdp": "u"},
        ttl_cache=TTLCache(default_ttl=60),
        on_success=on_success,
    )

    await loader.execute_all()
    await loader.refresh_all()

    assert loader.data == {"gdelt": "b", "ucdp": 2}
    assert on_success.call_count == 2
