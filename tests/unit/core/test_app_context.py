from __future__ import annotations

import httpx
import pytest

from govnews.core.app_context import AppContext
from govnews.core.config import Settings

pytestmark = pytest.mark.unit


def _settings(**overrides) -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        CORS_PROXY_URL="",
        HTTP_USER_AGENT="govnews-test/1.0",
        HTTP_MAX_RETRIES=0,
        ASYNC_DATA_CACHE_TTL_SECONDS=42,
        **overrides,
    )


@pytest.mark.asyncio
async def test_context_wires_shared_client_and_call_log(memory_cache, error_manager) -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    async with AppContext.create(
        _settings(),
        transport=httpx.MockTransport(_handler),
        error_manager=error_manager,
        cache=memory_cache,
    ) as ctx:
        result = await ctx.interceptor.get("https://api.worldbank.org/v2/country/TUR")

        assert result == {"ok": True}
        assert seen[0].headers["user-agent"] == "govnews-test/1.0"
        assert [entry.service_name for entry in ctx.call_log.entries()] == ["api.worldbank.org"]
        assert ctx.cache is memory_cache
        assert ctx.gemini.cache is memory_cache
        assert ctx.gemini.interceptor is ctx.interceptor
        assert ctx.ttl_cache.default_ttl == 42

    assert ctx.http_client.is_closed


@pytest.mark.asyncio
async def test_context_builds_defaults_from_settings() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(200))

    async with AppContext.create(_settings(), transport=transport) as ctx:
        assert ctx.config.ENVIRONMENT == "test"
        assert ctx.api_keys.list_keys() == []
        assert ctx.interceptor.proxy_url == ""
