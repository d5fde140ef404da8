from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from govnews.core.error_manager import ErrorManager, ErrorSeverity
from govnews.core.errors import (
    ApiError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
)
from govnews.core.service_monitor import ServiceCallLog
from govnews.ingestion.interceptor import ApiInterceptor, RetryConfig, _parse_retry_after

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_fetch_returns_json_response_on_success(make_interceptor) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True})

    interceptor = make_interceptor(_handler)

    response = await interceptor.fetch("https://api.test/data")

    assert response.data == {"ok": True}
    assert response.status == 200
    assert response.status_text == "OK"
    assert response.attempts == 1


@pytest.mark.asyncio
async def test_fetch_returns_text_for_non_json_content(make_interceptor) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<rss/>", headers={"content-type": "application/xml"})

    interceptor = make_interceptor(_handler)

    assert await interceptor.get("https://api.test/feed") == "<rss/>"


@pytest.mark.asyncio
async def test_persistent_503_makes_retries_plus_one_attempts(make_interceptor, reporter) -> None:
    attempts = 0

    def _handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(503, json={"message": "maintenance"})

    sleep = AsyncMock()
    interceptor = make_interceptor(_handler, max_retries=3, sleep_fn=sleep)

    with pytest.raises(ApiError) as exc_info:
        await interceptor.fetch("https://api.test/data")

    assert attempts == 4
    assert sleep.await_count == 3
    assert exc_info.value.status_code == 503
    assert exc_info.value.message == "maintenance"
    assert len(reporter.reports) == 1
    _, context = reporter.reports[0]
    assert context.severity == ErrorSeverity.HIGH
    assert context.tags == ["api-call", "http-error"]


@pytest.mark.asyncio
async def test_retry_delays_are_non_decreasing_and_capped(make_interceptor) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502)

    sleep = AsyncMock()
    interceptor = make_interceptor(
        _handler, max_retries=6, base_delay=1.0, max_delay=10.0, sleep_fn=sleep
    )

    with pytest.raises(ApiError):
        await interceptor.fetch("https://api.test/data")

    delays = [call.args[0] for call in sleep.await_args_list]
    assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]
    assert delays == sorted(delays)


def test_calculate_retry_delay_adds_bounded_jitter() -> None:
    interceptor = ApiInterceptor(
        AsyncMock(),
        AsyncMock(),
        RetryConfig(base_delay=1.0, max_delay=10.0),
        random_fn=lambda: 1.0,
    )

    assert interceptor.calculate_retry_delay(1) == pytest.approx(1.1)
    assert interceptor.calculate_retry_delay(3) == pytest.approx(4.4)
    assert interceptor.calculate_retry_delay(10) == 10.0


@pytest.mark.asyncio
async def test_429_with_retry_after_raises_rate_limit_error(make_interceptor) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, headers={"Retry-After": "30"})

    interceptor = make_interceptor(_handler)

    with pytest.raises(RateLimitError) as exc_info:
        await interceptor.fetch("https://api.test/data")

    assert exc_info.value.retry_after == 30
    assert "retry" in exc_info.value.get_user_message("en").lower()


@pytest.mark.asyncio
async def test_429_retry_waits_retry_after_capped_by_max_delay(make_interceptor) -> None:
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "30"}),
            httpx.Response(200, json={"ok": True}),
        ]
    )

    def _handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    sleep = AsyncMock()
    interceptor = make_interceptor(_handler, max_retries=2, max_delay=10.0, sleep_fn=sleep)

    response = await interceptor.fetch("https://api.test/data")

    assert response.attempts == 2
    sleep.assert_awaited_once_with(10.0)


@pytest.mark.asyncio
async def test_non_retryable_status_is_not_retried(make_interceptor) -> None:
    attempts = 0

    def _handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(401, json={"error": "bad token"})

    interceptor = make_interceptor(_handler, max_retries=3)

    with pytest.raises(AuthenticationError, match="bad token"):
        await interceptor.fetch("https://api.test/data")

    assert attempts == 1


@pytest.mark.asyncio
async def test_skip_error_reporting_suppresses_reports(make_interceptor, reporter) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    interceptor = make_interceptor(_handler)

    with pytest.raises(ApiError) as exc_info:
        await interceptor.fetch("https://api.test/data", skip_error_reporting=True)

    assert exc_info.value.message == "HTTP 404: Not Found"
    assert reporter.reports == []


@pytest.mark.asyncio
async def test_transport_errors_retry_then_raise_network_error(make_interceptor, reporter) -> None:
    attempts = 0

    def _handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("connection refused", request=request)

    interceptor = make_interceptor(_handler, max_retries=2)

    with pytest.raises(NetworkError) as exc_info:
        await interceptor.fetch("https://api.test/data")

    assert attempts == 3
    assert exc_info.value.reason == "connect"
    _, context = reporter.reports[0]
    assert context.tags == ["api-call", "network-error"]


@pytest.mark.asyncio
async def test_timeout_is_classified(make_interceptor) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    interceptor = make_interceptor(_handler)

    with pytest.raises(RequestTimeoutError):
        await interceptor.fetch("https://api.test/data", timeout=1.0)


@pytest.mark.asyncio
async def test_slow_response_hits_call_deadline(make_interceptor) -> None:
    async def _handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json={})

    interceptor = make_interceptor(_handler)

    with pytest.raises(RequestTimeoutError) as exc_info:
        await interceptor.fetch("https://api.test/slow", timeout=0.05)

    assert exc_info.value.timeout_ms == 50
    assert exc_info.value.context["endpoint"] == "https://api.test/slow"


@pytest.mark.asyncio
async def test_call_timeout_is_passed_to_http_client(make_interceptor) -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    interceptor = make_interceptor(_handler)

    await interceptor.fetch("https://api.test/data", timeout=300.0)
    await interceptor.fetch("https://api.test/data")

    assert seen[0].extensions["timeout"]["read"] == 300.0
    assert seen[1].extensions["timeout"]["read"] == 5.0


@pytest.mark.asyncio
async def test_redirect_loop_is_classified_and_not_retried(make_interceptor, reporter) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": str(request.url)})

    sleep = AsyncMock()
    interceptor = make_interceptor(_handler, max_retries=2, sleep_fn=sleep)

    with pytest.raises(ApiError) as exc_info:
        await interceptor.fetch("https://api.test/loop")

    assert exc_info.value.endpoint == "https://api.test/loop"
    assert isinstance(exc_info.value.original_error, httpx.TooManyRedirects)
    sleep.assert_not_awaited()
    _, context = reporter.reports[0]
    assert context.tags == ["api-call", "request-error"]


@pytest.mark.asyncio
async def test_user_agent_comes_from_constructor(error_manager: ErrorManager) -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    interceptor = ApiInterceptor(
        httpx.AsyncClient(transport=httpx.MockTransport(_handler)),
        error_manager,
        RetryConfig(max_retries=0),
        user_agent="govnews-test/2.0",
    )

    await interceptor.get("https://api.test/a")
    await interceptor.get("https://api.test/b", headers={"User-Agent": "override/1.0"})

    assert seen[0].headers["user-agent"] == "govnews-test/2.0"
    assert seen[1].headers["user-agent"] == "override/1.0"


@pytest.mark.asyncio
async def test_post_serializes_json_body(make_interceptor) -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": 7})

    interceptor = make_interceptor(_handler)

    result = await interceptor.post("https://api.test/items", {"name": "x"})

    assert result == {"id": 7}
    assert seen[0].method == "POST"
    assert seen[0].headers["content-type"] == "application/json"
    assert json.loads(seen[0].content) == {"name": "x"}


@pytest.mark.asyncio
async def test_every_attempt_is_recorded_in_call_log(make_interceptor) -> None:
    responses = iter([httpx.Response(500), httpx.Response(200, json={})])

    def _handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    call_log = ServiceCallLog()
    interceptor = make_interceptor(_handler, max_retries=1, call_log=call_log)

    await interceptor.fetch("https://api.worldbank.org/v2/country/TUR")

    entries = call_log.entries()
    assert [entry.status for entry in entries] == [200, 500]


def test_proxied_url_is_encoded_or_passthrough() -> None:
    proxied = ApiInterceptor(AsyncMock(), AsyncMock(), proxy_url="https://proxy.test/raw?url=")
    direct = ApiInterceptor(AsyncMock(), AsyncMock(), proxy_url="")

    assert (
        proxied.proxied("https://api.test/a?b=1")
        == "https://proxy.test/raw?url=https%3A%2F%2Fapi.test%2Fa%3Fb%3D1"
    )
    assert direct.proxied("https://api.test/a") == "https://api.test/a"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("30", 30), (" 5 ", 5), ("1.9", 1), ("", None), (None, None), ("soon", None), ("-1", None)],
)
def test_parse_retry_after(raw: str | None, expected: int | None) -> None:
    assert _parse_retry_after(raw) == expected
