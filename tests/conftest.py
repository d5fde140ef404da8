"""
Pytest configuration and shared fixtures.

This module provides:
- In-memory cache and error manager fixtures
- An interceptor factory backed by ``httpx.MockTransport``
- Sample payloads shared by fetcher tests
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from govnews.core.cache import CacheStore, MemoryBackend
from govnews.core.error_manager import ErrorContext, ErrorManager
from govnews.core.errors import AppError
from govnews.core.service_monitor import ServiceCallLog
from govnews.ingestion.interceptor import ApiInterceptor, RetryConfig

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingReporter:
    """Reporter that keeps every report for assertions."""

    def __init__(self) -> None:
        self.reports: list[tuple[AppError, ErrorContext]] = []

    async def report(self, error: AppError, context: ErrorContext) -> None:
        self.reports.append((error, context))


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def memory_cache() -> CacheStore:
    """Fresh in-memory cache store."""
    return CacheStore(prefix="test-cache-", backend=MemoryBackend())


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def error_manager(reporter: RecordingReporter) -> ErrorManager:
    """Error manager without console output that records reports."""
    return ErrorManager([reporter], enable_console=False, user_agent="test-agent")


@pytest.fixture
def make_interceptor(
    error_manager: ErrorManager,
) -> Callable[..., ApiInterceptor]:
    """Build an interceptor whose HTTP calls are answered by ``handler``."""

    def _factory(
        handler: Handler,
        *,
        max_retries: int = 0,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        sleep_fn: AsyncMock | None = None,
        proxy_url: str = "",
        call_log: ServiceCallLog | None = None,
    ) -> ApiInterceptor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return ApiInterceptor(
            client,
            error_manager,
            RetryConfig(max_retries=max_retries, base_delay=base_delay, max_delay=max_delay),
            sleep_fn=sleep_fn or AsyncMock(),
            call_log=call_log,
            timeout_seconds=5.0,
            proxy_url=proxy_url,
            random_fn=lambda: 0.0,
        )

    return _factory


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def sample_rest_countries() -> list[dict[str, Any]]:
    """REST Countries records for a handful of supported countries."""
    return [
        {
            "name": {"common": "Turkey", "official": "Republic of Türkiye"},
            "translations": {"tur": {"common": "Türkiye", "official": "Türkiye Cumhuriyeti"}},
            "flags": {"svg": "https://flagcdn.com/tr.svg"},
            "cca2": "TR",
            "cca3": "TUR",
            "altSpellings": ["TR", "Turkiye"],
            "latlng": [39.0, 35.0],
        },
        {
            "name": {"common": "Germany", "official": "Federal Republic of Germany"},
            "translations": {
                "tur": {"common": "Almanya", "official": "Almanya Federal Cumhuriyeti"}
            },
            "flags": {"svg": "https://flagcdn.com/de.svg"},
            "cca2": "DE",
            "cca3": "DEU",
            "altSpellings": ["DE", "Deutschland"],
            "latlng": [51.0, 9.0],
        },
        {
            "name": {"common": "Russia", "official": "Russian Federation"},
            "translations": {"tur": {"common": "Rusya", "official": "Rusya Federasyonu"}},
            "flags": {"svg": "https://flagcdn.com/ru.svg"},
            "cca2": "RU",
            "cca3": "RUS",
            "altSpellings": ["RU", "Rossiya"],
            "latlng": [60.0, 100.0],
        },
    ]


@pytest.fixture
def sample_reliefweb_rss() -> str:
    """ReliefWeb country RSS feed."""
    return """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
    <channel>
        <title>ReliefWeb - Updates</title>
        <link>https://reliefweb.int</link>
        <item>
            <title>Flood response update</title>
            <link>https://reliefweb.int/report/1</link>
            <pubDate>Mon, 15 Jan 2024 10:00:00 GMT</pubDate>
            <description>&lt;p&gt;Heavy &lt;b&gt;rain&lt;/b&gt; displaced families.&lt;/p&gt;</description>
        </item>
        <item>
            <title>Earthquake situation report</title>
            <link>https://reliefweb.int/report/2</link>
            <pubDate>Tue, 16 Jan 2024 11:00:00 GMT</pubDate>
            <description>Aid convoys reached the region.</description>
        </item>
    </channel>
</rss>
"""
