"""
ReliefWeb country RSS feed fetcher.
"""

from __future__ import annotations

import calendar
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

import feedparser
import structlog
from bs4 import BeautifulSoup

from govnews.core.cache import CacheStore
from govnews.core.errors import ApiError
from govnews.ingestion.base import (
    FETCH_FAILURES,
    FetchStatus,
    failure_message,
    log_fetch_failure,
    record_fetch,
    resolve_cache,
)
from govnews.ingestion.interceptor import ApiInterceptor

logger = structlog.get_logger(__name__)

SOURCE = "reliefweb"
RELIEFWEB_RSS_BASE_URL = "https://reliefweb.int/country"
MAX_UPDATES = 15


@dataclass(slots=True)
class ReliefWebUpdate:
    title: str
    link: str
    published_date: str
    description: str
    country: str
    message: str | None = None

    @property
    def status(self) -> FetchStatus:
        return FetchStatus.FAILED if self.message else FetchStatus.OK


def _error_result(country_name: str, message: str) -> list[ReliefWebUpdate]:
    return [
        ReliefWebUpdate(
            title="",
            link="",
            published_date="",
            description="",
            country=country_name,
            message=message,
        )
    ]


async def fetch_reliefweb_updates(
    iso3: str,
    country_name: str,
    *,
    interceptor: ApiInterceptor,
    cache: CacheStore | None = None,
) -> list[ReliefWebUpdate]:
    """Fetch up to 15 recent humanitarian updates for a country."""
    if not iso3:
        logger.warning("ReliefWeb fetch called with no country ISO3 code")
        return _error_result(country_name, "Country ISO code not found.")

    store = resolve_cache(cache)
    cache_key = f"reliefweb-{iso3}"
    cached = store.get(cache_key)
    if cached is not None:
        return [ReliefWebUpdate(**row) for row in cached]

    try:
        raw_feed = await interceptor.get(
            interceptor.proxied(f"{RELIEFWEB_RSS_BASE_URL}/{iso3.lower()}/rss.xml")
        )
        updates = parse_reliefweb_feed(raw_feed, country_name)
    except ApiError as exc:
        if exc.status_code == 404:
            # No feed exists for some countries.
            record_fetch(SOURCE, FetchStatus.MISSING)
            return []
        log_fetch_failure(SOURCE, exc, iso3=iso3)
        return _error_result(country_name, failure_message(exc))
    except FETCH_FAILURES as exc:
        log_fetch_failure(SOURCE, exc, iso3=iso3)
        return _error_result(country_name, failure_message(exc))

    store.set(cache_key, [asdict(update) for update in updates])
    record_fetch(SOURCE, FetchStatus.OK)
    return updates


def parse_reliefweb_feed(raw_feed: Any, country_name: str) -> list[ReliefWebUpdate]:
    if not isinstance(raw_feed, str | bytes):
        msg = "Failed to parse RSS feed."
        raise ValueError(msg)
    parsed = feedparser.parse(raw_feed)
    if getattr(parsed, "bozo", False) and not parsed.entries:
        logger.error(
            "Error parsing ReliefWeb XML",
            bozo_exception=str(getattr(parsed, "bozo_exception", "")),
        )
        msg = "Failed to parse RSS feed."
        raise ValueError(msg)

    return [
        ReliefWebUpdate(
            title=str(entry.get("title", "")),
            link=str(entry.get("link", "")),
            published_date=_published_iso(entry),
            description=strip_html(str(entry.get("description", ""))),
            country=country_name,
        )
        for entry in parsed.entries[:MAX_UPDATES]
    ]


def strip_html(html: str) -> str:
    if not html:
        return ""
    return BeautifulSoup(html, "html.parser").get_text().strip()


def _published_iso(entry: Any) -> str:
    published = entry.get("published_parsed") or entry.get("updated_parsed")
    if published is None:
        return ""
    return datetime.fromtimestamp(calendar.timegm(published), tz=UTC).isoformat()
