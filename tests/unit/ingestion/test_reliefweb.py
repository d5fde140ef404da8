from __future__ import annotations

import httpx
import pytest

from govnews.ingestion.base import FetchStatus
from govnews.ingestion.reliefweb import (
    fetch_reliefweb_updates,
    parse_reliefweb_feed,
    strip_html,
)

pytestmark = pytest.mark.unit


def _rss_response(body: str) -> httpx.Response:
    return httpx.Response(200, text=body, headers={"content-type": "application/rss+xml"})


def test_parse_feed_strips_markup_and_normalizes_dates(sample_reliefweb_rss: str) -> None:
    updates = parse_reliefweb_feed(sample_reliefweb_rss, "Turkey")

    assert [update.title for update in updates] == [
        "Flood response update",
        "Earthquake situation report",
    ]
    assert updates[0].description == "Heavy rain displaced families."
    assert updates[0].link == "https://reliefweb.int/report/1"
    assert updates[0].published_date == "2024-01-15T10:00:00+00:00"
    assert updates[0].country == "Turkey"
    assert updates[0].status == FetchStatus.OK


def test_parse_feed_caps_number_of_updates() -> None:
    items = "".join(
        f"<item><title>Update {index}</title><link>https://reliefweb.int/{index}</link></item>"
        for index in range(20)
    )
    feed = f'<?xml version="1.0"?><rss version="2.0"><channel>{items}</channel></rss>'

    assert len(parse_reliefweb_feed(feed, "Turkey")) == 15


def test_parse_feed_rejects_non_text_payload() -> None:
    with pytest.raises(ValueError, match="Failed to parse RSS feed"):
        parse_reliefweb_feed({"unexpected": "json"}, "Turkey")


def test_strip_html_handles_empty_input() -> None:
    assert strip_html("") == ""
    assert strip_html("<div> Aid <i>arrived</i> </div>") == "Aid arrived"


@pytest.mark.asyncio
async def test_fetch_requests_lowercase_iso_feed_and_caches(
    make_interceptor, memory_cache, sample_reliefweb_rss: str
) -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return _rss_response(sample_reliefweb_rss)

    interceptor = make_interceptor(_handler)

    first = await fetch_reliefweb_updates(
        "TUR", "Turkey", interceptor=interceptor, cache=memory_cache
    )
    second = await fetch_reliefweb_updates(
        "TUR", "Turkey", interceptor=interceptor, cache=memory_cache
    )

    assert len(seen) == 1
    assert str(seen[0].url) == "https://reliefweb.int/country/tur/rss.xml"
    assert len(first) == 2
    assert second == first


@pytest.mark.asyncio
async def test_missing_feed_yields_empty_list(make_interceptor, memory_cache) -> None:
    interceptor = make_interceptor(lambda request: httpx.Response(404))

    updates = await fetch_reliefweb_updates(
        "XKX", "Kosovo", interceptor=interceptor, cache=memory_cache
    )

    assert updates == []


@pytest.mark.asyncio
async def test_server_error_yields_single_error_record(make_interceptor, memory_cache) -> None:
    interceptor = make_interceptor(lambda request: httpx.Response(500))

    updates = await fetch_reliefweb_updates(
        "TUR", "Turkey", interceptor=interceptor, cache=memory_cache
    )

    assert len(updates) == 1
    assert updates[0].status == FetchStatus.FAILED
    assert updates[0].message == "HTTP 500: Internal Server Error"
    assert memory_cache.get("reliefweb-TUR") is None


@pytest.mark.asyncio
async def test_missing_iso_code_short_circuits(make_interceptor, memory_cache) -> None:
    interceptor = make_interceptor(lambda request: httpx.Response(200))

    updates = await fetch_reliefweb_updates(
        "", "Turkey", interceptor=interceptor, cache=memory_cache
    )

    assert updates[0].message == "Country ISO code not found."
