from __future__ import annotations

import httpx
import pytest

from govnews.core.errors import DataProcessingError
from govnews.ingestion.base import FetchStatus
from govnews.ingestion.factbook import (
    fetch_country_profile_factbook,
    parse_factbook_html,
    slugify,
)

pytestmark = pytest.mark.unit

_PADDING = "<!-- " + "layout " * 200 + "-->"


def _page(body: str, title: str = "Turkey (Turkiye) - The World Factbook") -> str:
    return f"<html><head><title>{title}</title></head><body>{_PADDING}{body}</body></html>"


_PROFILE_BODY = """
<h1 class="hero-title">Turkey (Turkiye)</h1>
<div class="wfb-category">
  <h2>Geography</h2>
  <div class="wfb-key-value">
    <p class="font-bold">Area</p>
    <p>total: 783,562 sq km<br/>land: 769,632 sq km</p>
  </div>
  <div class="wfb-key-value">
    <p class="font-bold">Climate</p>
    <p>temperate</p>
  </div>
  <div class="wfb-key-value">
    <p class="font-bold">Orphan label</p>
  </div>
</div>
<div class="wfb-category">
  <h2>Government</h2>
  <div class="wfb-key-value">
    <p class="font-bold">Capital</p>
    <p>Ankara</p>
  </div>
</div>
<div class="wfb-category">
  <div class="wfb-key-value"><p class="font-bold">No heading</p><p>ignored</p></div>
</div>
"""


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("United States", "united-states"),
        ("Côte d'Ivoire", "cote-divoire"),
        ("  Bosnia  and  Herzegovina ", "bosnia-and-herzegovina"),
        ("Guinea--Bissau", "guinea-bissau"),
    ],
)
def test_slugify(text: str, expected: str) -> None:
    assert slugify(text) == expected


def test_parse_extracts_sections_and_labels() -> None:
    result = parse_factbook_html("turkey", _page(_PROFILE_BODY))

    assert result.country_name == "Turkey (Turkiye)"
    assert result.status == FetchStatus.OK
    assert set(result.profile) == {"Geography", "Government"}
    assert result.profile["Geography"]["Climate"] == "temperate"
    assert result.profile["Geography"]["Area"] == "total: 783,562 sq km\nland: 769,632 sq km"
    assert "Orphan label" not in result.profile["Geography"]
    assert result.profile["Government"] == {"Capital": "Ankara"}


def test_parse_falls_back_to_slug_for_name() -> None:
    body = _PROFILE_BODY.replace('<h1 class="hero-title">Turkey (Turkiye)</h1>', "")

    result = parse_factbook_html("south-africa", _page(body))

    assert result.country_name == "South Africa"


def test_short_page_is_rejected() -> None:
    with pytest.raises(DataProcessingError, match="too small"):
        parse_factbook_html("turkey", "<html></html>")


def test_search_results_page_is_rejected() -> None:
    with pytest.raises(DataProcessingError, match="did not resolve"):
        parse_factbook_html("atlantis", _page(_PROFILE_BODY, title="Search Results"))


def test_page_without_profile_data_is_rejected() -> None:
    with pytest.raises(DataProcessingError, match="Could not parse"):
        parse_factbook_html("turkey", _page("<p>Nothing here</p>"))


@pytest.mark.asyncio
async def test_fetch_caches_successful_profile(make_interceptor, memory_cache) -> None:
    calls = 0

    def _handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        assert request.url.path == "/the-world-factbook/countries/turkey/"
        return httpx.Response(200, text=_page(_PROFILE_BODY), headers={"content-type": "text/html"})

    interceptor = make_interceptor(_handler)

    first = await fetch_country_profile_factbook(
        "turkey", interceptor=interceptor, cache=memory_cache
    )
    second = await fetch_country_profile_factbook(
        "turkey", interceptor=interceptor, cache=memory_cache
    )

    assert calls == 1
    assert second == first


@pytest.mark.asyncio
async def test_fetch_failure_is_not_cached(make_interceptor, memory_cache) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html/>", headers={"content-type": "text/html"})

    interceptor = make_interceptor(_handler)

    result = await fetch_country_profile_factbook(
        "turkey", interceptor=interceptor, cache=memory_cache
    )

    assert result.status == FetchStatus.FAILED
    assert result.error is not None
    assert result.error.startswith("Data could not be retrieved:")
    assert memory_cache.get("factbook-turkey") is None
