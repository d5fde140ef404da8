"""
CIA World Factbook country profile scraper.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import asdict, dataclass, field
from typing import Any

from bs4 import BeautifulSoup

from govnews.core.cache import CacheStore
from govnews.core.errors import DataProcessingError
from govnews.ingestion.base import (
    FETCH_FAILURES,
    FetchStatus,
    failure_message,
    log_fetch_failure,
    record_fetch,
    resolve_cache,
)
from govnews.ingestion.interceptor import ApiInterceptor

SOURCE = "factbook"
FACTBOOK_BASE_URL = "https://www.cia.gov/the-world-factbook/countries"
MIN_PAGE_LENGTH = 1000

FactbookProfile = dict[str, dict[str, str]]


@dataclass(slots=True)
class FactbookData:
    country_name: str
    profile: FactbookProfile = field(default_factory=dict)
    error: str | None = None

    @property
    def status(self) -> FetchStatus:
        return FetchStatus.FAILED if self.error else FetchStatus.OK


def slugify(text: str) -> str:
    """Accent-stripped, lower-case, hyphenated form of a country name."""
    normalized = unicodedata.normalize("NFD", str(text))
    stripped = "".join(char for char in normalized if not unicodedata.combining(char))
    slug = stripped.lower().strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^\w-]+", "", slug, flags=re.ASCII)
    return re.sub(r"--+", "-", slug)


async def fetch_country_profile_factbook(
    slug: str,
    *,
    interceptor: ApiInterceptor,
    cache: CacheStore | None = None,
) -> FactbookData:
    """Scrape a Factbook country page into ``{section: {label: value}}``."""
    store = resolve_cache(cache)
    cache_key = f"factbook-{slug}"
    cached = store.get(cache_key)
    if cached:
        return FactbookData(**cached)

    try:
        html = await interceptor.get(interceptor.proxied(f"{FACTBOOK_BASE_URL}/{slug}/"))
        result = parse_factbook_html(slug, html)
    except FETCH_FAILURES as exc:
        log_fetch_failure(SOURCE, exc, slug=slug)
        # Failures are not cached so the next call retries.
        return FactbookData(
            country_name=slug,
            error=f"Data could not be retrieved: {failure_message(exc)}",
        )

    store.set(cache_key, asdict(result))
    record_fetch(SOURCE, FetchStatus.OK)
    return result


def parse_factbook_html(slug: str, html: Any) -> FactbookData:
    if not isinstance(html, str) or len(html) < MIN_PAGE_LENGTH:
        msg = (
            "Fetched page content is too small, likely a proxy error, redirect, "
            "or country not found."
        )
        raise DataProcessingError(msg, context={"slug": slug})

    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    if "Search Results" in title or soup.select_one(".search-results-container"):
        msg = f'Country slug "{slug}" did not resolve to a valid page.'
        raise DataProcessingError(msg, context={"slug": slug})

    name_elem = soup.select_one("h1.hero-title")
    if name_elem is not None:
        country_name = name_elem.get_text(strip=True)
    else:
        country_name = " ".join(part.capitalize() for part in slug.split("-"))

    profile: FactbookProfile = {}
    for section in soup.select("div.wfb-category"):
        section_title_elem = section.find("h2")
        if section_title_elem is None:
            continue
        details: dict[str, str] = {}
        for row in section.select(".wfb-key-value"):
            label_elem = row.select_one("p.font-bold")
            value_elem = label_elem.find_next_sibling() if label_elem is not None else None
            if label_elem is None or value_elem is None:
                continue
            label = label_elem.get_text(strip=True)
            value = re.sub(r"\s\s+", "\n", value_elem.get_text("\n").strip()).strip()
            if label and value:
                details[label] = value
        if details:
            profile[section_title_elem.get_text(strip=True)] = details

    if not profile:
        msg = "Could not parse any profile data. Page structure might have changed."
        raise DataProcessingError(msg, context={"slug": slug})

    return FactbookData(country_name=country_name, profile=profile)
