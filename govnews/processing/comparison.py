"""
Side-by-side comparison of up to four countries.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog

from govnews.core.cache import CacheStore
from govnews.core.country_mappings import CountryMappings
from govnews.core.errors import ValidationError
from govnews.ingestion.base import SourceResult
from govnews.ingestion.gdelt import GdeltArticle, fetch_gdelt_articles
from govnews.ingestion.interceptor import ApiInterceptor
from govnews.ingestion.ucdp import ConflictPoint, fetch_conflict_events
from govnews.ingestion.worldbank import WorldBankIndicator, fetch_world_bank_data

logger = structlog.get_logger(__name__)

MAX_COMPARED_COUNTRIES = 4
RECENT_CONFLICT_DAYS = 30
NEGATIVE_KEYWORDS = ("protest", "crisis", "attack", "conflict", "disaster", "sanctions")
NOT_AVAILABLE = "N/A"

_COMPACT_UNITS = ((1e12, "T"), (1e9, "B"), (1e6, "M"), (1e3, "K"))


@dataclass(slots=True)
class CountryComparison:
    country: str
    flag_url: str | None
    gdp: str
    recent_conflicts: str
    negative_news_ratio: str


def format_compact_number(value: float) -> str:
    """Compact notation with at most two fraction digits, e.g. ``25.46T``."""
    scaled, suffix = round(value, 2), ""
    for threshold, unit in reversed(_COMPACT_UNITS):
        candidate = round(value / threshold, 2)
        if abs(candidate) >= 1:
            scaled, suffix = candidate, unit
    return f"{_trim(scaled)}{suffix}"


def _trim(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def format_gdp(indicators: Sequence[WorldBankIndicator] | None) -> str:
    if not indicators:
        return NOT_AVAILABLE
    gdp = next((row for row in indicators if row.indicator_code == "NY.GDP.MKTP.CD"), None)
    if gdp is None or gdp.value is None:
        return NOT_AVAILABLE
    return format_compact_number(gdp.value)


def count_recent_conflicts(
    result: SourceResult[ConflictPoint] | None,
    *,
    now: datetime | None = None,
    days: int = RECENT_CONFLICT_DAYS,
) -> str:
    if result is None or not result.ok:
        return NOT_AVAILABLE
    cutoff = (now or datetime.now(tz=UTC)) - timedelta(days=days)
    count = 0
    for event in result.items:
        started = _parse_event_date(event.date)
        if started is not None and started > cutoff:
            count += 1
    return str(count)


def negative_news_ratio(result: SourceResult[GdeltArticle] | None) -> str:
    if result is None or not result.items:
        return NOT_AVAILABLE
    negative = sum(
        1
        for article in result.items
        if any(keyword in article.title.lower() for keyword in NEGATIVE_KEYWORDS)
    )
    return f"{negative / len(result.items) * 100:.0f}%"


def _parse_event_date(raw: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


async def compare_countries(
    countries: Sequence[str],
    *,
    mappings: CountryMappings,
    interceptor: ApiInterceptor,
    cache: CacheStore | None = None,
    now: datetime | None = None,
) -> list[CountryComparison]:
    """Fetch GDP, recent conflict count and negative-news ratio for each country."""
    selected = list(dict.fromkeys(countries))
    if not selected:
        msg = "Select at least one country to compare."
        raise ValidationError(
            msg, field="countries", expected_type="list[str]", received_value=countries
        )
    if len(selected) > MAX_COMPARED_COUNTRIES:
        msg = f"At most {MAX_COMPARED_COUNTRIES} countries can be compared."
        raise ValidationError(
            msg, field="countries", expected_type="list[str]", received_value=countries
        )
    unknown = [name for name in selected if name not in mappings.turkish_to_ucdp_name]
    if unknown:
        msg = f"Unknown countries: {', '.join(unknown)}"
        raise ValidationError(
            msg, field="countries", expected_type="list[str]", received_value=unknown
        )

    async def _world_bank(cca3: str | None) -> list[WorldBankIndicator] | None:
        if not cca3:
            return None
        return await fetch_world_bank_data(cca3, interceptor=interceptor, cache=cache)

    async def _compare(country: str) -> CountryComparison:
        english_name = mappings.english_name(country)
        worldbank, conflicts, news = await asyncio.gather(
            _world_bank(mappings.turkish_to_cca3.get(country)),
            fetch_conflict_events(
                mappings.turkish_to_ucdp_name.get(country, ""),
                interceptor=interceptor,
                cache=cache,
            ),
            fetch_gdelt_articles(english_name, interceptor=interceptor, cache=cache),
        )
        return CountryComparison(
            country=country,
            flag_url=mappings.turkish_to_flag_url.get(country),
            gdp=format_gdp(worldbank),
            recent_conflicts=count_recent_conflicts(conflicts, now=now),
            negative_news_ratio=negative_news_ratio(news),
        )

    results = await asyncio.gather(*(_compare(country) for country in selected))
    logger.info("Country comparison built", countries=selected)
    return list(results)
