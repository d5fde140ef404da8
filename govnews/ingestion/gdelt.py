"""
GDELT DOC 2.0 article list fetcher.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import urlencode

import structlog

from govnews.core.cache import CacheStore
from govnews.core.errors import DataProcessingError
from govnews.ingestion.base import (
    FETCH_FAILURES,
    FetchStatus,
    SourceResult,
    failure_message,
    log_fetch_failure,
    record_fetch,
    resolve_cache,
)
from govnews.ingestion.interceptor import ApiInterceptor

logger = structlog.get_logger(__name__)

SOURCE = "gdelt"
GDELT_API_BASE_URL = "https://api.gdeltproject.org/api/v2/doc/doc"
MAX_RECORDS = 25


@dataclass(slots=True)
class GdeltArticle:
    url: str
    title: str
    domain: str | None = None
    seendate: str | None = None
    language: str | None = None
    sourcecountry: str | None = None
    socialimage: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> GdeltArticle | None:
        url = _safe_str(payload.get("url"))
        if url is None:
            return None
        return cls(
            url=url,
            title=_safe_str(payload.get("title")) or url,
            domain=_safe_str(payload.get("domain")),
            seendate=_safe_str(payload.get("seendate")),
            language=_safe_str(payload.get("language")),
            sourcecountry=_safe_str(payload.get("sourcecountry")),
            socialimage=_safe_str(payload.get("socialimage")),
        )


def build_gdelt_url(english_name: str) -> str:
    params = urlencode(
        {
            "query": f'"{english_name}"',
            "mode": "ArtList",
            "format": "json",
            "maxrecords": str(MAX_RECORDS),
        }
    )
    return f"{GDELT_API_BASE_URL}?{params}"


async def fetch_gdelt_articles(
    english_name: str,
    *,
    interceptor: ApiInterceptor,
    cache: CacheStore | None = None,
) -> SourceResult[GdeltArticle]:
    """Fetch recent articles mentioning a country by its English name."""
    if not english_name:
        logger.warning("GDELT fetch called with no country name")
        return SourceResult(
            source=SOURCE, status=FetchStatus.MISSING, message="Country name not found."
        )

    store = resolve_cache(cache)
    cache_key = f"gdelt-{english_name}"
    cached = store.get(cache_key)
    if cached is not None:
        return SourceResult(source=SOURCE, items=[GdeltArticle(**row) for row in cached])

    try:
        payload = await interceptor.get(interceptor.proxied(build_gdelt_url(english_name)))
        articles = parse_gdelt_articles(payload)
    except FETCH_FAILURES as exc:
        log_fetch_failure(SOURCE, exc, country=english_name)
        return SourceResult.failed(SOURCE, failure_message(exc))

    store.set(cache_key, [asdict(article) for article in articles])
    record_fetch(SOURCE, FetchStatus.OK)
    return SourceResult(source=SOURCE, items=articles)


def parse_gdelt_articles(payload: Any) -> list[GdeltArticle]:
    if not isinstance(payload, dict):
        msg = "GDELT response payload is not a JSON object"
        raise DataProcessingError(msg)
    raw_articles = payload.get("articles") or []
    if not isinstance(raw_articles, list):
        msg = "GDELT response field 'articles' must be a list"
        raise DataProcessingError(msg)

    articles: list[GdeltArticle] = []
    for raw in raw_articles:
        if not isinstance(raw, dict):
            continue
        article = GdeltArticle.from_payload(raw)
        if article is not None:
            articles.append(article)
    return articles


def _safe_str(value: Any) -> str | None:
    if value is None:
        return None
    as_str = str(value).strip()
    return as_str or None
