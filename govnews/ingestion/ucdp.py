"""
UCDP georeferenced conflict event fetcher.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any
from urllib.parse import urlencode

import structlog

from govnews.core.cache import CacheStore
from govnews.core.errors import DataProcessingError, RequestTimeoutError
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

SOURCE = "ucdp"
UCDP_API_BASE_URL = "https://ucdpapi.pcr.uu.se/api/gedevents/23.1"
UCDP_TIMEOUT_SECONDS = 20.0
PAGE_SIZE = 50
TIMEOUT_MESSAGE = "The request to the conflict data service timed out."


@dataclass(slots=True)
class ConflictPoint:
    id: str
    name: str
    coordinates: list[float] = field(default_factory=list)
    fatalities: int = 0
    country: str = ""
    date: str = ""
    side_a: str = ""
    side_b: str = ""
    description: str = "No detailed description provided."


def build_ucdp_url(ucdp_name: str) -> str:
    params = urlencode({"pagesize": str(PAGE_SIZE), "Country": ucdp_name})
    return f"{UCDP_API_BASE_URL}?{params}"


async def fetch_conflict_events(
    ucdp_name: str,
    *,
    interceptor: ApiInterceptor,
    cache: CacheStore | None = None,
) -> SourceResult[ConflictPoint]:
    """Fetch fatal conflict events for a country, newest first."""
    if not ucdp_name:
        logger.warning("UCDP fetch called with no country name")
        return SourceResult(
            source=SOURCE, status=FetchStatus.MISSING, message="Country name not found."
        )

    store = resolve_cache(cache)
    cache_key = f"ucdp-{ucdp_name}"
    cached = store.get(cache_key)
    if cached is not None:
        return SourceResult(source=SOURCE, items=[ConflictPoint(**row) for row in cached])

    try:
        payload = await interceptor.get(
            interceptor.proxied(build_ucdp_url(ucdp_name)),
            timeout=UCDP_TIMEOUT_SECONDS,
        )
        events = shape_conflict_events(payload)
    except RequestTimeoutError as exc:
        log_fetch_failure(SOURCE, exc, country=ucdp_name)
        return SourceResult.failed(SOURCE, TIMEOUT_MESSAGE)
    except FETCH_FAILURES as exc:
        log_fetch_failure(SOURCE, exc, country=ucdp_name)
        return SourceResult.failed(SOURCE, failure_message(exc))

    store.set(cache_key, [asdict(event) for event in events])
    record_fetch(SOURCE, FetchStatus.OK)
    return SourceResult(source=SOURCE, items=events)


def shape_conflict_events(payload: Any) -> list[ConflictPoint]:
    if not isinstance(payload, dict):
        msg = "UCDP response payload is not a JSON object"
        raise DataProcessingError(msg)
    raw_events = payload.get("Result")
    if raw_events is None:
        return []
    if not isinstance(raw_events, list):
        msg = "UCDP response field 'Result' must be a list"
        raise DataProcessingError(msg)

    points: list[ConflictPoint] = []
    for event in raw_events:
        if not isinstance(event, dict):
            continue
        fatalities = _as_int(event.get("best"))
        if fatalities <= 0:
            continue
        points.append(
            ConflictPoint(
                id=str(event.get("id", "")),
                name=str(event.get("conflict_name") or ""),
                coordinates=[_as_float(event.get("longitude")), _as_float(event.get("latitude"))],
                fatalities=fatalities,
                country=str(event.get("country") or ""),
                date=str(event.get("date_start") or ""),
                side_a=str(event.get("side_a") or ""),
                side_b=str(event.get("side_b") or ""),
                description=event.get("where_description") or "No detailed description provided.",
            )
        )
    # ISO dates sort lexically
    points.sort(key=lambda point: point.date, reverse=True)
    return points


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
