"""
NOAA Climate Data Online fetcher for recent temperature and precipitation.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import structlog

from govnews.core.cache import CacheStore
from govnews.core.config import settings
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

logger = structlog.get_logger(__name__)

SOURCE = "noaa"
NOAA_API_BASE_URL = "https://www.ncdc.noaa.gov/cdo-web/api/v2/data"
LOOKBACK_DAYS = 30

NOAA_INDICATORS: dict[str, dict[str, str]] = {
    "TAVG": {"name": "Average Temperature", "unit": "°C"},
    "PRCP": {"name": "Precipitation", "unit": "mm"},
}


@dataclass(slots=True)
class NoaaIndicator:
    name: str
    value: float | None = None
    unit: str | None = None
    date: str | None = None
    message: str | None = None
    status: FetchStatus = FetchStatus.OK

    @property
    def label(self) -> str:
        return NOAA_INDICATORS.get(self.name, {}).get("name", self.name)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = str(self.status)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> NoaaIndicator:
        return cls(
            name=str(payload.get("name", "")),
            value=payload.get("value"),
            unit=payload.get("unit"),
            date=payload.get("date"),
            message=payload.get("message"),
            status=FetchStatus(payload.get("status", FetchStatus.OK)),
        )


def _error_result(message: str, status: FetchStatus = FetchStatus.FAILED) -> list[NoaaIndicator]:
    return [NoaaIndicator(name=key, message=message, status=status) for key in NOAA_INDICATORS]


def build_noaa_url(fips: str, today: date) -> str:
    start = today - timedelta(days=LOOKBACK_DAYS)
    params = urlencode(
        {
            "datasetid": "GHCND",
            "locationid": f"FIPS:{fips}",
            "startdate": start.isoformat(),
            "enddate": today.isoformat(),
            "datatypeid": "TAVG,PRCP",
            "units": "metric",
            "limit": "1000",
            "sortfield": "date",
            "sortorder": "desc",
        }
    )
    return f"{NOAA_API_BASE_URL}?{params}"


async def fetch_noaa_data(
    fips: str,
    *,
    interceptor: ApiInterceptor,
    cache: CacheStore | None = None,
    token: str | None = None,
    today: date | None = None,
) -> list[NoaaIndicator]:
    """
    Fetch the latest TAVG and PRCP observation for a FIPS country code.

    NOAA requires a ``token`` header, which the public proxy cannot forward;
    with a token configured the request goes to NOAA directly.
    """
    if not fips:
        logger.warning("NOAA fetch called with no country FIPS code")
        return _error_result("Country code not found.", FetchStatus.MISSING)

    store = resolve_cache(cache)
    cache_key = f"noaa-{fips}"
    cached = store.get(cache_key)
    if cached:
        return [NoaaIndicator.from_dict(row) for row in cached]

    api_token = token if token is not None else settings.NOAA_API_TOKEN
    target_url = build_noaa_url(fips, today or datetime.now(tz=UTC).date())
    try:
        if api_token:
            payload = await interceptor.get(target_url, headers={"token": api_token})
        else:
            payload = await interceptor.get(interceptor.proxied(target_url))
        results = shape_noaa_payload(payload)
    except FETCH_FAILURES as exc:
        log_fetch_failure(SOURCE, exc, fips=fips)
        return _error_result(failure_message(exc))

    store.set(cache_key, [row.to_dict() for row in results])
    record_fetch(SOURCE, FetchStatus.OK)
    return results


def shape_noaa_payload(payload: Any) -> list[NoaaIndicator]:
    raw_results = payload.get("results") if isinstance(payload, dict) else None
    if not raw_results:
        msg = "No data returned from NOAA for this location."
        raise DataProcessingError(msg)

    latest: dict[str, NoaaIndicator] = {}
    for record in raw_results:
        if not isinstance(record, dict):
            continue
        data_type = record.get("datatype")
        if data_type not in NOAA_INDICATORS or data_type in latest:
            continue
        latest[data_type] = NoaaIndicator(
            name=data_type,
            value=_as_float(record.get("value")),
            unit=NOAA_INDICATORS[data_type]["unit"],
            date=str(record.get("date", "")).split("T")[0] or None,
        )
        if len(latest) == len(NOAA_INDICATORS):
            break

    return [
        latest.get(key)
        or NoaaIndicator(
            name=key,
            message="Data not available for this type.",
            status=FetchStatus.MISSING,
        )
        for key in NOAA_INDICATORS
    ]


def _as_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
