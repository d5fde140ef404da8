"""
World Bank Indicators API fetcher.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import urlencode

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

SOURCE = "worldbank"
WORLD_BANK_API_BASE_URL = "https://api.worldbank.org/v2/country"
DATA_NOT_AVAILABLE = "Data not available"


@dataclass(slots=True, frozen=True)
class IndicatorSpec:
    code: str
    format: str


INDICATOR_CONFIG: dict[str, IndicatorSpec] = {
    "GDP": IndicatorSpec(code="NY.GDP.MKTP.CD", format="currency"),
    "GDP_PER_CAPITA": IndicatorSpec(code="NY.GDP.PCAP.CD", format="currency"),
    "POPULATION": IndicatorSpec(code="SP.POP.TOTL", format="number"),
    "INFLATION": IndicatorSpec(code="FP.CPI.TOTL.ZG", format="percent"),
    "UNEMPLOYMENT": IndicatorSpec(code="SL.UEM.TOTL.ZS", format="percent"),
}


@dataclass(slots=True)
class WorldBankIndicator:
    country: str
    indicator: str
    indicator_code: str
    year: str | None = None
    value: float | None = None
    message: str | None = None
    status: FetchStatus = FetchStatus.OK

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = str(self.status)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> WorldBankIndicator:
        return cls(
            country=str(payload.get("country", "")),
            indicator=str(payload.get("indicator", "")),
            indicator_code=str(payload.get("indicator_code", "")),
            year=payload.get("year"),
            value=payload.get("value"),
            message=payload.get("message"),
            status=FetchStatus(payload.get("status", FetchStatus.OK)),
        )


def build_world_bank_url(cca3: str) -> str:
    codes = ";".join(spec.code for spec in INDICATOR_CONFIG.values())
    params = urlencode({"format": "json", "mrnev": "1", "source": "2"})
    return f"{WORLD_BANK_API_BASE_URL}/{cca3}/indicator/{codes}?{params}"


async def fetch_world_bank_data(
    cca3: str,
    *,
    interceptor: ApiInterceptor,
    cache: CacheStore | None = None,
) -> list[WorldBankIndicator]:
    """
    Fetch the most recent non-empty value of each configured indicator.

    Always returns one record per indicator. A failed request yields records
    with ``value=None``, ``status=failed`` and the failure message.
    """
    store = resolve_cache(cache)
    cache_key = f"worldbank-{cca3}"
    cached = store.get(cache_key)
    if cached:
        return [WorldBankIndicator.from_dict(row) for row in cached]

    try:
        payload = await interceptor.get(interceptor.proxied(build_world_bank_url(cca3)))
        results = shape_world_bank_payload(cca3, payload)
    except FETCH_FAILURES as exc:
        log_fetch_failure(SOURCE, exc, cca3=cca3)
        message = failure_message(exc)
        return [
            WorldBankIndicator(
                country=cca3,
                indicator=spec.code,
                indicator_code=spec.code,
                message=message,
                status=FetchStatus.FAILED,
            )
            for spec in INDICATOR_CONFIG.values()
        ]

    if any(row.value is not None for row in results):
        store.set(cache_key, [row.to_dict() for row in results])
        record_fetch(SOURCE, FetchStatus.OK)
    else:
        record_fetch(SOURCE, FetchStatus.MISSING)
    return results


def shape_world_bank_payload(cca3: str, payload: Any) -> list[WorldBankIndicator]:
    if isinstance(payload, list) and payload and _is_invalid_value(payload[0]):
        msg = f"Invalid country code or indicator: {cca3}"
        raise DataProcessingError(msg, context={"cca3": cca3})
    if not isinstance(payload, list) or len(payload) < 2:
        msg = "Data not available for this country."
        raise DataProcessingError(msg, context={"cca3": cca3})

    records = payload[1] or []
    by_code: dict[str, dict[str, Any]] = {}
    for record in records:
        if not isinstance(record, dict):
            continue
        indicator = record.get("indicator") or {}
        code = indicator.get("id") if isinstance(indicator, dict) else None
        if isinstance(code, str):
            by_code[code] = record

    results: list[WorldBankIndicator] = []
    for spec in INDICATOR_CONFIG.values():
        record = by_code.get(spec.code)
        if record is not None and record.get("value") is not None:
            results.append(
                WorldBankIndicator(
                    country=str((record.get("country") or {}).get("value") or cca3),
                    indicator=str(record["indicator"].get("value") or spec.code),
                    indicator_code=spec.code,
                    year=str(record.get("date")) if record.get("date") is not None else None,
                    value=float(record["value"]),
                )
            )
        else:
            results.append(
                WorldBankIndicator(
                    country=cca3,
                    indicator=spec.code,
                    indicator_code=spec.code,
                    message=DATA_NOT_AVAILABLE,
                    status=FetchStatus.MISSING,
                )
            )
    return results


def _is_invalid_value(header: Any) -> bool:
    if not isinstance(header, dict):
        return False
    messages = header.get("message")
    if not isinstance(messages, list) or not messages:
        return False
    first = messages[0]
    return isinstance(first, dict) and first.get("key") == "Invalid value"


def format_indicator_value(indicator_code: str, value: float | None) -> str:
    """Render a value according to its indicator's display format."""
    if value is None:
        return "N/A"
    spec = next((item for item in INDICATOR_CONFIG.values() if item.code == indicator_code), None)
    if spec is None or spec.format == "number":
        return f"{value:,.0f}"
    if spec.format == "currency":
        return f"${value:,.0f}"
    return f"{value:.2f}%"
