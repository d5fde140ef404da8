"""
PopulationPyramid.net age/sex structure fetcher.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

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
from govnews.ingestion.factbook import slugify
from govnews.ingestion.interceptor import ApiInterceptor

SOURCE = "populationpyramid"
POPULATION_PYRAMID_API_URL = "https://populationpyramid.net/api/pp"


@dataclass(slots=True)
class PopulationDataPoint:
    age: str
    male: int
    female: int


@dataclass(slots=True)
class PopulationPyramidData:
    country: str
    year: int
    total_population: int = 0
    pyramid: list[PopulationDataPoint] = field(default_factory=list)
    message: str | None = None
    status: FetchStatus = FetchStatus.OK

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = str(self.status)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PopulationPyramidData:
        return cls(
            country=str(payload.get("country", "")),
            year=int(payload.get("year", 0)),
            total_population=int(payload.get("total_population", 0)),
            pyramid=[PopulationDataPoint(**point) for point in payload.get("pyramid") or []],
            message=payload.get("message"),
            status=FetchStatus(payload.get("status", FetchStatus.OK)),
        )


async def fetch_population_pyramid_data(
    english_name: str,
    year: int | None = None,
    *,
    interceptor: ApiInterceptor,
    cache: CacheStore | None = None,
) -> PopulationPyramidData:
    """Fetch male/female population per five-year age band."""
    year = year if year is not None else datetime.now(tz=UTC).year
    country_slug = slugify(english_name)
    store = resolve_cache(cache)
    cache_key = f"populationpyramid-{country_slug}-{year}"
    cached = store.get(cache_key)
    if cached:
        return PopulationPyramidData.from_dict(cached)

    try:
        payload = await interceptor.get(
            interceptor.proxied(f"{POPULATION_PYRAMID_API_URL}/{country_slug}/{year}/")
        )
        result = shape_population_pyramid(english_name, year, payload)
    except FETCH_FAILURES as exc:
        log_fetch_failure(SOURCE, exc, slug=country_slug, year=year)
        return PopulationPyramidData(
            country=english_name,
            year=year,
            message=failure_message(exc),
            status=FetchStatus.FAILED,
        )

    store.set(cache_key, result.to_dict())
    record_fetch(SOURCE, FetchStatus.OK)
    return result


def shape_population_pyramid(english_name: str, year: int, payload: Any) -> PopulationPyramidData:
    """Parse ``{year}_{start}_{end}_{male|female}`` keys into sorted age bands."""
    if not isinstance(payload, dict):
        msg = "Population pyramid response is not a JSON object"
        raise DataProcessingError(msg)
    error = payload.get("error")
    if error:
        description = error.get("description") if isinstance(error, dict) else None
        raise DataProcessingError(description or "API returned an error")

    age_groups: set[tuple[int, str, str]] = set()
    for key in payload:
        parts = str(key).split("_")
        if len(parts) == 4 and parts[0] == str(year):
            try:
                start = int(parts[1])
            except ValueError:
                continue
            age_groups.add((start, parts[1], parts[2]))

    pyramid: list[PopulationDataPoint] = []
    total_population = 0
    for _, start, end in sorted(age_groups):
        male = int(payload.get(f"{year}_{start}_{end}_male") or 0)
        female = int(payload.get(f"{year}_{start}_{end}_female") or 0)
        pyramid.append(PopulationDataPoint(age=f"{start} - {end}", male=male, female=female))
        total_population += male + female

    if not pyramid:
        msg = "No population data parsed from response."
        raise DataProcessingError(msg)

    return PopulationPyramidData(
        country=english_name,
        year=year,
        total_population=total_population,
        pyramid=pyramid,
    )
