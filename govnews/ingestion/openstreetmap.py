"""
OpenStreetMap Overpass fetcher for a country's major road network.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
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

SOURCE = "openstreetmap"
OVERPASS_API_URL = "https://overpass-api.de/api/interpreter"
OVERPASS_TIMEOUT_SECONDS = 300

_ROAD_QUERY = """
[out:json][timeout:{timeout}];
area["name"="{country}"]->.a;
(
  way(area.a)["highway"~"^(motorway|trunk|primary|secondary)$"];
);
out geom;
"""


@dataclass(slots=True)
class OsmRoad:
    id: int
    type: str
    highway: str = "unknown"
    geometry: list[dict[str, float]] = field(default_factory=list)


@dataclass(slots=True)
class OsmData:
    country: str
    data: list[OsmRoad] = field(default_factory=list)
    message: str | None = None
    status: FetchStatus = FetchStatus.OK

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = str(self.status)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> OsmData:
        return cls(
            country=str(payload.get("country", "")),
            data=[OsmRoad(**road) for road in payload.get("data") or []],
            message=payload.get("message"),
            status=FetchStatus(payload.get("status", FetchStatus.OK)),
        )


def build_overpass_query(country: str) -> str:
    escaped = country.replace("\\", "\\\\").replace('"', '\\"')
    return _ROAD_QUERY.format(timeout=OVERPASS_TIMEOUT_SECONDS, country=escaped).strip()


async def fetch_country_roads(
    english_name: str,
    *,
    interceptor: ApiInterceptor,
    cache: CacheStore | None = None,
) -> OsmData:
    """Fetch motorway, trunk, primary and secondary ways with geometry."""
    store = resolve_cache(cache)
    cache_key = f"osm-{english_name}"
    cached = store.get(cache_key)
    if cached:
        return OsmData.from_dict(cached)

    target_url = f"{OVERPASS_API_URL}?{urlencode({'data': build_overpass_query(english_name)})}"
    try:
        payload = await interceptor.get(
            interceptor.proxied(target_url),
            timeout=float(OVERPASS_TIMEOUT_SECONDS),
        )
        result = OsmData(country=english_name, data=parse_overpass_elements(payload))
    except FETCH_FAILURES as exc:
        log_fetch_failure(SOURCE, exc, country=english_name)
        return OsmData(
            country=english_name,
            message=failure_message(exc, "Failed to fetch data."),
            status=FetchStatus.FAILED,
        )

    store.set(cache_key, result.to_dict())
    record_fetch(SOURCE, FetchStatus.OK)
    return result


def parse_overpass_elements(payload: Any) -> list[OsmRoad]:
    elements = payload.get("elements") if isinstance(payload, dict) else None
    if not isinstance(elements, list):
        msg = "Invalid data format from Overpass API"
        raise DataProcessingError(msg)

    roads: list[OsmRoad] = []
    for element in elements:
        if not isinstance(element, dict):
            continue
        tags = element.get("tags") or {}
        roads.append(
            OsmRoad(
                id=int(element.get("id", 0)),
                type=str(element.get("type", "way")),
                highway=str(tags.get("highway") or "unknown"),
                geometry=list(element.get("geometry") or []),
            )
        )
    return roads
