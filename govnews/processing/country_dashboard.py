"""
Per-country dashboard assembly.

Every panel is loaded concurrently by its own ``AsyncDataLoader``; a failed
panel records its message and never blocks the others.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from govnews.core.async_data import MultiAsyncDataLoader, TTLCache
from govnews.core.cache import CacheStore
from govnews.core.country_mappings import CountryMappings
from govnews.core.errors import DataProcessingError, ValidationError
from govnews.ingestion.base import FetchStatus, SourceResult
from govnews.ingestion.factbook import FactbookData, fetch_country_profile_factbook, slugify
from govnews.ingestion.gdelt import fetch_gdelt_articles
from govnews.ingestion.gemini import GeminiService
from govnews.ingestion.interceptor import ApiInterceptor
from govnews.ingestion.noaa import NoaaIndicator, fetch_noaa_data
from govnews.ingestion.openstreetmap import OsmData, fetch_country_roads
from govnews.ingestion.population_pyramid import (
    PopulationPyramidData,
    fetch_population_pyramid_data,
)
from govnews.ingestion.reliefweb import ReliefWebUpdate, fetch_reliefweb_updates
from govnews.ingestion.ucdp import ConflictPoint, fetch_conflict_events
from govnews.ingestion.worldbank import WorldBankIndicator, fetch_world_bank_data

logger = structlog.get_logger(__name__)

GDP_CODE = "NY.GDP.MKTP.CD"
POPULATION_CODE = "SP.POP.TOTL"

PanelFetch = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class PanelState:
    name: str
    data: Any = None
    error: str | None = None
    status: FetchStatus = FetchStatus.OK


@dataclass(slots=True)
class DashboardSummary:
    population: float | None = None
    gdp: float | None = None
    latest_conflict_date: str | None = None


@dataclass(slots=True)
class CountryDashboard:
    country: str
    english_name: str
    cca2: str | None
    cca3: str | None
    flag_url: str | None
    panels: dict[str, PanelState] = field(default_factory=dict)
    summary: DashboardSummary = field(default_factory=DashboardSummary)

    def panel(self, name: str) -> PanelState | None:
        return self.panels.get(name)


class CountryDashboardService:
    """Builds the full country view from the per-source fetchers."""

    def __init__(
        self,
        interceptor: ApiInterceptor,
        mappings: CountryMappings,
        *,
        cache: CacheStore | None = None,
        ttl_cache: TTLCache | None = None,
        gemini: GeminiService | None = None,
        noaa_token: str | None = None,
        include_roads: bool = False,
        panel_retries: int = 0,
    ) -> None:
        self.interceptor = interceptor
        self.mappings = mappings
        self.cache = cache
        self.ttl_cache = ttl_cache
        self.gemini = gemini
        self.noaa_token = noaa_token
        self.include_roads = include_roads
        self.panel_retries = panel_retries

    async def build(self, turkish_name: str) -> CountryDashboard:
        if turkish_name not in self.mappings.turkish_to_ucdp_name:
            msg = f"Unknown country: {turkish_name}"
            raise ValidationError(
                msg, field="country", expected_type="str", received_value=turkish_name
            )

        english_name = self.mappings.english_name(turkish_name)
        cca3 = self.mappings.turkish_to_cca3.get(turkish_name)
        dashboard = CountryDashboard(
            country=turkish_name,
            english_name=english_name,
            cca2=self.mappings.turkish_to_cca2.get(turkish_name),
            cca3=cca3,
            flag_url=self.mappings.turkish_to_flag_url.get(turkish_name),
        )

        sources, unavailable = self._panel_sources(turkish_name, english_name)
        loader = MultiAsyncDataLoader(
            sources,
            cache_keys={name: f"dashboard-{cca3 or english_name}-{name}" for name in sources},
            ttl_cache=self.ttl_cache,
            retries=self.panel_retries,
        )
        try:
            await loader.execute_all()
        finally:
            loader.close()

        for name, panel_loader in loader.loaders.items():
            if panel_loader.error is not None:
                dashboard.panels[name] = PanelState(
                    name=name, error=panel_loader.error, status=FetchStatus.FAILED
                )
            else:
                dashboard.panels[name] = _panel_from_data(name, panel_loader.data)
        dashboard.panels.update(unavailable)

        dashboard.summary = build_summary(dashboard.panels)
        logger.info(
            "Country dashboard built",
            country=turkish_name,
            failed_panels=sorted(
                name
                for name, panel in dashboard.panels.items()
                if panel.status == FetchStatus.FAILED
            ),
        )
        return dashboard

    def _panel_sources(
        self,
        turkish_name: str,
        english_name: str,
    ) -> tuple[dict[str, PanelFetch], dict[str, PanelState]]:
        interceptor = self.interceptor
        cache = self.cache
        cca2 = self.mappings.turkish_to_cca2.get(turkish_name)
        cca3 = self.mappings.turkish_to_cca3.get(turkish_name)
        ucdp_name = self.mappings.turkish_to_ucdp_name.get(turkish_name, "")

        sources: dict[str, PanelFetch] = {
            "gdelt": _checked(
                "gdelt",
                lambda: fetch_gdelt_articles(english_name, interceptor=interceptor, cache=cache),
            ),
            "ucdp": _checked(
                "ucdp",
                lambda: fetch_conflict_events(ucdp_name, interceptor=interceptor, cache=cache),
            ),
            "factbook": _checked(
                "factbook",
                lambda: fetch_country_profile_factbook(
                    slugify(english_name), interceptor=interceptor, cache=cache
                ),
            ),
            "population": _checked(
                "population",
                lambda: fetch_population_pyramid_data(
                    english_name, interceptor=interceptor, cache=cache
                ),
            ),
        }
        unavailable: dict[str, PanelState] = {}

        if cca3:
            sources["worldbank"] = _checked(
                "worldbank",
                lambda: fetch_world_bank_data(cca3, interceptor=interceptor, cache=cache),
            )
            sources["reliefweb"] = _checked(
                "reliefweb",
                lambda: fetch_reliefweb_updates(
                    cca3, english_name, interceptor=interceptor, cache=cache
                ),
            )
        else:
            for name in ("worldbank", "reliefweb"):
                unavailable[name] = PanelState(
                    name=name, error="Country ISO code not found.", status=FetchStatus.MISSING
                )

        if cca2:
            # FIPS codes are approximated by the ISO alpha-2 code.
            sources["noaa"] = _checked(
                "noaa",
                lambda: fetch_noaa_data(
                    cca2, interceptor=interceptor, cache=cache, token=self.noaa_token
                ),
            )
        else:
            unavailable["noaa"] = PanelState(
                name="noaa", error="Country code not found.", status=FetchStatus.MISSING
            )

        if self.include_roads:
            sources["roads"] = _checked(
                "roads",
                lambda: fetch_country_roads(english_name, interceptor=interceptor, cache=cache),
            )
        if self.gemini is not None:
            gemini = self.gemini
            sources["press"] = lambda: gemini.fetch_national_press(turkish_name, self.mappings)

        return sources, unavailable


def _checked(name: str, fetch: PanelFetch) -> PanelFetch:
    """Raise when a fetcher reports a failed record so the loader neither caches nor keeps it."""

    async def _run() -> Any:
        data = await fetch()
        status, message = panel_status(data)
        if status == FetchStatus.FAILED:
            raise DataProcessingError(message or "Failed to fetch", context={"panel": name})
        return data

    return _run


def panel_status(data: Any) -> tuple[FetchStatus, str | None]:
    """Derive a panel status from whatever shape a fetcher returned."""
    if isinstance(data, SourceResult | OsmData | PopulationPyramidData):
        return data.status, data.message
    if isinstance(data, FactbookData):
        return data.status, data.error
    if isinstance(data, list) and data and all(
        isinstance(row, WorldBankIndicator | NoaaIndicator) for row in data
    ):
        statuses = {row.status for row in data}
        if statuses == {FetchStatus.FAILED}:
            return FetchStatus.FAILED, data[0].message
        if FetchStatus.OK not in statuses:
            return FetchStatus.MISSING, data[0].message
        return FetchStatus.OK, None
    if isinstance(data, list) and data and isinstance(data[0], ReliefWebUpdate):
        if len(data) == 1 and data[0].message:
            return FetchStatus.FAILED, data[0].message
        return FetchStatus.OK, None
    if isinstance(data, list) and not data:
        return FetchStatus.MISSING, None
    return FetchStatus.OK, None


def _panel_from_data(name: str, data: Any) -> PanelState:
    status, message = panel_status(data)
    return PanelState(name=name, data=data, error=message, status=status)


def build_summary(panels: dict[str, PanelState]) -> DashboardSummary:
    summary = DashboardSummary()
    worldbank = panels.get("worldbank")
    if worldbank is not None and isinstance(worldbank.data, list):
        for row in worldbank.data:
            if row.indicator_code == POPULATION_CODE:
                summary.population = row.value
            elif row.indicator_code == GDP_CODE:
                summary.gdp = row.value

    ucdp = panels.get("ucdp")
    if ucdp is not None and isinstance(ucdp.data, SourceResult) and ucdp.data.items:
        latest: ConflictPoint = ucdp.data.items[0]
        summary.latest_conflict_date = latest.date or None
    return summary
