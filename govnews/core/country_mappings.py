"""
Country name reconciliation across REST Countries, UCDP and map layers.

The Turkish display name is the join key for every lookup table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from govnews.core.errors import AppError, DataProcessingError

if TYPE_CHECKING:
    from govnews.ingestion.interceptor import ApiInterceptor

logger = structlog.get_logger(__name__)

REST_COUNTRIES_URL = (
    "https://restcountries.com/v3.1/all?fields=name,translations,flags,cca2,cca3,altSpellings,latlng"
)
DATA_DIR = Path(__file__).resolve().parent.parent / "data"


@dataclass(slots=True, frozen=True)
class CountryTables:
    ucdp_names: dict[str, str]
    ucdp_overrides: dict[str, str]
    geojson_overrides: dict[str, str]


@dataclass(slots=True, frozen=True)
class CountryEntry:
    name: str
    flag: str


@dataclass(slots=True)
class CountryMappings:
    turkish_to_english: dict[str, str] = field(default_factory=dict)
    turkish_to_cca2: dict[str, str] = field(default_factory=dict)
    turkish_to_cca3: dict[str, str] = field(default_factory=dict)
    turkish_to_ucdp_name: dict[str, str] = field(default_factory=dict)
    turkish_to_flag_url: dict[str, str] = field(default_factory=dict)
    turkish_to_latlng: dict[str, tuple[float, float]] = field(default_factory=dict)
    geojson_name_to_turkish: dict[str, str] = field(default_factory=dict)
    all_countries: list[CountryEntry] = field(default_factory=list)

    def resolve(self, name: str) -> str | None:
        """Return the Turkish display name for a Turkish, English, CCA2 or CCA3 name."""
        candidate = name.strip()
        if not candidate:
            return None
        if candidate in self.turkish_to_ucdp_name:
            return candidate
        lowered = candidate.casefold()
        for lookup in (self.turkish_to_english, self.turkish_to_cca2, self.turkish_to_cca3):
            for turkish, value in lookup.items():
                if value.casefold() == lowered:
                    return turkish
        for turkish in self.turkish_to_ucdp_name:
            if turkish.casefold() == lowered:
                return turkish
        return self.geojson_name_to_turkish.get(lowered)

    def english_name(self, turkish_name: str) -> str:
        return self.turkish_to_english.get(turkish_name, turkish_name)


@lru_cache
def load_country_tables(path: str | None = None) -> CountryTables:
    """Load the static country tables shipped with the package."""
    config_path = Path(path) if path else DATA_DIR / "countries.yaml"
    raw_config = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw_config, dict):
        msg = "Invalid country table format: expected mapping at top-level"
        raise ValueError(msg)

    def _mapping(key: str) -> dict[str, str]:
        value = raw_config.get(key) or {}
        if not isinstance(value, dict):
            msg = f"Invalid country table section: {key}"
            raise ValueError(msg)
        return {str(name): str(target) for name, target in value.items()}

    return CountryTables(
        ucdp_names=_mapping("ucdp_names"),
        ucdp_overrides=_mapping("ucdp_overrides"),
        geojson_overrides=_mapping("geojson_overrides"),
    )


def build_country_mappings(
    rest_countries: list[dict[str, Any]],
    tables: CountryTables | None = None,
) -> CountryMappings:
    """
    Cross-reference REST Countries records against the supported country list.

    A REST country matches when its common name, official name or an alt
    spelling equals the UCDP name (parenthetical suffix removed), or its
    Turkish translation equals the display name. Each REST country is used
    at most once.
    """
    tables = tables or load_country_tables()
    mappings = CountryMappings(geojson_name_to_turkish=dict(tables.geojson_overrides))
    matched: set[str] = set()

    for turkish_name, ucdp_name in tables.ucdp_names.items():
        mappings.turkish_to_ucdp_name[turkish_name] = tables.ucdp_overrides.get(
            turkish_name, ucdp_name
        )
        english_key = ucdp_name.split(" (")[0].casefold()
        country = next(
            (
                record
                for record in rest_countries
                if _matches(record, english_key=english_key, turkish_name=turkish_name)
            ),
            None,
        )
        if country is None or country.get("cca3") in matched:
            continue

        matched.add(str(country.get("cca3")))
        names = country.get("name") or {}
        flag_url = str((country.get("flags") or {}).get("svg") or "")
        mappings.turkish_to_flag_url[turkish_name] = flag_url
        mappings.turkish_to_english[turkish_name] = str(names.get("common") or ucdp_name)
        mappings.turkish_to_cca3[turkish_name] = str(country.get("cca3") or "")
        mappings.turkish_to_cca2[turkish_name] = str(country.get("cca2") or "")
        latlng = country.get("latlng") or []
        if len(latlng) == 2:
            mappings.turkish_to_latlng[turkish_name] = (float(latlng[0]), float(latlng[1]))

        for geo_name in (names.get("common"), names.get("official")):
            if isinstance(geo_name, str) and geo_name:
                mappings.geojson_name_to_turkish.setdefault(geo_name.lower(), turkish_name)

        mappings.all_countries.append(CountryEntry(name=turkish_name, flag=flag_url))

    mappings.all_countries.sort(key=lambda entry: entry.name)
    return mappings


def _matches(record: dict[str, Any], *, english_key: str, turkish_name: str) -> bool:
    names = record.get("name") or {}
    if str(names.get("common", "")).casefold() == english_key:
        return True
    if str(names.get("official", "")).casefold() == english_key:
        return True
    turkish = (record.get("translations") or {}).get("tur") or {}
    if str(turkish.get("common", "")).casefold() == turkish_name.casefold():
        return True
    return any(str(alt).casefold() == english_key for alt in record.get("altSpellings") or [])


_mappings_cache: CountryMappings | None = None


async def fetch_and_build_mappings(
    interceptor: ApiInterceptor,
    *,
    force: bool = False,
) -> CountryMappings:
    """
    Fetch REST Countries once per process and build the mapping bundle.

    When the fetch fails, mappings built from the static tables alone are
    returned and nothing is cached.
    """
    global _mappings_cache
    if _mappings_cache is not None and not force:
        return _mappings_cache
    try:
        payload = await interceptor.get(REST_COUNTRIES_URL)
        if not isinstance(payload, list):
            msg = "REST Countries response is not a list"
            raise DataProcessingError(msg)
    except AppError as exc:
        logger.error("Country mapping fetch failed", error=exc.message, error_code=exc.code)
        return build_country_mappings([])

    _mappings_cache = build_country_mappings(
        [record for record in payload if isinstance(record, dict)]
    )
    logger.info("Country mappings built", countries=len(_mappings_cache.all_countries))
    return _mappings_cache


def reset_mappings_cache() -> None:
    global _mappings_cache
    _mappings_cache = None
