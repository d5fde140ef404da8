"""Per-source data fetchers."""

from govnews.ingestion.base import FetchStatus, SourceResult
from govnews.ingestion.factbook import FactbookData, fetch_country_profile_factbook, slugify
from govnews.ingestion.gdelt import GdeltArticle, fetch_gdelt_articles
from govnews.ingestion.gemini import ChatSession, GeminiService
from govnews.ingestion.interceptor import ApiInterceptor, ApiResponse, RetryConfig
from govnews.ingestion.noaa import NoaaIndicator, fetch_noaa_data
from govnews.ingestion.openstreetmap import OsmData, OsmRoad, fetch_country_roads
from govnews.ingestion.population_pyramid import (
    PopulationDataPoint,
    PopulationPyramidData,
    fetch_population_pyramid_data,
)
from govnews.ingestion.reliefweb import ReliefWebUpdate, fetch_reliefweb_updates
from govnews.ingestion.ucdp import ConflictPoint, fetch_conflict_events
from govnews.ingestion.worldbank import WorldBankIndicator, fetch_world_bank_data

__all__ = [
    "ApiInterceptor",
    "ApiResponse",
    "ChatSession",
    "ConflictPoint",
    "FactbookData",
    "FetchStatus",
    "GdeltArticle",
    "GeminiService",
    "NoaaIndicator",
    "OsmData",
    "OsmRoad",
    "PopulationDataPoint",
    "PopulationPyramidData",
    "ReliefWebUpdate",
    "RetryConfig",
    "SourceResult",
    "WorldBankIndicator",
    "fetch_conflict_events",
    "fetch_country_profile_factbook",
    "fetch_country_roads",
    "fetch_gdelt_articles",
    "fetch_noaa_data",
    "fetch_population_pyramid_data",
    "fetch_reliefweb_updates",
    "fetch_world_bank_data",
    "slugify",
]
