"""Country views assembled from the ingestion fetchers."""

from govnews.processing.comparison import CountryComparison, compare_countries
from govnews.processing.country_dashboard import (
    CountryDashboard,
    CountryDashboardService,
    DashboardSummary,
    PanelState,
)

__all__ = [
    "CountryComparison",
    "CountryDashboard",
    "CountryDashboardService",
    "DashboardSummary",
    "PanelState",
    "compare_countries",
]
