"""
GovNews command-line interface.
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from typing import Any

from govnews.core.app_context import AppContext
from govnews.core.config import settings, validate_environment
from govnews.core.country_mappings import CountryMappings, fetch_and_build_mappings
from govnews.core.errors import AppError
from govnews.core.logging_setup import configure_logging
from govnews.ingestion.base import FetchStatus, SourceResult
from govnews.ingestion.factbook import FactbookData
from govnews.ingestion.worldbank import format_indicator_value
from govnews.processing.comparison import (
    MAX_COMPARED_COUNTRIES,
    CountryComparison,
    compare_countries,
)
from govnews.processing.country_dashboard import (
    CountryDashboard,
    CountryDashboardService,
    PanelState,
)


def _format_panel_lines(panel: PanelState) -> list[str]:
    header = f"## {panel.name}"
    if panel.status == FetchStatus.FAILED:
        return [header, f"  unavailable: {panel.error or 'Failed to fetch'}"]
    if panel.status == FetchStatus.MISSING:
        return [header, f"  no data: {panel.error or 'Data not available'}"]

    data = panel.data
    if isinstance(data, SourceResult):
        data = data.items
    if isinstance(data, FactbookData):
        return [
            header,
            *(f"  {section}: {len(fields)} fields" for section, fields in data.profile.items()),
        ]
    if isinstance(data, list):
        lines = [header]
        for row in data[:10]:
            lines.append(f"  - {_describe_row(row)}")
        if len(data) > 10:
            lines.append(f"  ... {len(data) - 10} more")
        return lines
    return [header, f"  {_describe_row(data)}"]


def _describe_row(row: Any) -> str:
    if hasattr(row, "indicator_code"):
        value = format_indicator_value(row.indicator_code, row.value)
        return f"{row.indicator_code}: {value} ({row.year or 'n/a'})"
    for attribute in ("title", "name", "country"):
        value = getattr(row, attribute, None)
        if value:
            return str(value)
    return str(row)


def _format_dashboard_lines(dashboard: CountryDashboard) -> list[str]:
    summary = dashboard.summary
    population = f"{summary.population:,.0f}" if summary.population is not None else "N/A"
    gdp = f"${summary.gdp:,.0f}" if summary.gdp is not None else "N/A"
    lines = [
        f"# {dashboard.country} ({dashboard.english_name})",
        f"Population: {population}",
        f"GDP: {gdp}",
        f"Latest conflict event: {summary.latest_conflict_date or 'N/A'}",
    ]
    for name in sorted(dashboard.panels):
        lines.extend(_format_panel_lines(dashboard.panels[name]))
    return lines


def _format_comparison_line(row: CountryComparison) -> str:
    return (
        f"{row.country}: GDP {row.gdp} | "
        f"conflicts (30d) {row.recent_conflicts} | "
        f"negative news {row.negative_news_ratio}"
    )


def _resolve_country(mappings: CountryMappings, name: str) -> str | None:
    resolved = mappings.resolve(name)
    if resolved is None:
        print(f"Unknown country: {name}")
    return resolved


async def _run_country(*, name: str, include_roads: bool) -> int:
    async with AppContext.create() as context:
        mappings = await fetch_and_build_mappings(context.interceptor)
        turkish_name = _resolve_country(mappings, name)
        if turkish_name is None:
            return 1
        service = CountryDashboardService(
            context.interceptor,
            mappings,
            cache=context.cache,
            ttl_cache=context.ttl_cache,
            noaa_token=context.config.NOAA_API_TOKEN,
            include_roads=include_roads,
        )
        dashboard = await service.build(turkish_name)

    for line in _format_dashboard_lines(dashboard):
        print(line)
    return 0


async def _run_compare(*, names: list[str]) -> int:
    async with AppContext.create() as context:
        mappings = await fetch_and_build_mappings(context.interceptor)
        resolved = [_resolve_country(mappings, name) for name in names]
        if any(name is None for name in resolved):
            return 1
        rows = await compare_countries(
            [name for name in resolved if name is not None],
            mappings=mappings,
            interceptor=context.interceptor,
            cache=context.cache,
        )

    for row in rows:
        print(_format_comparison_line(row))
    return 0


async def _run_ask(*, query: str) -> int:
    async with AppContext.create() as context:
        result = await context.gemini.perform_ai_search(query)

    print(result.summary)
    if result.sources:
        print("")
        print("Sources:")
        for source in result.sources:
            print(f"  - {source.title or source.uri}: {source.uri or ''}")
    return 0


async def _run_summarize(*, url: str) -> int:
    async with AppContext.create() as context:
        summary = await context.gemini.summarize_article_url(url)
    print(summary)
    return 0


def _run_check_config() -> int:
    result = validate_environment(settings)
    if result.is_valid:
        print("Environment configuration is valid.")
        return 0
    print(result.describe())
    return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="govnews")
    subparsers = parser.add_subparsers(dest="command")

    country_parser = subparsers.add_parser(
        "country",
        help="Show every data panel for one country.",
    )
    country_parser.add_argument("name", help="Turkish, English, ISO2 or ISO3 country name.")
    country_parser.add_argument(
        "--roads",
        action="store_true",
        help="Also query OpenStreetMap for the major road network (slow).",
    )

    compare_parser = subparsers.add_parser(
        "compare",
        help=f"Compare up to {MAX_COMPARED_COUNTRIES} countries side by side.",
    )
    compare_parser.add_argument("names", nargs="+", help="Country names to compare.")

    ask_parser = subparsers.add_parser("ask", help="Ask the AI analyst a question.")
    ask_parser.add_argument("query", help="Free-form question.")

    summarize_parser = subparsers.add_parser(
        "summarize",
        help="Download a news article and print an AI summary.",
    )
    summarize_parser.add_argument("url", help="Article URL.")

    subparsers.add_parser("check-config", help="Validate environment configuration.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging()

    try:
        if args.command == "country":
            return asyncio.run(_run_country(name=args.name, include_roads=args.roads))
        if args.command == "compare":
            if len(args.names) > MAX_COMPARED_COUNTRIES:
                parser.error(f"at most {MAX_COMPARED_COUNTRIES} countries can be compared")
            return asyncio.run(_run_compare(names=args.names))
        if args.command == "ask":
            return asyncio.run(_run_ask(query=args.query))
        if args.command == "summarize":
            return asyncio.run(_run_summarize(url=args.url))
        if args.command == "check-config":
            return _run_check_config()
    except AppError as exc:
        print(f"Error: {exc.get_user_message(settings.ERROR_MESSAGE_LOCALE)}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
