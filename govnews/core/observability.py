"""
Prometheus metrics registry and helper recorders.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

EXTERNAL_API_CALLS_TOTAL = Counter(
    "govnews_external_api_calls_total",
    "Outbound API attempts by service and outcome.",
    ["service", "outcome"],
)
EXTERNAL_API_RETRIES_TOTAL = Counter(
    "govnews_external_api_retries_total",
    "Scheduled retries by service and reason.",
    ["service", "reason"],
)
EXTERNAL_API_LATENCY_SECONDS = Histogram(
    "govnews_external_api_latency_seconds",
    "Outbound API attempt latency by service.",
    ["service"],
)
CACHE_LOOKUPS_TOTAL = Counter(
    "govnews_cache_lookups_total",
    "Cache lookups by cache layer and result.",
    ["layer", "result"],
)
ERROR_REPORTS_TOTAL = Counter(
    "govnews_error_reports_total",
    "Errors handled by the error manager by code and severity.",
    ["code", "severity"],
)
SOURCE_FETCHES_TOTAL = Counter(
    "govnews_source_fetches_total",
    "Per-source fetcher results by status.",
    ["source", "status"],
)


def record_external_api_call(*, service: str, outcome: str, latency_seconds: float) -> None:
    normalized_service = service.strip() or "unknown"
    EXTERNAL_API_CALLS_TOTAL.labels(service=normalized_service, outcome=outcome).inc()
    EXTERNAL_API_LATENCY_SECONDS.labels(service=normalized_service).observe(
        max(0.0, latency_seconds)
    )


def record_external_api_retry(*, service: str, reason: str) -> None:
    EXTERNAL_API_RETRIES_TOTAL.labels(
        service=service.strip() or "unknown",
        reason=reason.strip() or "unknown",
    ).inc()


def record_cache_lookup(*, layer: str, result: str) -> None:
    CACHE_LOOKUPS_TOTAL.labels(layer=layer, result=result).inc()


def record_error_report(*, code: str, severity: str) -> None:
    ERROR_REPORTS_TOTAL.labels(code=code, severity=severity).inc()


def record_source_fetch(*, source: str, status: str) -> None:
    SOURCE_FETCHES_TOTAL.labels(source=source, status=status).inc()
