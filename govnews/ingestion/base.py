"""
Shared result types and helpers for per-source fetchers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

import structlog

from govnews.core.cache import CacheStore, get_default_store
from govnews.core.errors import AppError
from govnews.core.observability import record_source_fetch

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Failures a read-path fetcher converts into an unavailable record.
FETCH_FAILURES: tuple[type[Exception], ...] = (AppError, ValueError, TypeError, KeyError)


class FetchStatus(StrEnum):
    OK = "ok"
    MISSING = "missing"
    FAILED = "failed"


@dataclass(slots=True)
class SourceResult(Generic[T]):
    """Outcome of a list-shaped fetch: items plus an explicit status."""

    source: str
    items: list[T] = field(default_factory=list)
    status: FetchStatus = FetchStatus.OK
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == FetchStatus.OK

    @classmethod
    def failed(cls, source: str, message: str) -> SourceResult[T]:
        return cls(source=source, items=[], status=FetchStatus.FAILED, message=message)


def resolve_cache(cache: CacheStore | None) -> CacheStore:
    return cache if cache is not None else get_default_store()


def failure_message(exc: BaseException, default: str = "Failed to fetch") -> str:
    if isinstance(exc, AppError):
        return exc.message or default
    return str(exc) or default


def log_fetch_failure(source: str, exc: BaseException, **fields: Any) -> None:
    logger.warning(
        "Source fetch failed",
        source=source,
        error=failure_message(exc),
        error_code=getattr(exc, "code", type(exc).__name__),
        **fields,
    )
    record_source_fetch(source=source, status=str(FetchStatus.FAILED))


def record_fetch(source: str, status: FetchStatus) -> None:
    record_source_fetch(source=source, status=str(status))
