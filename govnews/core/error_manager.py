"""
Error manager fanning classified errors out to registered reporters.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Protocol

import httpx
import structlog

from govnews.core.config import Settings, settings
from govnews.core.errors import AppError, DataProcessingError
from govnews.core.observability import record_error_report

logger = structlog.get_logger(__name__)


class ErrorSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(slots=True)
class ErrorContext:
    """Report-time context; never stored on the error itself."""

    timestamp: datetime
    severity: ErrorSeverity
    user_agent: str | None = None
    url: str | None = None
    tags: list[str] = field(default_factory=list)
    request_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["timestamp"] = self.timestamp.isoformat()
        payload["severity"] = str(self.severity)
        return payload


class ErrorReporter(Protocol):
    async def report(self, error: AppError, context: ErrorContext) -> None: ...


class ConsoleErrorReporter:
    """Development reporter writing structured log lines."""

    async def report(self, error: AppError, context: ErrorContext) -> None:
        log_method = logger.warning
        if context.severity == ErrorSeverity.LOW:
            log_method = logger.info
        elif context.severity in {ErrorSeverity.HIGH, ErrorSeverity.CRITICAL}:
            log_method = logger.error
        log_method(
            "Error report",
            error=error.to_dict(),
            context=context.to_dict(),
            user_message=error.get_user_message(),
        )


class WebhookErrorReporter:
    """Deliver error reports to an HTTP endpoint with bounded retries."""

    def __init__(
        self,
        *,
        webhook_url: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        min_severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.min_severity = min_severity
        self.transport = transport

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> WebhookErrorReporter | None:
        config = config or settings
        if not config.ERROR_WEBHOOK_URL:
            return None
        return cls(
            webhook_url=config.ERROR_WEBHOOK_URL,
            timeout_seconds=config.ERROR_WEBHOOK_TIMEOUT_SECONDS,
            max_retries=config.ERROR_WEBHOOK_MAX_RETRIES,
        )

    async def report(self, error: AppError, context: ErrorContext) -> None:
        if _SEVERITY_ORDER[context.severity] < _SEVERITY_ORDER[self.min_severity]:
            return

        payload = {
            "event_type": "error_report",
            "error": error.to_dict(),
            "context": context.to_dict(),
        }
        max_attempts = self.max_retries + 1
        for attempt in range(max_attempts):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout_seconds,
                    transport=self.transport,
                ) as client:
                    response = await client.post(self.webhook_url, json=payload)
                    response.raise_for_status()
                return
            except httpx.HTTPStatusError as exc:
                status_code = exc.response.status_code
                retryable = status_code == 429 or status_code >= 500
                if not retryable or attempt + 1 >= max_attempts:
                    raise
            except (httpx.TimeoutException, httpx.NetworkError):
                if attempt + 1 >= max_attempts:
                    raise
            if self.backoff_seconds > 0:
                await asyncio.sleep(min(self.backoff_seconds * (2**attempt), 30.0))


_SEVERITY_ORDER = {
    ErrorSeverity.LOW: 0,
    ErrorSeverity.MEDIUM: 1,
    ErrorSeverity.HIGH: 2,
    ErrorSeverity.CRITICAL: 3,
}


class ErrorManager:
    """
    Receives errors, attaches severity and request context, and fans them
    out to every registered reporter.

    Constructed explicitly and passed to the components that need it; the
    console reporter is registered only in development unless overridden.
    """

    def __init__(
        self,
        reporters: list[ErrorReporter] | None = None,
        *,
        enable_console: bool | None = None,
        user_agent: str | None = None,
    ) -> None:
        self._reporters: list[ErrorReporter] = []
        if enable_console is None:
            enable_console = settings.is_development
        if enable_console:
            self._reporters.append(ConsoleErrorReporter())
        self._reporters.extend(reporters or [])
        self._user_agent = user_agent if user_agent is not None else settings.HTTP_USER_AGENT

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> ErrorManager:
        config = config or settings
        reporters: list[ErrorReporter] = []
        webhook = WebhookErrorReporter.from_settings(config)
        if webhook is not None:
            reporters.append(webhook)
        return cls(
            reporters,
            enable_console=config.is_development,
            user_agent=config.HTTP_USER_AGENT,
        )

    @property
    def reporters(self) -> list[ErrorReporter]:
        return list(self._reporters)

    def add_reporter(self, reporter: ErrorReporter) -> None:
        self._reporters.append(reporter)

    async def handle_error(
        self,
        error: BaseException,
        *,
        severity: ErrorSeverity | None = None,
        url: str | None = None,
        tags: list[str] | None = None,
        request_id: str | None = None,
        **extra: Any,
    ) -> ErrorContext:
        app_error = error if isinstance(error, AppError) else self.coerce(error)
        context = ErrorContext(
            timestamp=datetime.now(tz=UTC),
            severity=severity or self.determine_severity(app_error),
            user_agent=self._user_agent,
            url=url,
            tags=list(tags or []),
            request_id=request_id,
            extra=extra,
        )
        record_error_report(code=app_error.code, severity=str(context.severity))

        results = await asyncio.gather(
            *(reporter.report(app_error, context) for reporter in self._reporters),
            return_exceptions=True,
        )
        for reporter, result in zip(self._reporters, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Error reporter failed",
                    reporter=type(reporter).__name__,
                    error=str(result),
                    error_code=app_error.code,
                )
        return context

    @staticmethod
    def coerce(error: BaseException) -> AppError:
        if isinstance(error, AppError):
            return error
        return DataProcessingError(str(error) or type(error).__name__, original_error=error)

    @staticmethod
    def determine_severity(error: AppError) -> ErrorSeverity:
        code = error.code
        if code == "CONFIGURATION_ERROR":
            return ErrorSeverity.CRITICAL
        if code in {"AUTHENTICATION_ERROR", "AUTHORIZATION_ERROR"}:
            return ErrorSeverity.HIGH
        if code == "API_ERROR":
            return ErrorSeverity.HIGH if error.status_code >= 500 else ErrorSeverity.MEDIUM
        if code in {"NETWORK_ERROR", "TIMEOUT_ERROR"}:
            return ErrorSeverity.MEDIUM
        if code in {"VALIDATION_ERROR", "RATE_LIMIT_ERROR"}:
            return ErrorSeverity.LOW
        return ErrorSeverity.MEDIUM
