"""
Shared outbound HTTP layer: bounded retries, error classification and
reporting for every third-party call.
"""

from __future__ import annotations

import asyncio
import json as jsonlib
import random
import time
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from govnews.core.config import Settings, settings
from govnews.core.error_manager import ErrorManager, ErrorSeverity
from govnews.core.errors import (
    ApiError,
    AppError,
    ErrorFactory,
    RateLimitError,
    RequestTimeoutError,
)
from govnews.core.observability import record_external_api_call, record_external_api_retry
from govnews.core.service_monitor import ServiceCallLog, service_name_for_url

logger = structlog.get_logger(__name__)

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})

SleepFn = Callable[[float], Coroutine[Any, Any, None]]


@dataclass(slots=True, frozen=True)
class RetryConfig:
    """Retry policy; delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    retryable_statuses: frozenset[int] = field(default=DEFAULT_RETRYABLE_STATUSES)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> RetryConfig:
        config = config or settings
        return cls(
            max_retries=config.HTTP_MAX_RETRIES,
            base_delay=config.HTTP_RETRY_BASE_DELAY_SECONDS,
            max_delay=config.HTTP_RETRY_MAX_DELAY_SECONDS,
        )


@dataclass(slots=True)
class ApiResponse:
    data: Any
    status: int
    status_text: str
    headers: httpx.Headers
    url: str
    attempts: int = 1


class ApiInterceptor:
    """
    Wraps an ``httpx.AsyncClient`` with the pipeline's retry and error policy.

    A call makes at most ``retries + 1`` attempts. Retryable statuses and
    transient transport failures (timeouts, connection errors) are retried
    with capped exponential backoff; everything else is classified into the
    ``AppError`` taxonomy, reported through the error manager unless
    suppressed, and raised.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        error_manager: ErrorManager | None = None,
        retry_config: RetryConfig | None = None,
        *,
        sleep_fn: SleepFn | None = None,
        call_log: ServiceCallLog | None = None,
        timeout_seconds: float | None = None,
        proxy_url: str | None = None,
        user_agent: str | None = None,
        random_fn: Callable[[], float] | None = None,
    ) -> None:
        self.http_client = http_client
        self.error_manager = error_manager or ErrorManager.from_settings()
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.call_log = call_log
        self.timeout_seconds = (
            settings.HTTP_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )
        self.proxy_url = settings.CORS_PROXY_URL if proxy_url is None else proxy_url
        self.user_agent = settings.HTTP_USER_AGENT if user_agent is None else user_agent
        self._sleep = sleep_fn or asyncio.sleep
        self._random = random_fn or random.random

    def proxied(self, url: str) -> str:
        """Route a third-party URL through the configured CORS proxy."""
        if not self.proxy_url:
            return url
        return f"{self.proxy_url}{quote(url, safe='')}"

    def calculate_retry_delay(self, attempt: int, base_delay: float | None = None) -> float:
        """
        Delay before retry number ``attempt`` (1-based).

        Exponential in ``attempt`` with up to 10% jitter, capped at
        ``max_delay``.
        """
        base = self.retry_config.base_delay if base_delay is None else base_delay
        exponential = base * (2 ** max(0, attempt - 1))
        jitter = self._random() * 0.1 * exponential
        return min(exponential + jitter, self.retry_config.max_delay)

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        *,
        timeout: float | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
        skip_error_reporting: bool = False,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        content: str | bytes | None = None,
    ) -> ApiResponse:
        max_retries = self.retry_config.max_retries if retries is None else max(0, retries)
        base_delay = self.retry_config.base_delay if retry_delay is None else retry_delay
        timeout_seconds = self.timeout_seconds if timeout is None else timeout
        service = service_name_for_url(url)
        request_headers = {"User-Agent": self.user_agent, **(headers or {})}

        for attempt in range(max_retries + 1):
            started = time.perf_counter()
            try:
                async with asyncio.timeout(timeout_seconds):
                    response = await self.http_client.request(
                        method,
                        url,
                        headers=request_headers,
                        params=params,
                        json=json,
                        content=content,
                        timeout=timeout_seconds,
                        follow_redirects=True,
                    )
                    data = self._decode_body(response)
            except TimeoutError as exc:
                timeout_ms = int(timeout_seconds * 1000)
                error: AppError = RequestTimeoutError(
                    f"Request timeout after {timeout_ms}ms",
                    timeout_ms,
                    endpoint=url,
                    original_error=exc,
                )
                self._record_attempt(service, url, 408, started, outcome="timeout")
            except (httpx.TransportError, OSError) as exc:
                error = ErrorFactory.from_fetch_error(exc, url)
                self._record_attempt(service, url, 0, started, outcome="network_error")
            except httpx.HTTPError as exc:
                # Redirect loops and undecodable bodies are not transient.
                error = ErrorFactory.from_fetch_error(exc, url)
                self._record_attempt(service, url, 0, started, outcome="request_error")
                if not skip_error_reporting:
                    await self.error_manager.handle_error(
                        error,
                        severity=ErrorSeverity.MEDIUM,
                        tags=["api-call", "request-error"],
                        url=url,
                    )
                raise error from exc
            else:
                if response.is_success:
                    self._record_attempt(
                        service, url, response.status_code, started, outcome="success"
                    )
                    return ApiResponse(
                        data=data,
                        status=response.status_code,
                        status_text=response.reason_phrase,
                        headers=response.headers,
                        url=str(response.url),
                        attempts=attempt + 1,
                    )

                self._record_attempt(
                    service, url, response.status_code, started, outcome="http_error"
                )
                error = self._error_from_response(response, data, url)
                if attempt < max_retries and self._should_retry(response.status_code):
                    delay = self._retry_delay_for(error, attempt + 1, base_delay)
                    record_external_api_retry(
                        service=service, reason=f"http_{response.status_code}"
                    )
                    logger.debug(
                        "Retrying API call",
                        url=url,
                        status_code=response.status_code,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                    )
                    await self._sleep(delay)
                    continue

                if not skip_error_reporting:
                    await self.error_manager.handle_error(
                        error,
                        severity=self._severity_for_status(response.status_code),
                        tags=["api-call", "http-error"],
                        url=url,
                    )
                raise error

            if attempt < max_retries:
                delay = self.calculate_retry_delay(attempt + 1, base_delay)
                record_external_api_retry(service=service, reason=error.code.lower())
                logger.debug(
                    "Retrying API call after transport failure",
                    url=url,
                    error_code=error.code,
                    attempt=attempt + 1,
                    delay_seconds=delay,
                )
                await self._sleep(delay)
                continue

            if not skip_error_reporting:
                await self.error_manager.handle_error(
                    error,
                    severity=ErrorSeverity.MEDIUM,
                    tags=["api-call", "network-error"],
                    url=url,
                )
            raise error

        raise ApiError(0, "Unknown error occurred", url)

    async def get(self, url: str, **options: Any) -> Any:
        return (await self.fetch(url, "GET", **options)).data

    async def delete(self, url: str, **options: Any) -> Any:
        return (await self.fetch(url, "DELETE", **options)).data

    async def post(self, url: str, data: Any = None, **options: Any) -> Any:
        return await self._send_json("POST", url, data, **options)

    async def put(self, url: str, data: Any = None, **options: Any) -> Any:
        return await self._send_json("PUT", url, data, **options)

    async def patch(self, url: str, data: Any = None, **options: Any) -> Any:
        return await self._send_json("PATCH", url, data, **options)

    async def _send_json(self, method: str, url: str, data: Any, **options: Any) -> Any:
        headers = {"Content-Type": "application/json", **(options.pop("headers", None) or {})}
        content = jsonlib.dumps(data) if data is not None else None
        response = await self.fetch(url, method, headers=headers, content=content, **options)
        return response.data

    def _should_retry(self, status_code: int) -> bool:
        return status_code in self.retry_config.retryable_statuses

    def _retry_delay_for(self, error: AppError, attempt: int, base_delay: float) -> float:
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(float(error.retry_after), self.retry_config.max_delay)
        return self.calculate_retry_delay(attempt, base_delay)

    def _record_attempt(
        self,
        service: str,
        url: str,
        status: int,
        started: float,
        *,
        outcome: str,
    ) -> None:
        latency_seconds = time.perf_counter() - started
        record_external_api_call(service=service, outcome=outcome, latency_seconds=latency_seconds)
        if self.call_log is not None:
            self.call_log.record(
                service_name=service,
                endpoint=url,
                status=status,
                latency_ms=latency_seconds * 1000,
            )

    @staticmethod
    def _decode_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text

    @staticmethod
    def _error_from_response(response: httpx.Response, data: Any, url: str) -> AppError:
        message = f"HTTP {response.status_code}: {response.reason_phrase}"
        if isinstance(data, dict):
            if isinstance(data.get("message"), str):
                message = data["message"]
            elif isinstance(data.get("error"), str):
                message = data["error"]

        retry_after = None
        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        return ErrorFactory.from_http_status(
            response.status_code,
            message,
            url,
            retry_after=retry_after,
        )

    @staticmethod
    def _severity_for_status(status_code: int) -> ErrorSeverity:
        if status_code >= 500:
            return ErrorSeverity.HIGH
        if status_code >= 400:
            return ErrorSeverity.MEDIUM
        return ErrorSeverity.LOW


def _parse_retry_after(raw_retry_after: str | None) -> int | None:
    if raw_retry_after is None:
        return None
    retry_after = raw_retry_after.strip()
    if not retry_after:
        return None
    try:
        parsed = int(float(retry_after))
    except ValueError:
        return None
    return parsed if parsed >= 0 else None
