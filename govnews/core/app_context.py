"""
Process-scoped wiring for the data pipeline.

``AppContext`` owns the shared HTTP client and the collaborators every
fetcher needs. Use it as ``async with AppContext.create() as ctx:`` so the
client is closed on exit.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import structlog

from govnews.core.async_data import TTLCache
from govnews.core.cache import CacheStore
from govnews.core.config import Settings, settings
from govnews.core.error_manager import ErrorManager
from govnews.core.service_monitor import ApiKeyRegistry, ServiceCallLog
from govnews.ingestion.gemini import GeminiService
from govnews.ingestion.interceptor import ApiInterceptor, RetryConfig

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class AppContext:
    config: Settings
    error_manager: ErrorManager
    cache: CacheStore
    ttl_cache: TTLCache
    http_client: httpx.AsyncClient
    interceptor: ApiInterceptor
    call_log: ServiceCallLog
    api_keys: ApiKeyRegistry
    gemini: GeminiService

    @classmethod
    @asynccontextmanager
    async def create(
        cls,
        config: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        error_manager: ErrorManager | None = None,
        cache: CacheStore | None = None,
        gemini: GeminiService | None = None,
    ) -> AsyncIterator[AppContext]:
        config = config or settings
        error_manager = error_manager or ErrorManager.from_settings(config)
        cache = cache or CacheStore.from_settings(config)
        call_log = ServiceCallLog()

        async with httpx.AsyncClient(
            headers={"User-Agent": config.HTTP_USER_AGENT},
            timeout=config.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        ) as http_client:
            interceptor = ApiInterceptor(
                http_client,
                error_manager,
                RetryConfig.from_settings(config),
                call_log=call_log,
                timeout_seconds=config.HTTP_TIMEOUT_SECONDS,
                proxy_url=config.CORS_PROXY_URL,
                user_agent=config.HTTP_USER_AGENT,
            )
            context = cls(
                config=config,
                error_manager=error_manager,
                cache=cache,
                ttl_cache=TTLCache(default_ttl=config.ASYNC_DATA_CACHE_TTL_SECONDS),
                http_client=http_client,
                interceptor=interceptor,
                call_log=call_log,
                api_keys=ApiKeyRegistry(),
                gemini=gemini
                or GeminiService(
                    cache=cache,
                    interceptor=interceptor,
                    error_manager=error_manager,
                    config=config,
                ),
            )
            logger.debug("Application context opened", environment=config.ENVIRONMENT)
            yield context
        logger.debug("Application context closed")
