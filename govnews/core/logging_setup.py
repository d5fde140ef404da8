"""
Structured logging configuration.
"""

from __future__ import annotations

import logging

import structlog

from govnews.core.config import Settings, settings


def configure_logging(config: Settings | None = None) -> None:
    """Configure stdlib and structlog processors."""
    config = config or settings
    level_name = config.effective_log_level.upper()
    level_value = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level_value,
        format="%(message)s",
    )
    # httpx logs every request at INFO; keep it out of the application stream
    logging.getLogger("httpx").setLevel(max(level_value, logging.WARNING))

    renderer: structlog.types.Processor
    if config.LOG_FORMAT == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            level_value,
        ),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
