"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables and .env files. The legacy
``VITE_*`` variable names used by the browser build are accepted as aliases.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

GEMINI_KEY_PREFIX = "AIza"
GEMINI_KEY_MIN_LENGTH = 35
GEMINI_KEY_MAX_LENGTH = 50


def _read_secret_file(path: str) -> str:
    try:
        content = Path(path).expanduser().read_text(encoding="utf-8").strip()
    except OSError as exc:
        msg = f"Could not read secret file '{path}'"
        raise ValueError(msg) from exc
    if not content:
        msg = f"Secret file '{path}' is empty"
        raise ValueError(msg)
    return content


class Settings(BaseSettings):
    """
    Application settings.

    All settings can be overridden via environment variables.
    For example, GEMINI_API_KEY (or VITE_GEMINI_API_KEY) sets the Gemini key.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # =========================================================================
    # Generative AI
    # =========================================================================
    GEMINI_API_KEY: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "VITE_GEMINI_API_KEY"),
        description="Gemini API key (AIza..., 35-50 characters)",
    )
    GEMINI_API_KEY_FILE: str | None = Field(
        default=None,
        description="Path to file containing GEMINI_API_KEY",
    )
    GEMINI_BASE_URL: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/",
        description="OpenAI-compatible Gemini endpoint",
    )
    GEMINI_MODEL: str = Field(default="gemini-2.5-flash")
    GEMINI_TIMEOUT_SECONDS: float = Field(default=60.0, gt=0, le=600)

    # =========================================================================
    # Application
    # =========================================================================
    API_BASE_URL: str = Field(
        default="https://api.example.com",
        validation_alias=AliasChoices("API_BASE_URL", "VITE_API_BASE_URL"),
    )
    DEBUG_MODE: bool = Field(
        default=False,
        validation_alias=AliasChoices("DEBUG_MODE", "VITE_DEBUG_MODE"),
        description="Only the literal string 'true' enables debug mode",
    )
    ENVIRONMENT: str = Field(
        default="development",
        description="Environment: development, staging, production",
    )
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json", description="json or console")
    ERROR_MESSAGE_LOCALE: str = Field(
        default="en",
        description="Locale for user-facing error messages: en or tr",
    )
    ERROR_WEBHOOK_URL: str | None = Field(
        default=None,
        description="Optional webhook receiving error reports",
    )
    ERROR_WEBHOOK_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0, le=60)
    ERROR_WEBHOOK_MAX_RETRIES: int = Field(default=2, ge=0, le=10)

    # =========================================================================
    # Outbound HTTP
    # =========================================================================
    CORS_PROXY_URL: str = Field(
        default="https://api.allorigins.win/raw?url=",
        description="Prefix used to proxy third-party requests; empty disables proxying",
    )
    HTTP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0, le=600)
    HTTP_MAX_RETRIES: int = Field(default=3, ge=0, le=10)
    HTTP_RETRY_BASE_DELAY_SECONDS: float = Field(default=1.0, ge=0, le=60)
    HTTP_RETRY_MAX_DELAY_SECONDS: float = Field(default=10.0, ge=0, le=600)
    HTTP_USER_AGENT: str = Field(
        default="Mozilla/5.0 (compatible; TheGovNewsBot/1.0; +https://thegovnews.com)"
    )
    NOAA_API_TOKEN: str | None = Field(
        default=None,
        description="NOAA CDO token; sent as the 'token' header when set",
    )

    # =========================================================================
    # Caching
    # =========================================================================
    CACHE_PREFIX: str = Field(default="govnews-cache-")
    CACHE_BACKEND: str = Field(default="memory", description="memory or redis")
    CACHE_TTL_SECONDS: int | None = Field(
        default=None,
        ge=1,
        description="Optional Cache Store expiry; unset keeps entries for the session",
    )
    CACHE_MAX_BYTES: int | None = Field(
        default=5_000_000,
        ge=1,
        description="Storage quota for the in-memory cache backend",
    )
    REDIS_URL: str = Field(default="redis://localhost:6379/0")
    ASYNC_DATA_CACHE_TTL_SECONDS: float = Field(default=300.0, gt=0)

    @field_validator("DEBUG_MODE", mode="before")
    @classmethod
    def parse_debug_mode(cls, value: Any) -> bool:
        """Mirror the browser build: only the literal 'true' enables debugging."""
        if isinstance(value, str):
            return value.strip() == "true"
        return bool(value)

    @field_validator("GEMINI_API_KEY", "ERROR_WEBHOOK_URL", "NOAA_API_TOKEN", mode="before")
    @classmethod
    def parse_optional_str(cls, value: Any) -> str | None:
        """Normalize optional string values."""
        if value is None:
            return None
        normalized = str(value).strip()
        return normalized or None

    @field_validator("CACHE_BACKEND")
    @classmethod
    def validate_cache_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"memory", "redis"}:
            msg = "CACHE_BACKEND must be 'memory' or 'redis'"
            raise ValueError(msg)
        return normalized

    @model_validator(mode="after")
    def _load_secret_file_values(self) -> Settings:
        if self.GEMINI_API_KEY_FILE:
            self.GEMINI_API_KEY = _read_secret_file(self.GEMINI_API_KEY_FILE)
        return self

    @model_validator(mode="after")
    def _validate_retry_delays(self) -> Settings:
        if self.HTTP_RETRY_BASE_DELAY_SECONDS > self.HTTP_RETRY_MAX_DELAY_SECONDS:
            msg = "HTTP_RETRY_BASE_DELAY_SECONDS must be <= HTTP_RETRY_MAX_DELAY_SECONDS"
            raise ValueError(msg)
        return self

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def effective_log_level(self) -> str:
        if self.DEBUG_MODE:
            return "DEBUG"
        return self.LOG_LEVEL


@dataclass(slots=True)
class ConfigValidationResult:
    """Outcome of validating the environment at startup."""

    is_valid: bool
    missing_keys: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def describe(self) -> str:
        lines = ["Environment configuration validation failed:"]
        lines.extend(
            f"- Missing required environment variable: {key}" for key in self.missing_keys
        )
        lines.extend(f"- {error}" for error in self.errors)
        lines.append("")
        lines.append("Please check your .env file and ensure all required variables are set.")
        return "\n".join(lines)


def is_valid_gemini_api_key(api_key: str | None) -> bool:
    if not api_key or not isinstance(api_key, str):
        return False
    return (
        api_key.startswith(GEMINI_KEY_PREFIX)
        and GEMINI_KEY_MIN_LENGTH <= len(api_key) <= GEMINI_KEY_MAX_LENGTH
    )


def validate_environment(config: Settings | None = None) -> ConfigValidationResult:
    """Check required variables and key formats without raising."""
    config = config or settings
    missing_keys: list[str] = []
    errors: list[str] = []

    if not config.GEMINI_API_KEY:
        missing_keys.append("GEMINI_API_KEY")
    elif not is_valid_gemini_api_key(config.GEMINI_API_KEY):
        errors.append("GEMINI_API_KEY appears to be invalid format")

    return ConfigValidationResult(
        is_valid=not missing_keys and not errors,
        missing_keys=missing_keys,
        errors=errors,
    )


def initialize_environment(config: Settings | None = None) -> ConfigValidationResult:
    """
    Validate configuration at startup.

    Invalid configuration is fatal outside development; in development the
    problem is logged and startup continues.
    """
    from govnews.core.errors import ConfigurationError

    config = config or settings
    result = validate_environment(config)
    if result.is_valid:
        logger.info("Environment configuration validated successfully")
        return result

    logger.error(
        "Environment configuration invalid",
        missing_keys=result.missing_keys,
        errors=result.errors,
        environment=config.ENVIRONMENT,
    )
    if not config.is_development:
        raise ConfigurationError(
            result.describe(),
            config_key=(result.missing_keys or ["GEMINI_API_KEY"])[0],
        )
    return result


def get_gemini_api_key(config: Settings | None = None) -> str:
    """Return the configured Gemini key or raise ConfigurationError."""
    from govnews.core.errors import ConfigurationError

    config = config or settings
    if not is_valid_gemini_api_key(config.GEMINI_API_KEY):
        msg = (
            "Environment configuration is not valid. "
            "Set GEMINI_API_KEY to a valid Gemini API key."
        )
        raise ConfigurationError(msg, config_key="GEMINI_API_KEY")
    return str(config.GEMINI_API_KEY)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience instance
settings = get_settings()
