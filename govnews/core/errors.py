"""
Typed error hierarchy for the data-fetch pipeline.

Every failure that crosses a pipeline boundary is represented by exactly one
``AppError`` subclass carrying a machine code, an HTTP-like status, structured
context and a localized user-facing message.
"""

from __future__ import annotations

import asyncio
import socket
from datetime import UTC, datetime
from typing import Any, ClassVar

import httpx

from govnews.core.config import settings

_MESSAGES: dict[str, dict[str, str]] = {
    "en": {
        "api.400": "Invalid request. Please check the information you entered.",
        "api.401": "Authorization error. Please sign in.",
        "api.403": "You do not have permission for this operation.",
        "api.404": "The requested resource was not found.",
        "api.429": "Too many requests were sent. Please wait a moment.",
        "api.500": "Server error. Please try again later.",
        "api.503": "The service is temporarily unavailable.",
        "api.default": "An error occurred. Please try again later.",
        "network": "Internet connection problem. Please check your connection.",
        "validation.field": "Invalid data in the {field} field.",
        "validation": "The submitted data is invalid.",
        "configuration": "Application configuration error. Please contact the administrator.",
        "authentication": "Your session has expired. Please sign in again.",
        "authorization": "You do not have permission for this operation.",
        "data_processing": "Data processing error. Please try again later.",
        "timeout": "The operation timed out. Please try again.",
        "rate_limit": "Too many requests were sent.",
        "rate_limit.after": " Please retry in {seconds} seconds.",
        "rate_limit.wait": " Please wait a moment before you retry.",
    },
    "tr": {
        "api.400": "Geçersiz istek. Lütfen girdiğiniz bilgileri kontrol edin.",
        "api.401": "Yetkilendirme hatası. Lütfen giriş yapın.",
        "api.403": "Bu işlem için yetkiniz bulunmuyor.",
        "api.404": "İstenen kaynak bulunamadı.",
        "api.429": "Çok fazla istek gönderildi. Lütfen biraz bekleyin.",
        "api.500": "Sunucu hatası. Lütfen daha sonra tekrar deneyin.",
        "api.503": "Servis geçici olarak kullanılamıyor.",
        "api.default": "Bir hata oluştu. Lütfen daha sonra tekrar deneyin.",
        "network": "İnternet bağlantısı sorunu. Lütfen bağlantınızı kontrol edin.",
        "validation.field": "{field} alanında geçersiz veri.",
        "validation": "Girilen veriler geçersiz.",
        "configuration": "Uygulama yapılandırma hatası. Lütfen yöneticiye başvurun.",
        "authentication": "Oturum süreniz dolmuş. Lütfen tekrar giriş yapın.",
        "authorization": "Bu işlem için yetkiniz bulunmuyor.",
        "data_processing": "Veri işleme hatası. Lütfen daha sonra tekrar deneyin.",
        "timeout": "İşlem zaman aşımına uğradı. Lütfen tekrar deneyin.",
        "rate_limit": "Çok fazla istek gönderildi.",
        "rate_limit.after": " {seconds} saniye sonra tekrar deneyin.",
        "rate_limit.wait": " Lütfen biraz bekleyin.",
    },
}


def localized_message(key: str, locale: str | None = None, **values: Any) -> str:
    """Look up a user-facing message, falling back to English."""
    catalog = _MESSAGES.get((locale or settings.ERROR_MESSAGE_LOCALE).lower(), _MESSAGES["en"])
    template = catalog.get(key) or _MESSAGES["en"][key]
    return template.format(**values) if values else template


class AppError(Exception):
    """Base class for every classified pipeline failure."""

    code: ClassVar[str] = "APP_ERROR"
    default_status_code: ClassVar[int] = 500

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        self.original_error = original_error
        self.status_code = self.default_status_code if status_code is None else status_code
        if original_error is not None:
            self.__cause__ = original_error

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging and reporters."""
        payload: dict[str, Any] = {
            "name": self.name,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "timestamp": datetime.now(tz=UTC).isoformat(),
        }
        if self.original_error is not None:
            payload["cause"] = f"{type(self.original_error).__name__}: {self.original_error}"
        return payload

    def get_user_message(self, locale: str | None = None) -> str:
        return localized_message("api.default", locale)


class ApiError(AppError):
    code: ClassVar[str] = "API_ERROR"

    def __init__(
        self,
        status_code: int,
        message: str,
        endpoint: str | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            context={"endpoint": endpoint, "status_code": status_code},
            original_error=original_error,
            status_code=status_code,
        )
        self.endpoint = endpoint

    def get_user_message(self, locale: str | None = None) -> str:
        if self.status_code in {400, 401, 403, 404, 429, 500, 503}:
            return localized_message(f"api.{self.status_code}", locale)
        return localized_message("api.default", locale)


class NetworkError(AppError):
    code: ClassVar[str] = "NETWORK_ERROR"
    default_status_code: ClassVar[int] = 0

    def __init__(
        self,
        message: str,
        *,
        reason: str = "connection",
        endpoint: str | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            context={"reason": reason, "endpoint": endpoint},
            original_error=original_error,
        )
        self.reason = reason
        self.endpoint = endpoint

    def get_user_message(self, locale: str | None = None) -> str:
        return localized_message("network", locale)


class ValidationError(AppError):
    code: ClassVar[str] = "VALIDATION_ERROR"
    default_status_code: ClassVar[int] = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        expected_type: str | None = None,
        received_value: Any = None,
    ) -> None:
        super().__init__(
            message,
            context={
                "field": field,
                "expected_type": expected_type,
                "received_value": repr(received_value)[:200],
            },
        )
        self.field = field
        self.expected_type = expected_type
        self.received_value = received_value

    def get_user_message(self, locale: str | None = None) -> str:
        if self.field:
            return localized_message("validation.field", locale, field=self.field)
        return localized_message("validation", locale)


class ConfigurationError(AppError):
    code: ClassVar[str] = "CONFIGURATION_ERROR"
    default_status_code: ClassVar[int] = 500

    def __init__(self, message: str, config_key: str | None = None) -> None:
        super().__init__(message, context={"config_key": config_key})
        self.config_key = config_key

    def get_user_message(self, locale: str | None = None) -> str:
        return localized_message("configuration", locale)


class AuthenticationError(AppError):
    code: ClassVar[str] = "AUTHENTICATION_ERROR"
    default_status_code: ClassVar[int] = 401

    def get_user_message(self, locale: str | None = None) -> str:
        return localized_message("authentication", locale)


class AuthorizationError(AppError):
    code: ClassVar[str] = "AUTHORIZATION_ERROR"
    default_status_code: ClassVar[int] = 403

    def get_user_message(self, locale: str | None = None) -> str:
        return localized_message("authorization", locale)


class DataProcessingError(AppError):
    code: ClassVar[str] = "DATA_PROCESSING_ERROR"
    default_status_code: ClassVar[int] = 422

    def get_user_message(self, locale: str | None = None) -> str:
        return localized_message("data_processing", locale)


class RequestTimeoutError(AppError):
    code: ClassVar[str] = "TIMEOUT_ERROR"
    default_status_code: ClassVar[int] = 408

    def __init__(
        self,
        message: str,
        timeout_ms: int = 0,
        *,
        endpoint: str | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            context={"timeout_ms": timeout_ms, "endpoint": endpoint},
            original_error=original_error,
        )
        self.timeout_ms = timeout_ms

    def get_user_message(self, locale: str | None = None) -> str:
        return localized_message("timeout", locale)


class RateLimitError(ApiError):
    code: ClassVar[str] = "RATE_LIMIT_ERROR"

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        endpoint: str | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(429, message, endpoint, original_error)
        self.retry_after = retry_after
        self.context["retry_after"] = retry_after

    def get_user_message(self, locale: str | None = None) -> str:
        base = localized_message("rate_limit", locale)
        if self.retry_after:
            seconds = self.retry_after
            if float(seconds).is_integer():
                seconds = int(seconds)
            return base + localized_message("rate_limit.after", locale, seconds=seconds)
        return base + localized_message("rate_limit.wait", locale)


class ErrorFactory:
    """Map HTTP statuses and transport exceptions onto the taxonomy."""

    @staticmethod
    def from_http_status(
        status: int,
        message: str,
        endpoint: str | None = None,
        original_error: BaseException | None = None,
        retry_after: float | None = None,
    ) -> AppError:
        if status == 401:
            return AuthenticationError(
                message,
                context={"endpoint": endpoint},
                original_error=original_error,
            )
        if status == 403:
            return AuthorizationError(
                message,
                context={"endpoint": endpoint},
                original_error=original_error,
            )
        if status == 408:
            return RequestTimeoutError(
                message, 0, endpoint=endpoint, original_error=original_error
            )
        if status == 422:
            return DataProcessingError(
                message,
                context={"endpoint": endpoint},
                original_error=original_error,
            )
        if status == 429:
            return RateLimitError(
                message,
                retry_after=retry_after,
                endpoint=endpoint,
                original_error=original_error,
            )
        return ApiError(status, message, endpoint, original_error)

    @staticmethod
    def from_fetch_error(error: BaseException, endpoint: str | None = None) -> AppError:
        if isinstance(error, AppError):
            return error
        if isinstance(error, httpx.TimeoutException | asyncio.TimeoutError | TimeoutError):
            return RequestTimeoutError(
                "Request timeout", 0, endpoint=endpoint, original_error=error
            )
        if isinstance(error, httpx.HTTPStatusError):
            return ErrorFactory.from_http_status(
                error.response.status_code,
                str(error),
                endpoint,
                original_error=error,
            )
        if isinstance(error, httpx.TransportError | ConnectionError | OSError):
            return NetworkError(
                "Network request failed",
                reason=ErrorFactory.network_reason(error),
                endpoint=endpoint,
                original_error=error,
            )
        return ApiError(0, str(error) or type(error).__name__, endpoint, error)

    @staticmethod
    def network_reason(error: BaseException) -> str:
        if ErrorFactory._caused_by(error, socket.gaierror):
            return "dns"
        if isinstance(error, httpx.ConnectError | ConnectionRefusedError):
            return "connect"
        if isinstance(error, httpx.ReadError):
            return "read"
        if isinstance(error, httpx.WriteError):
            return "write"
        if isinstance(error, httpx.ProtocolError):
            return "protocol"
        return "connection"

    @staticmethod
    def _caused_by(error: BaseException, error_type: type[BaseException]) -> bool:
        seen: set[int] = set()
        current: BaseException | None = error
        while current is not None and id(current) not in seen:
            if isinstance(current, error_type):
                return True
            seen.add(id(current))
            current = current.__cause__ or current.__context__
        return False
