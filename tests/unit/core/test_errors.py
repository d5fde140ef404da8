from __future__ import annotations

import socket

import httpx
import pytest

from govnews.core.errors import (
    ApiError,
    AppError,
    AuthenticationError,
    AuthorizationError,
    DataProcessingError,
    ErrorFactory,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    ValidationError,
)

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("status", "expected_type"),
    [
        (401, AuthenticationError),
        (403, AuthorizationError),
        (408, RequestTimeoutError),
        (422, DataProcessingError),
        (429, RateLimitError),
        (404, ApiError),
        (503, ApiError),
    ],
)
def test_from_http_status_maps_status_to_error_type(status: int, expected_type: type) -> None:
    error = ErrorFactory.from_http_status(status, "boom", "https://api.test/x")

    assert type(error) is expected_type
    assert error.message == "boom"


def test_from_http_status_keeps_status_code_on_generic_api_error() -> None:
    error = ErrorFactory.from_http_status(503, "unavailable", "https://api.test/x")

    assert isinstance(error, ApiError)
    assert error.status_code == 503
    assert error.endpoint == "https://api.test/x"


@pytest.mark.parametrize("status", [401, 403, 408, 422, 429, 503])
def test_from_http_status_keeps_endpoint_and_cause(status: int) -> None:
    cause = RuntimeError("upstream")

    error = ErrorFactory.from_http_status(
        status, "boom", "https://api.test/x", original_error=cause
    )

    assert error.context["endpoint"] == "https://api.test/x"
    assert error.original_error is cause


def test_rate_limit_error_has_own_code_and_mentions_retry() -> None:
    error = ErrorFactory.from_http_status(429, "slow down", retry_after=30)

    assert isinstance(error, RateLimitError)
    assert error.code == "RATE_LIMIT_ERROR"
    assert error.status_code == 429
    assert error.retry_after == 30
    assert "retry in 30 seconds" in error.get_user_message("en")


def test_rate_limit_error_without_retry_after_asks_to_wait() -> None:
    error = RateLimitError("slow down")

    assert "wait a moment" in error.get_user_message("en")


def test_user_messages_are_localized() -> None:
    error = ApiError(404, "missing")

    assert error.get_user_message("en") == "The requested resource was not found."
    assert error.get_user_message("tr") == "İstenen kaynak bulunamadı."


def test_unknown_locale_falls_back_to_english() -> None:
    assert NetworkError("down").get_user_message("de").startswith("Internet connection problem")


def test_validation_error_message_names_field() -> None:
    error = ValidationError("bad", field="query", expected_type="str", received_value="")

    assert error.get_user_message("en") == "Invalid data in the query field."
    assert error.context["field"] == "query"


def test_to_dict_serializes_error_and_cause() -> None:
    cause = ValueError("bad json")
    error = DataProcessingError(
        "could not parse", context={"source": "gdelt"}, original_error=cause
    )

    payload = error.to_dict()

    assert payload["name"] == "DataProcessingError"
    assert payload["code"] == "DATA_PROCESSING_ERROR"
    assert payload["status_code"] == 422
    assert payload["context"] == {"source": "gdelt"}
    assert payload["cause"] == "ValueError: bad json"
    assert error.__cause__ is cause


def test_from_fetch_error_classifies_timeouts() -> None:
    error = ErrorFactory.from_fetch_error(httpx.ReadTimeout("slow"), "https://api.test")

    assert isinstance(error, RequestTimeoutError)


def test_from_fetch_error_classifies_connect_errors() -> None:
    error = ErrorFactory.from_fetch_error(httpx.ConnectError("refused"), "https://api.test")

    assert isinstance(error, NetworkError)
    assert error.reason == "connect"
    assert error.endpoint == "https://api.test"


def test_from_fetch_error_detects_dns_failures_through_cause_chain() -> None:
    try:
        try:
            raise socket.gaierror(-2, "Name or service not known")
        except socket.gaierror as exc:
            raise httpx.ConnectError("dns failure") from exc
    except httpx.ConnectError as wrapped:
        error = ErrorFactory.from_fetch_error(wrapped)

    assert isinstance(error, NetworkError)
    assert error.reason == "dns"


def test_from_fetch_error_passes_app_errors_through() -> None:
    original = ValidationError("bad")

    assert ErrorFactory.from_fetch_error(original) is original


def test_from_fetch_error_wraps_unknown_errors_as_api_error() -> None:
    error = ErrorFactory.from_fetch_error(RuntimeError("weird"))

    assert isinstance(error, ApiError)
    assert error.status_code == 0
    assert isinstance(error, AppError)
