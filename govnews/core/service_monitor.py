"""
Admin console data: outbound call log, derived service status and an
in-memory API key registry.

The key registry is a local bookkeeping aid only; it provides no credential
protection.
"""

from __future__ import annotations

import secrets
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from threading import RLock
from urllib.parse import parse_qs, urlsplit
from uuid import uuid4

import structlog

from govnews.core.errors import RateLimitError, ValidationError

logger = structlog.get_logger(__name__)

OPERATIONAL_SUCCESS_RATE = 0.95
DEGRADED_SUCCESS_RATE = 0.5


class ServiceHealth(StrEnum):
    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OFFLINE = "offline"


@dataclass(slots=True, frozen=True)
class ApiCallLog:
    id: str
    timestamp: datetime
    service_name: str
    endpoint: str
    status: int
    latency_ms: float

    @property
    def succeeded(self) -> bool:
        return 200 <= self.status < 400


@dataclass(slots=True, frozen=True)
class ApiServiceStatus:
    id: str
    name: str
    status: ServiceHealth
    last_success: datetime | None
    avg_response_time: float
    uptime: float


class ServiceCallLog:
    """Bounded, newest-last log of outbound API attempts."""

    def __init__(
        self,
        max_entries: int = 1000,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        if max_entries < 1:
            msg = "max_entries must be >= 1"
            raise ValueError(msg)
        self._entries: deque[ApiCallLog] = deque(maxlen=max_entries)
        self._lock = RLock()
        self._now_fn = now_fn or (lambda: datetime.now(tz=UTC))

    def record(
        self,
        *,
        service_name: str,
        endpoint: str,
        status: int,
        latency_ms: float,
    ) -> ApiCallLog:
        entry = ApiCallLog(
            id=uuid4().hex,
            timestamp=self._now_fn(),
            service_name=service_name,
            endpoint=endpoint,
            status=status,
            latency_ms=round(max(0.0, latency_ms), 2),
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(
        self, service_name: str | None = None, limit: int | None = None
    ) -> list[ApiCallLog]:
        with self._lock:
            rows = [
                entry
                for entry in self._entries
                if service_name is None or entry.service_name == service_name
            ]
        rows.reverse()
        return rows[:limit] if limit is not None else rows

    def service_names(self) -> list[str]:
        with self._lock:
            return sorted({entry.service_name for entry in self._entries})

    def service_status(self, service_name: str) -> ApiServiceStatus:
        return summarize_service(service_name, self.entries(service_name))

    def all_statuses(self) -> list[ApiServiceStatus]:
        return [self.service_status(name) for name in self.service_names()]


def summarize_service(service_name: str, entries: Iterable[ApiCallLog]) -> ApiServiceStatus:
    rows = list(entries)
    if not rows:
        return ApiServiceStatus(
            id=service_name,
            name=service_name,
            status=ServiceHealth.OFFLINE,
            last_success=None,
            avg_response_time=0.0,
            uptime=0.0,
        )

    successes = [row for row in rows if row.succeeded]
    success_rate = len(successes) / len(rows)
    if success_rate >= OPERATIONAL_SUCCESS_RATE:
        health = ServiceHealth.OPERATIONAL
    elif success_rate >= DEGRADED_SUCCESS_RATE:
        health = ServiceHealth.DEGRADED
    else:
        health = ServiceHealth.OFFLINE

    return ApiServiceStatus(
        id=service_name,
        name=service_name,
        status=health,
        last_success=max((row.timestamp for row in successes), default=None),
        avg_response_time=round(sum(row.latency_ms for row in rows) / len(rows), 2),
        uptime=round(success_rate * 100, 2),
    )


def service_name_for_url(url: str) -> str:
    """Best-effort service label: the target host, unwrapping the CORS proxy."""
    parsed = urlsplit(url)
    if "url=" in parsed.query:
        target = parse_qs(parsed.query).get("url", [""])[0]
        if target:
            return service_name_for_url(target)
    host = (parsed.hostname or "unknown").lower()
    return host[4:] if host.startswith("www.") else host


class ApiKeyStatus(StrEnum):
    ACTIVE = "active"
    REVOKED = "revoked"


@dataclass(slots=True)
class ApiKeyUsage:
    current: int = 0
    quota: int = 1000


@dataclass(slots=True)
class ApiKey:
    id: str
    service_name: str
    key_name: str
    key_value: str
    status: ApiKeyStatus
    created_at: datetime
    expires_at: datetime | None
    usage: ApiKeyUsage = field(default_factory=ApiKeyUsage)
    scopes: list[str] = field(default_factory=list)

    @property
    def masked_value(self) -> str:
        if len(self.key_value) <= 8:
            return "*" * len(self.key_value)
        return f"{self.key_value[:4]}{'*' * (len(self.key_value) - 8)}{self.key_value[-4:]}"


class ApiKeyRegistry:
    """Track third-party API keys and their usage quotas."""

    def __init__(self, now_fn: Callable[[], datetime] | None = None) -> None:
        self._keys: dict[str, ApiKey] = {}
        self._lock = RLock()
        self._now_fn = now_fn or (lambda: datetime.now(tz=UTC))

    def create(
        self,
        *,
        service_name: str,
        key_name: str,
        key_value: str | None = None,
        quota: int = 1000,
        scopes: list[str] | None = None,
        expires_at: datetime | None = None,
    ) -> ApiKey:
        if not service_name.strip():
            raise ValidationError("service_name is required", field="service_name")
        if not key_name.strip():
            raise ValidationError("key_name is required", field="key_name")
        if quota < 1:
            raise ValidationError("quota must be >= 1", field="quota", received_value=quota)

        record = ApiKey(
            id=uuid4().hex,
            service_name=service_name.strip(),
            key_name=key_name.strip(),
            key_value=key_value or f"gnk_{secrets.token_urlsafe(24)}",
            status=ApiKeyStatus.ACTIVE,
            created_at=self._now_fn(),
            expires_at=expires_at,
            usage=ApiKeyUsage(current=0, quota=quota),
            scopes=list(scopes or []),
        )
        with self._lock:
            self._keys[record.id] = record
        logger.info("API key created", key_id=record.id, service_name=record.service_name)
        return record

    def list_keys(self, service_name: str | None = None) -> list[ApiKey]:
        with self._lock:
            rows = [
                record
                for record in self._keys.values()
                if service_name is None or record.service_name == service_name
            ]
        return sorted(rows, key=lambda record: record.created_at)

    def get(self, key_id: str) -> ApiKey | None:
        with self._lock:
            return self._keys.get(key_id)

    def revoke(self, key_id: str) -> bool:
        with self._lock:
            record = self._keys.get(key_id)
            if record is None or record.status == ApiKeyStatus.REVOKED:
                return False
            record.status = ApiKeyStatus.REVOKED
        logger.info("API key revoked", key_id=key_id)
        return True

    def is_usable(self, record: ApiKey) -> bool:
        if record.status != ApiKeyStatus.ACTIVE:
            return False
        return record.expires_at is None or record.expires_at > self._now_fn()

    def record_usage(self, key_id: str, count: int = 1) -> ApiKey:
        with self._lock:
            record = self._keys.get(key_id)
            if record is None or not self.is_usable(record):
                msg = "API key is not active"
                raise ValidationError(msg, field="key_id", received_value=key_id)
            if record.usage.current + count > record.usage.quota:
                msg = f"Quota of {record.usage.quota} calls exhausted for {record.key_name}"
                raise RateLimitError(msg)
            record.usage.current += count
            return record
