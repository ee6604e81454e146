"""Runtime configuration for the OpenSearch connection and bulk ingestion."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping


DEFAULT_OPENSEARCH_URL = "http://localhost:9200"
DEFAULT_TIMEOUT_SECONDS = 30.0

DEFAULT_ID_FIELD = "_id"
DEFAULT_ACTION = "index"
DEFAULT_NUM_WORKERS = 4
DEFAULT_FLUSH_BYTES = 5_000_000
DEFAULT_FLUSH_ITEMS = 1000
DEFAULT_FLUSH_INTERVAL_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_SECONDS = 0.1
DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0

BULK_ACTIONS = ("index", "create", "update", "delete")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_bool(*, name: str, raw_value: str) -> bool:
    value = raw_value.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false)")


def _parse_positive_float(*, name: str, raw_value: str, minimum: float = 0.001) -> float:
    value = float(raw_value)
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


@dataclass(frozen=True, slots=True)
class ConnectionSettings:
    """Validated OpenSearch connection settings."""

    url: str = DEFAULT_OPENSEARCH_URL
    username: str | None = None
    password: str | None = None
    verify_certs: bool = True
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def http_auth(self) -> tuple[str, str] | None:
        if self.username is None or self.password is None:
            return None
        return (self.username, self.password)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ConnectionSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        url = source.get("OPENSEARCH_URL", DEFAULT_OPENSEARCH_URL).strip()
        if not url:
            raise ValueError("OPENSEARCH_URL cannot be empty")
        if not (url.startswith("http://") or url.startswith("https://")):
            raise ValueError("OPENSEARCH_URL must start with http:// or https://")

        username = source.get("OPENSEARCH_USERNAME", "").strip() or None
        password = source.get("OPENSEARCH_PASSWORD", "").strip() or None
        if (username is None) != (password is None):
            raise ValueError("OPENSEARCH_USERNAME and OPENSEARCH_PASSWORD must be set together")

        verify_raw = source.get("OPENSEARCH_VERIFY_CERTS", "true")
        timeout_raw = source.get("OPENSEARCH_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)).strip()
        if not timeout_raw:
            raise ValueError("OPENSEARCH_TIMEOUT_SECONDS cannot be empty")

        return cls(
            url=url.rstrip("/"),
            username=username,
            password=password,
            verify_certs=_parse_bool(name="OPENSEARCH_VERIFY_CERTS", raw_value=verify_raw),
            timeout_seconds=_parse_positive_float(
                name="OPENSEARCH_TIMEOUT_SECONDS",
                raw_value=timeout_raw,
                minimum=0.1,
            ),
        )


@dataclass(frozen=True, slots=True)
class BulkSettings:
    """Bulk ingestion settings; validated on construction."""

    index: str
    id_field: str = DEFAULT_ID_FIELD
    action: str = DEFAULT_ACTION
    num_workers: int = DEFAULT_NUM_WORKERS
    flush_bytes: int = DEFAULT_FLUSH_BYTES
    flush_items: int = DEFAULT_FLUSH_ITEMS
    flush_interval_seconds: float = DEFAULT_FLUSH_INTERVAL_SECONDS
    queue_depth: int | None = None
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS

    def __post_init__(self) -> None:
        if not self.index.strip():
            raise ValueError("index cannot be empty")
        if not self.id_field:
            raise ValueError("id_field cannot be empty")
        if self.action not in BULK_ACTIONS:
            raise ValueError(f"action must be one of: {', '.join(BULK_ACTIONS)}")
        if self.num_workers < 1:
            raise ValueError("num_workers must be >= 1")
        if self.flush_bytes < 1:
            raise ValueError("flush_bytes must be >= 1")
        if self.flush_items < 1:
            raise ValueError("flush_items must be >= 1")
        if self.flush_interval_seconds < 0:
            raise ValueError("flush_interval_seconds cannot be negative")
        if self.queue_depth is not None and self.queue_depth < 1:
            raise ValueError("queue_depth must be >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds cannot be negative")
        if self.shutdown_grace_seconds < 0:
            raise ValueError("shutdown_grace_seconds cannot be negative")

    @property
    def effective_queue_depth(self) -> int:
        return self.queue_depth if self.queue_depth is not None else 2 * self.num_workers
