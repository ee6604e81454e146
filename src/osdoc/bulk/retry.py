"""Retry and backoff policy for bulk submissions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable


DEFAULT_RETRY_ON_STATUS = frozenset({429, 502, 503, 504})
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_SECONDS = 0.1

BackoffFunction = Callable[[int], float]


def linear_backoff(base_seconds: float = DEFAULT_BACKOFF_SECONDS) -> BackoffFunction:
    """Delay grows by ``base_seconds`` per failed attempt."""

    if base_seconds < 0:
        raise ValueError("base_seconds cannot be negative")

    def _delay(attempt: int) -> float:
        return attempt * base_seconds

    return _delay


def exponential_backoff(base_seconds: float = DEFAULT_BACKOFF_SECONDS, *, cap_seconds: float = 30.0) -> BackoffFunction:
    if base_seconds < 0:
        raise ValueError("base_seconds cannot be negative")
    if cap_seconds < base_seconds:
        raise ValueError("cap_seconds must be >= base_seconds")

    def _delay(attempt: int) -> float:
        return min(cap_seconds, base_seconds * (2 ** (attempt - 1)))

    return _delay


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Decides whether a failed attempt is retried and how long to wait first.

    ``attempt`` is the 1-based number of the attempt that just failed. A
    ``status_code`` of ``None`` means the request never got an HTTP response.
    """

    retry_on_status: frozenset[int] = DEFAULT_RETRY_ON_STATUS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff: BackoffFunction = field(default_factory=linear_backoff)
    retry_on_connection_error: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def is_transient(self, status_code: int | None) -> bool:
        if status_code is None:
            return self.retry_on_connection_error
        return status_code in self.retry_on_status

    def should_retry(self, attempt: int, status_code: int | None) -> bool:
        return attempt < self.max_attempts and self.is_transient(status_code)

    def backoff_delay(self, attempt: int) -> float:
        return max(0.0, float(self.backoff(attempt)))
