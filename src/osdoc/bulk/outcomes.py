"""Per-document outcome records and thread-safe run statistics."""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import threading
from typing import Callable, Union


LOGGER = logging.getLogger(__name__)

_ACTION_COUNTERS = {
    "index": "num_indexed",
    "create": "num_created",
    "update": "num_updated",
    "delete": "num_deleted",
}


@dataclass(frozen=True, slots=True)
class Success:
    document_id: str
    status: int
    result: str

    def render(self) -> str:
        return f"[{self.status}] {self.result} {self.document_id}"


@dataclass(frozen=True, slots=True)
class Failure:
    document_id: str
    error_kind: str
    message: str
    status: int | None = None

    def render(self) -> str:
        return f"ERROR: {self.error_kind}: {self.message}"


OutcomeRecord = Union[Success, Failure]


@dataclass(slots=True)
class RunStatistics:
    num_added: int = 0
    num_flushed: int = 0
    num_failed: int = 0
    num_retried: int = 0
    num_requests: int = 0
    num_skipped: int = 0
    num_indexed: int = 0
    num_created: int = 0
    num_updated: int = 0
    num_deleted: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "num_added": self.num_added,
            "num_flushed": self.num_flushed,
            "num_failed": self.num_failed,
            "num_retried": self.num_retried,
            "num_requests": self.num_requests,
            "num_skipped": self.num_skipped,
            "num_indexed": self.num_indexed,
            "num_created": self.num_created,
            "num_updated": self.num_updated,
            "num_deleted": self.num_deleted,
            "duration_ms": self.duration_ms,
        }


class OutcomeCollector:
    """Accumulates outcomes reported concurrently by submission workers.

    ``on_outcome`` is called with every record while the collector lock is
    held, so callers can write output lines without interleaving.
    """

    def __init__(self, on_outcome: Callable[[OutcomeRecord], None] | None = None) -> None:
        self._on_outcome = on_outcome
        self._stats = RunStatistics()
        self._lock = threading.Lock()

    def on_success(self, document_id: str, status: int, result: str, *, action: str = "index") -> Success:
        record = Success(document_id=document_id, status=status, result=result)
        counter = _ACTION_COUNTERS.get(action, "num_indexed")
        with self._lock:
            self._stats.num_flushed += 1
            setattr(self._stats, counter, getattr(self._stats, counter) + 1)
            LOGGER.debug("%s", record.render())
            self._emit(record)
        return record

    def on_failure(self, document_id: str, error_kind: str, message: str, status: int | None = None) -> Failure:
        record = Failure(document_id=document_id, error_kind=error_kind, message=message, status=status)
        with self._lock:
            self._stats.num_failed += 1
            LOGGER.error("%s (document_id=%s)", record.render(), document_id)
            self._emit(record)
        return record

    def on_added(self, count: int = 1) -> None:
        with self._lock:
            self._stats.num_added += count

    def on_request(self) -> None:
        with self._lock:
            self._stats.num_requests += 1

    def on_retry(self, count: int) -> None:
        with self._lock:
            self._stats.num_retried += count

    def on_skipped(self) -> None:
        with self._lock:
            self._stats.num_skipped += 1

    def set_duration(self, duration_ms: int) -> None:
        with self._lock:
            self._stats.duration_ms = duration_ms

    def snapshot(self) -> RunStatistics:
        with self._lock:
            return replace(self._stats)

    def _emit(self, record: OutcomeRecord) -> None:
        if self._on_outcome is None:
            return
        try:
            self._on_outcome(record)
        except Exception:
            LOGGER.exception("Outcome listener failed for document %s", record.document_id)
