"""Batching bulk indexer backed by a fixed pool of submission threads."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import queue
import threading
import time
from typing import Any, Callable, Sequence

from opensearchpy.exceptions import TransportError

from osdoc.bulk.decoder import IndexableItem
from osdoc.bulk.outcomes import OutcomeCollector, RunStatistics
from osdoc.bulk.retry import RetryPolicy, linear_backoff
from osdoc.config import BulkSettings


LOGGER = logging.getLogger(__name__)

_STOP = object()
_HAND_OFF_POLL_SECONDS = 0.05


@dataclass(slots=True)
class SubmissionError(Exception):
    """A bulk request that did not produce per-item results."""

    status_code: int | None
    error_type: str
    reason: str

    def __str__(self) -> str:
        status = "n/a" if self.status_code is None else self.status_code
        return f"{self.error_type}: {self.reason} (status={status})"


class TransientSubmissionError(SubmissionError):
    """The backend answered with a status the retry policy treats as temporary."""


class PermanentSubmissionError(SubmissionError):
    """The request failed in a way no retry can fix."""


@dataclass(slots=True)
class Batch:
    items: list[IndexableItem] = field(default_factory=list)
    size_bytes: int = 0

    def __len__(self) -> int:
        return len(self.items)

    def append(self, item: IndexableItem) -> None:
        self.items.append(item)
        self.size_bytes += item.size_bytes


def _bulk_body(items: Sequence[IndexableItem]) -> bytes:
    return b"".join(item.payload for item in items)


def _describe_transport_error(exc: TransportError) -> tuple[str, str]:
    info = exc.info
    if isinstance(info, dict):
        error = info.get("error")
        if isinstance(error, dict):
            return str(error.get("type") or "transport_error"), str(error.get("reason") or exc.error)
        if isinstance(error, str):
            return error, str(exc.error)
    if not isinstance(exc.status_code, int):
        return "connection_error", str(exc.error)
    return "transport_error", str(exc.error)


def _parse_response_item(entry: Any) -> tuple[int, str, dict[str, str] | None]:
    """Return ``(status, result, error)`` for one element of a bulk response."""

    if not isinstance(entry, dict) or len(entry) != 1:
        return 0, "", {"type": "invalid_response", "reason": "malformed bulk response item"}

    info = next(iter(entry.values()))
    if not isinstance(info, dict):
        return 0, "", {"type": "invalid_response", "reason": "malformed bulk response item"}

    status = info.get("status")
    status = status if isinstance(status, int) else 0
    result = str(info.get("result") or "")

    error = info.get("error")
    if error is not None:
        if isinstance(error, dict):
            return status, result, {
                "type": str(error.get("type") or "unknown_error"),
                "reason": str(error.get("reason") or ""),
            }
        return status, result, {"type": "unknown_error", "reason": str(error)}
    if status >= 300 or status == 0:
        return status, result, {"type": "http_status", "reason": f"unexpected status {status}"}
    return status, result, None


class BulkIndexer:
    """Accumulates items into batches and submits them from worker threads.

    The open batch belongs to the producer (and the periodic flusher, under
    the same lock) until it is detached; after that exactly one worker owns
    it. Every enqueued item is reported to the collector exactly once.
    """

    def __init__(
        self,
        client: Any,
        settings: BulkSettings,
        *,
        collector: OutcomeCollector | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._collector = collector or OutcomeCollector()
        self._policy = policy or RetryPolicy(
            max_attempts=settings.max_attempts,
            backoff=linear_backoff(settings.backoff_seconds),
        )
        self._abandoned = threading.Event()
        self._closing = threading.Event()
        self._sleep = sleep or self._abandoned.wait

        self._lock = threading.Lock()
        self._batch = Batch()
        self._closed = False
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=settings.effective_queue_depth)
        self._started = time.perf_counter()

        self._workers = [
            threading.Thread(target=self._work, name=f"osdoc-bulk-worker-{number}", daemon=True)
            for number in range(1, settings.num_workers + 1)
        ]
        for worker in self._workers:
            worker.start()

        self._flusher: threading.Thread | None = None
        if settings.flush_interval_seconds > 0:
            self._flusher = threading.Thread(target=self._flush_periodically, name="osdoc-bulk-flusher", daemon=True)
            self._flusher.start()

    @property
    def stats(self) -> RunStatistics:
        return self._collector.snapshot()

    def __enter__(self) -> "BulkIndexer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def enqueue(self, item: IndexableItem) -> None:
        """Add an item, handing off the open batch when a threshold is reached.

        Blocks while the hand-off queue is full.
        """

        with self._lock:
            if self._closed:
                raise RuntimeError("bulk indexer is closed")
            if self._batch and self._batch.size_bytes + item.size_bytes > self._settings.flush_bytes:
                self._detach_locked()
            self._batch.append(item)
            self._collector.on_added()
            if len(self._batch) >= self._settings.flush_items or self._batch.size_bytes >= self._settings.flush_bytes:
                self._detach_locked()

    def flush(self) -> None:
        with self._lock:
            self._detach_locked()

    def close(self, grace_seconds: float | None = None) -> RunStatistics:
        """Flush, wait for every worker to finish and return final statistics.

        When ``grace_seconds`` elapses first, the indexer is abandoned: queued
        batches, pending retries and a final batch that could not be handed
        off resolve as ``cancelled`` failures.
        """

        timer: threading.Timer | None = None
        if grace_seconds is not None:
            timer = threading.Timer(grace_seconds, self._abandon)
            timer.daemon = True
            timer.start()

        try:
            with self._lock:
                if self._closed:
                    return self._collector.snapshot()
                self._closed = True
                batch, self._batch = self._batch, Batch()

            self._closing.set()
            if self._flusher is not None:
                self._flusher.join()
            if batch:
                self._hand_off(batch)

            for _ in self._workers:
                self._queue.put(_STOP)
            for worker in self._workers:
                worker.join()
        finally:
            if timer is not None:
                timer.cancel()

        self._collector.set_duration(int((time.perf_counter() - self._started) * 1000))
        return self._collector.snapshot()

    def _abandon(self) -> None:
        LOGGER.warning("Shutdown grace period expired; abandoning queued batches")
        self._abandoned.set()

    def _hand_off(self, batch: Batch) -> None:
        """Queue the final batch, giving up once the indexer is abandoned."""

        LOGGER.debug("Flushing batch of %d document(s), %d bytes", len(batch), batch.size_bytes)
        while True:
            try:
                self._queue.put(batch, timeout=_HAND_OFF_POLL_SECONDS)
                return
            except queue.Full:
                if self._abandoned.is_set():
                    self._fail_all(batch.items, "cancelled", "indexer was closed before the documents were submitted")
                    return

    def _detach_locked(self) -> None:
        if not self._batch:
            return
        batch = self._batch
        self._batch = Batch()
        LOGGER.debug("Flushing batch of %d document(s), %d bytes", len(batch), batch.size_bytes)
        self._queue.put(batch)

    def _flush_periodically(self) -> None:
        while not self._closing.wait(self._settings.flush_interval_seconds):
            self.flush()

    def _work(self) -> None:
        while True:
            batch = self._queue.get()
            try:
                if batch is _STOP:
                    return
                self._submit(batch.items)
            finally:
                self._queue.task_done()

    def _submit(self, items: list[IndexableItem]) -> None:
        pending = items
        attempt = 1
        try:
            while pending:
                if self._abandoned.is_set():
                    self._fail_all(pending, "cancelled", "indexer was closed before the documents were submitted")
                    return
                if attempt > 1:
                    self._collector.on_retry(len(pending))
                pending = self._attempt(pending, attempt)
                if pending:
                    delay = self._policy.backoff_delay(attempt)
                    LOGGER.warning(
                        "Retrying %d document(s) in %.2fs (attempt %d of %d)",
                        len(pending),
                        delay,
                        attempt + 1,
                        self._policy.max_attempts,
                    )
                    self._sleep(delay)
                    attempt += 1
        except Exception as exc:
            LOGGER.exception("Batch submission failed; reporting %d pending document(s)", len(pending))
            self._fail_all(pending, "internal_error", str(exc))

    def _attempt(self, items: list[IndexableItem], attempt: int) -> list[IndexableItem]:
        """Send ``items`` once, report final outcomes and return the items to retry."""

        try:
            response_items = self._send(items)
        except SubmissionError as exc:
            if isinstance(exc, TransientSubmissionError) and self._policy.should_retry(attempt, exc.status_code):
                return list(items)
            self._fail_all(items, exc.error_type, exc.reason, status=exc.status_code)
            return []
        except Exception as exc:
            LOGGER.exception("Unexpected error while sending %d document(s)", len(items))
            self._fail_all(items, "internal_error", str(exc))
            return []

        retry: list[IndexableItem] = []
        for item, entry in zip(items, response_items):
            status, result, error = _parse_response_item(entry)
            if error is None:
                self._collector.on_success(item.document_id, status, result, action=item.action)
            elif self._policy.should_retry(attempt, status):
                retry.append(item)
            else:
                self._collector.on_failure(item.document_id, error["type"], error["reason"], status=status)
        return retry

    def _send(self, items: list[IndexableItem]) -> list[Any]:
        self._collector.on_request()
        try:
            response = self._client.bulk(body=_bulk_body(items), index=self._settings.index)
        except TransportError as exc:
            raise self._classify(exc) from exc

        response_items = response.get("items") if isinstance(response, dict) else None
        if not isinstance(response_items, list) or len(response_items) != len(items):
            count = len(response_items) if isinstance(response_items, list) else 0
            raise PermanentSubmissionError(
                status_code=None,
                error_type="invalid_response",
                reason=f"expected {len(items)} bulk response item(s), got {count}",
            )
        return response_items

    def _classify(self, exc: TransportError) -> SubmissionError:
        status = exc.status_code if isinstance(exc.status_code, int) else None
        error_type, reason = _describe_transport_error(exc)
        if self._policy.is_transient(status):
            return TransientSubmissionError(status_code=status, error_type=error_type, reason=reason)
        return PermanentSubmissionError(status_code=status, error_type=error_type, reason=reason)

    def _fail_all(self, items: Sequence[IndexableItem], error_kind: str, message: str, *, status: int | None = None) -> None:
        for item in items:
            self._collector.on_failure(item.document_id, error_kind, message, status=status)
