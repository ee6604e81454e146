"""End-to-end bulk ingestion run: read lines, decode, index, report."""

from __future__ import annotations

from enum import Enum
import logging
import threading
from typing import Any, Callable, Iterable

from osdoc.bulk.decoder import DecodeError, decode_line
from osdoc.bulk.indexer import BulkIndexer
from osdoc.bulk.outcomes import OutcomeCollector, RunStatistics
from osdoc.bulk.retry import RetryPolicy
from osdoc.client import build_client
from osdoc.config import BulkSettings, ConnectionSettings


LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[ConnectionSettings], Any]


class PipelineState(Enum):
    IDLE = "idle"
    READING = "reading"
    DRAINING = "draining"
    REPORTED = "reported"


class BulkPipeline:
    """Drives one run from an iterable of NDJSON lines to final statistics.

    A ``FatalStartupError`` from the client factory propagates before any
    line is read. Undecodable lines, bad UTF-8 included, are logged and
    skipped; per-document submission failures only show up in the returned
    statistics. A reader error drains the documents already accepted before
    it propagates.
    """

    def __init__(
        self,
        settings: BulkSettings,
        connection: ConnectionSettings,
        *,
        client_factory: ClientFactory = build_client,
        collector: OutcomeCollector | None = None,
        policy: RetryPolicy | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self._settings = settings
        self._connection = connection
        self._client_factory = client_factory
        self._collector = collector or OutcomeCollector()
        self._policy = policy
        self._cancel_event = cancel_event or threading.Event()
        self._sleep = sleep
        self._state = PipelineState.IDLE

    @property
    def state(self) -> PipelineState:
        return self._state

    def run(self, lines: Iterable[str | bytes]) -> RunStatistics:
        if self._state is not PipelineState.IDLE:
            raise RuntimeError("pipeline has already been run")

        client = self._client_factory(self._connection)
        try:
            indexer = BulkIndexer(
                client,
                self._settings,
                collector=self._collector,
                policy=self._policy,
                sleep=self._sleep,
            )
            self._state = PipelineState.READING
            try:
                cancelled = self._read(lines, indexer)
            except (KeyboardInterrupt, SystemExit):
                indexer.close(grace_seconds=0)
                raise
            except Exception as exc:
                LOGGER.error("Reading input failed: %s; draining accepted documents", exc)
                self._state = PipelineState.DRAINING
                indexer.close()
                raise

            self._state = PipelineState.DRAINING
            grace = self._settings.shutdown_grace_seconds if cancelled else None
            stats = indexer.close(grace_seconds=grace)
        finally:
            close = getattr(client, "close", None)
            if callable(close):
                close()

        self._state = PipelineState.REPORTED
        if stats.num_failed > 0:
            LOGGER.error("Indexed [%d] documents with [%d] errors", stats.num_flushed, stats.num_failed)
        else:
            LOGGER.info("Successfully indexed [%d] documents", stats.num_flushed)
        return stats

    def _read(self, lines: Iterable[str | bytes], indexer: BulkIndexer) -> bool:
        """Feed decoded lines into ``indexer``; return True when cancelled."""

        for line_number, line in enumerate(lines, start=1):
            if self._cancel_event.is_set():
                LOGGER.warning("Cancellation requested; stopped reading at line %d", line_number)
                return True
            if not line.strip():
                continue
            try:
                item = decode_line(
                    line,
                    id_field=self._settings.id_field,
                    index=self._settings.index,
                    action=self._settings.action,
                )
            except DecodeError as exc:
                LOGGER.warning("Skipping line %d: %s", line_number, exc)
                self._collector.on_skipped()
                continue
            indexer.enqueue(item)
        return self._cancel_event.is_set()
