from __future__ import annotations

import io
import json
import logging
import threading
from typing import Any, Iterator

from opensearchpy.exceptions import TransportError
import pytest

from osdoc.bulk.outcomes import OutcomeCollector, OutcomeRecord, Success
from osdoc.bulk.pipeline import BulkPipeline, PipelineState
from osdoc.client import FatalStartupError
from osdoc.config import BulkSettings, ConnectionSettings


class _FakeClient:
    def __init__(self, *, failures: list[BaseException] | None = None) -> None:
        self._failures = list(failures or [])
        self._lock = threading.Lock()
        self.bodies: list[list[dict[str, Any]]] = []
        self.closed = False

    def bulk(self, *, body: bytes, index: str) -> dict[str, Any]:
        lines = [json.loads(line) for line in body.decode("utf-8").splitlines()]
        with self._lock:
            self.bodies.append(lines)
            failure = self._failures.pop(0) if self._failures else None
        if failure is not None:
            raise failure
        metas = [next(iter(line.values())) for line in lines[::2]]
        return {
            "errors": False,
            "items": [{"index": {"_id": meta["_id"], "status": 201, "result": "created"}} for meta in metas],
        }

    def close(self) -> None:
        self.closed = True


def _settings(**overrides: Any) -> BulkSettings:
    values: dict[str, Any] = {"index": "docs", "id_field": "id", "num_workers": 2, "flush_interval_seconds": 0}
    values.update(overrides)
    return BulkSettings(**values)


def _pipeline(client: _FakeClient, **kwargs: Any) -> BulkPipeline:
    settings = kwargs.pop("settings", None) or _settings()
    return BulkPipeline(
        settings,
        ConnectionSettings(),
        client_factory=lambda connection: client,
        sleep=lambda seconds: None,
        **kwargs,
    )


def test_three_valid_lines_are_all_indexed() -> None:
    client = _FakeClient()
    received: list[OutcomeRecord] = []
    pipeline = _pipeline(client, collector=OutcomeCollector(on_outcome=received.append))

    stats = pipeline.run(
        [
            '{"id": "1", "title": "first"}\n',
            '{"id": "2", "title": "second"}\n',
            '{"id": "3", "title": "third"}\n',
        ]
    )

    assert stats.num_flushed == 3
    assert stats.num_failed == 0
    assert pipeline.state is PipelineState.REPORTED
    assert client.closed is True
    assert sorted(record.document_id for record in received if isinstance(record, Success)) == ["1", "2", "3"]
    sources = [line for body in client.bodies for line in body[1::2]]
    assert all("id" not in source for source in sources)


def test_missing_id_line_is_skipped_and_run_continues(caplog) -> None:
    client = _FakeClient()
    pipeline = _pipeline(client)

    with caplog.at_level(logging.WARNING, logger="osdoc.bulk.pipeline"):
        stats = pipeline.run(['{"title":"x"}', '{"id": 2, "title": "y"}'])

    assert stats.num_skipped == 1
    assert stats.num_added == 1
    assert stats.num_flushed == 1
    assert "Skipping line 1" in caplog.text
    assert "'id'" in caplog.text


def test_invalid_json_and_blank_lines_do_not_stop_the_run(caplog) -> None:
    client = _FakeClient()
    pipeline = _pipeline(client)

    with caplog.at_level(logging.WARNING, logger="osdoc.bulk.pipeline"):
        stats = pipeline.run(["{broken", "", "   \n", '{"id": 1}', "[1, 2]"])

    assert stats.num_skipped == 2
    assert stats.num_flushed == 1
    assert "Skipping line 1" in caplog.text
    assert "Skipping line 5" in caplog.text


def test_invalid_utf8_line_is_skipped_between_valid_lines(caplog) -> None:
    client = _FakeClient()
    pipeline = _pipeline(client)
    raw = io.BytesIO(b'{"id": "1"}\n{"id": "2"}\n\xff\xfe\n{"id": "3", "title": "\xc3\xa9t\xc3\xa9"}\n')

    with caplog.at_level(logging.WARNING, logger="osdoc.bulk.pipeline"):
        stats = pipeline.run(raw)

    assert stats.num_skipped == 1
    assert stats.num_flushed == 3
    assert stats.num_failed == 0
    assert "Skipping line 3: Invalid UTF-8" in caplog.text
    assert client.bodies[0][-1] == {"title": "\u00e9t\u00e9"}


def test_retry_ceiling_reports_partial_failure(caplog) -> None:
    unavailable = [TransportError(503, "Service Unavailable", {}) for _ in range(5)]
    client = _FakeClient(failures=unavailable)
    pipeline = _pipeline(client, settings=_settings(num_workers=1, max_attempts=5))

    with caplog.at_level(logging.INFO):
        stats = pipeline.run(['{"id": "1", "title": "x"}'])

    assert stats.num_failed == 1
    assert stats.num_retried == 4
    assert stats.num_flushed == 0
    assert "Indexed [0] documents with [1] errors" in caplog.text


def test_successful_run_logs_summary(caplog) -> None:
    pipeline = _pipeline(_FakeClient())

    with caplog.at_level(logging.INFO, logger="osdoc.bulk.pipeline"):
        pipeline.run(['{"id": "1"}', '{"id": "2"}'])

    assert "Successfully indexed [2] documents" in caplog.text


def test_fatal_startup_error_propagates_before_reading() -> None:
    consumed: list[str] = []

    def _lines() -> Iterator[str]:
        consumed.append("read")
        yield '{"id": "1"}'

    def _factory(connection: ConnectionSettings) -> Any:
        raise FatalStartupError(url=connection.url, message="Error creating the client")

    pipeline = BulkPipeline(_settings(), ConnectionSettings(), client_factory=_factory)

    with pytest.raises(FatalStartupError, match="localhost:9200"):
        pipeline.run(_lines())

    assert consumed == []
    assert pipeline.state is PipelineState.IDLE


def test_cancellation_stops_reading_and_drains() -> None:
    client = _FakeClient()
    cancel_event = threading.Event()
    pipeline = _pipeline(client, cancel_event=cancel_event)

    def _lines() -> Iterator[str]:
        yield '{"id": "1"}'
        yield '{"id": "2"}'
        cancel_event.set()
        yield '{"id": "3"}'
        yield '{"id": "4"}'

    stats = pipeline.run(_lines())

    assert stats.num_added == 2
    assert stats.num_flushed == 2
    assert pipeline.state is PipelineState.REPORTED
    assert client.closed is True


def test_pipeline_runs_only_once() -> None:
    pipeline = _pipeline(_FakeClient())
    pipeline.run([])

    with pytest.raises(RuntimeError, match="already been run"):
        pipeline.run([])


def test_reader_error_drains_accepted_documents_and_closes_client() -> None:
    client = _FakeClient()
    pipeline = _pipeline(client)

    def _lines() -> Iterator[str]:
        yield '{"id": "1"}'
        raise OSError("stdin went away")

    with pytest.raises(OSError, match="stdin"):
        pipeline.run(_lines())

    assert client.closed is True
    assert pipeline.state is PipelineState.DRAINING
    assert [[meta["index"]["_id"] for meta in body[::2]] for body in client.bodies] == [["1"]]
