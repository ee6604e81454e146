"""CLI entrypoint for bulk NDJSON ingestion from stdin."""

from __future__ import annotations

import argparse
from functools import partial
import json
import logging
import signal
import sys
import threading

from dotenv import load_dotenv

from osdoc.bulk.outcomes import OutcomeCollector, OutcomeRecord, Success
from osdoc.bulk.pipeline import BulkPipeline
from osdoc.client import FatalStartupError, build_client
from osdoc.config import (
    BULK_ACTIONS,
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_FLUSH_BYTES,
    DEFAULT_FLUSH_INTERVAL_SECONDS,
    DEFAULT_FLUSH_ITEMS,
    DEFAULT_ID_FIELD,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_NUM_WORKERS,
    DEFAULT_SHUTDOWN_GRACE_SECONDS,
    BulkSettings,
    ConnectionSettings,
)


load_dotenv()

LOGGER = logging.getLogger(__name__)

DESCRIPTION = """\
Add documents to an OpenSearch index.

Documents are read from stdin, one JSON object per line. Each document needs
an ID, taken from the field given with --id-field (default _id). The ID field
is removed from the document before indexing.

  cat my_documents.json | osdoc-bulk -i my_index -f id
"""


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="osdoc-bulk",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-i", "--index", required=True, help="The OpenSearch index for the documents")
    parser.add_argument("-f", "--id-field", default=DEFAULT_ID_FIELD, help="The field to use as the document ID")
    parser.add_argument(
        "-a",
        "--action",
        default="index",
        choices=BULK_ACTIONS,
        help="What to do with each document",
    )
    parser.add_argument("--workers", type=int, default=DEFAULT_NUM_WORKERS, help="Number of submission workers")
    parser.add_argument("--flush-bytes", type=int, default=DEFAULT_FLUSH_BYTES, help="Batch size threshold in bytes")
    parser.add_argument("--flush-items", type=int, default=DEFAULT_FLUSH_ITEMS, help="Batch size threshold in documents")
    parser.add_argument(
        "--flush-interval",
        type=float,
        default=DEFAULT_FLUSH_INTERVAL_SECONDS,
        help="Seconds between periodic flushes of a partial batch (0 disables)",
    )
    parser.add_argument("--max-attempts", type=int, default=DEFAULT_MAX_ATTEMPTS, help="Attempts per document")
    parser.add_argument(
        "--backoff",
        type=float,
        default=DEFAULT_BACKOFF_SECONDS,
        help="Linear backoff step in seconds between attempts",
    )
    parser.add_argument(
        "--grace",
        type=float,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Seconds to let in-flight batches finish after an interrupt",
    )
    parser.add_argument(
        "--no-verify-connection",
        action="store_true",
        help="Skip contacting the cluster before reading input",
    )
    parser.add_argument("--json", action="store_true", help="Print final statistics as JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def _print_success(record: OutcomeRecord) -> None:
    if isinstance(record, Success):
        print(record.render(), flush=True)


def _install_cancel_handlers(cancel_event: threading.Event) -> dict[int, object]:
    """Turn the first SIGINT/SIGTERM into a cancel request.

    The previous handlers come back as soon as one signal arrives, so a second
    signal interrupts the drain.
    """

    if threading.current_thread() is not threading.main_thread():
        return {}

    previous: dict[int, object] = {}

    def _handler(signum, frame) -> None:
        LOGGER.warning("Received signal %d; finishing in-flight batches (signal again to abort)", signum)
        cancel_event.set()
        _restore_handlers(previous)

    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handler)
    return previous


def _restore_handlers(previous: dict[int, object]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        connection = ConnectionSettings.from_env()
        settings = BulkSettings(
            index=args.index,
            id_field=args.id_field,
            action=args.action,
            num_workers=args.workers,
            flush_bytes=args.flush_bytes,
            flush_items=args.flush_items,
            flush_interval_seconds=args.flush_interval,
            max_attempts=args.max_attempts,
            backoff_seconds=args.backoff,
            shutdown_grace_seconds=args.grace,
        )
    except ValueError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 2

    cancel_event = threading.Event()
    pipeline = BulkPipeline(
        settings,
        connection,
        client_factory=partial(build_client, verify_connection=not args.no_verify_connection),
        collector=OutcomeCollector(on_outcome=_print_success),
        cancel_event=cancel_event,
    )

    previous_handlers = _install_cancel_handlers(cancel_event)
    try:
        stats = pipeline.run(getattr(sys.stdin, "buffer", sys.stdin))
    except FatalStartupError as exc:
        LOGGER.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        LOGGER.warning("Aborted; documents still queued were not indexed")
        return 1
    finally:
        _restore_handlers(previous_handlers)

    if args.json:
        print(json.dumps(stats.to_dict(), ensure_ascii=True, indent=2))
    else:
        print(f"Indexed [{stats.num_flushed}] documents with [{stats.num_failed}] errors")
    return 0 if stats.num_failed == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
