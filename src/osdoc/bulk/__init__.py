"""Bulk ingestion pipeline: decoding, batching, retries and outcome reporting."""

from .decoder import DecodeError, IndexableItem, InvalidJSONError, MissingIDError, decode_line
from .indexer import BulkIndexer, PermanentSubmissionError, SubmissionError, TransientSubmissionError
from .outcomes import Failure, OutcomeCollector, OutcomeRecord, RunStatistics, Success
from .pipeline import BulkPipeline, PipelineState
from .retry import RetryPolicy, exponential_backoff, linear_backoff

__all__ = [
    "BulkIndexer",
    "BulkPipeline",
    "DecodeError",
    "Failure",
    "IndexableItem",
    "InvalidJSONError",
    "MissingIDError",
    "OutcomeCollector",
    "OutcomeRecord",
    "PermanentSubmissionError",
    "PipelineState",
    "RetryPolicy",
    "RunStatistics",
    "SubmissionError",
    "Success",
    "TransientSubmissionError",
    "decode_line",
    "exponential_backoff",
    "linear_backoff",
]
