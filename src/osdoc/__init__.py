"""Bulk NDJSON ingestion into OpenSearch."""

__version__ = "0.1.0"
