"""OpenSearch client construction for bulk ingestion."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from opensearchpy import OpenSearch
from opensearchpy.exceptions import ImproperlyConfigured, TransportError

from osdoc.config import ConnectionSettings


LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class FatalStartupError(RuntimeError):
    """Raised when the backend client cannot be built or reached before a run."""

    url: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (url={self.url})"


def build_client(settings: ConnectionSettings, *, verify_connection: bool = True) -> Any:
    """Build an OpenSearch client with transport retries disabled.

    Retries are owned by the bulk indexer's retry policy, so the client must
    surface every failed request instead of retrying it internally.
    """

    try:
        client = OpenSearch(
            hosts=[settings.url],
            http_auth=settings.http_auth,
            verify_certs=settings.verify_certs,
            ssl_show_warn=settings.verify_certs,
            timeout=settings.timeout_seconds,
            max_retries=0,
            retry_on_status=(),
            retry_on_timeout=False,
        )
    except (ImproperlyConfigured, ValueError) as exc:
        raise FatalStartupError(url=settings.url, message=f"Error creating the client: {exc}") from exc

    if verify_connection:
        try:
            info = client.info()
        except TransportError as exc:
            client.close()
            raise FatalStartupError(url=settings.url, message=f"Backend is unreachable: {exc}") from exc
        version = info.get("version", {}).get("number", "unknown") if isinstance(info, dict) else "unknown"
        LOGGER.info("Connected to %s (version %s)", settings.url, version)

    return client
