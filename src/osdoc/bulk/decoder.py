"""Line decoding from NDJSON input into bulk-ready items."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import math
from typing import Any


_LARGEST_PLAIN_FLOAT = 1e21


@dataclass(slots=True)
class DecodeError(ValueError):
    """Domain error for input lines that cannot become an indexable item."""

    message: str

    def __str__(self) -> str:
        return self.message


class InvalidJSONError(DecodeError):
    """The line is not a JSON object."""


class MissingIDError(DecodeError):
    """The JSON object has no usable identifier value."""


def _compact(value: Any, *, sort_keys: bool = False) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=sort_keys)


@dataclass(frozen=True, slots=True)
class IndexableItem:
    """One document paired with its id, target index and bulk action."""

    document_id: str
    body: dict[str, Any]
    index: str
    action: str = "index"
    _payload: bytes = field(default=b"", init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_payload", self._serialize())

    def _serialize(self) -> bytes:
        meta = _compact({self.action: {"_index": self.index, "_id": self.document_id}})
        if self.action == "delete":
            return f"{meta}\n".encode("utf-8")
        source = {"doc": self.body} if self.action == "update" else self.body
        return f"{meta}\n{_compact(source)}\n".encode("utf-8")

    @property
    def payload(self) -> bytes:
        """NDJSON lines for this item in the bulk request body."""

        return self._payload

    @property
    def size_bytes(self) -> int:
        return len(self._payload)


def canonical_id(value: Any) -> str:
    """Render a JSON identifier value as a deterministic string."""

    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer() and abs(value) < _LARGEST_PLAIN_FLOAT:
            return str(int(value))
        return repr(value)
    return _compact(value, sort_keys=True)


def decode_line(line: str | bytes, *, id_field: str, index: str, action: str = "index") -> IndexableItem:
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidJSONError(f"Invalid UTF-8: {exc.reason} at byte {exc.start}") from exc

    try:
        parsed = json.loads(line)
    except json.JSONDecodeError as exc:
        raise InvalidJSONError(f"Invalid JSON: {exc.msg} at column {exc.colno}") from exc

    if not isinstance(parsed, dict):
        raise InvalidJSONError(f"Expected a JSON object, got {type(parsed).__name__}")

    raw_id = parsed.pop(id_field, None)
    if raw_id is None:
        raise MissingIDError(f"Document does not contain a value for the id field '{id_field}'")

    return IndexableItem(document_id=canonical_id(raw_id), body=parsed, index=index, action=action)
