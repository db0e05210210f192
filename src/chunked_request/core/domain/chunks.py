from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from chunked_request.core.interfaces.model_bases import InternalDTO


@dataclass(frozen=True)
class RawChunk(InternalDTO):
    """One increment of response data as delivered by a transport.

    ``done`` is true only on the terminal read; the terminal chunk may still
    carry data.
    """

    value: bytes | str = b""
    done: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.value


@dataclass(frozen=True)
class ParsedRecord(InternalDTO):
    """A decoded JSON value and its arrival ordinal within the stream."""

    sequence: int
    value: Any


@dataclass
class DecodeResult(InternalDTO):
    """Output of a single decode call.

    ``records`` holds ``ParsedRecord`` items unless a custom chunk parser is
    in use. ``error`` is a ``RecordParseError`` for malformed lines, or
    whatever a custom chunk parser raised.
    """

    records: list[Any] = field(default_factory=list)
    error: Exception | None = None
    trailer: str = ""
    next_sequence: int = 0

    @property
    def has_output(self) -> bool:
        return bool(self.records) or self.error is not None


@dataclass(frozen=True)
class RecordBatch(InternalDTO):
    """What the caller observes for one decode call: ``(error, records)``.

    ``records`` is None when the call produced only an error.
    """

    error: Exception | None
    records: list[Any] | None

    def __iter__(self):
        yield self.error
        yield self.records
