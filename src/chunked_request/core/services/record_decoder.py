"""
Incremental NDJSON decoding.

The server sends one JSON value per line, e.g.::

    {"chunk": "#1", "data": "Hello"}
    {"chunk": "#2", "data": "World"}

and the transport may split that text anywhere, including inside a line or
inside a multi-byte character. :func:`parse_chunk` handles one chunk given
the unterminated tail ("trailer") of the previous one; :class:`RecordDecoder`
threads that state through one request.
"""

from __future__ import annotations

import codecs
import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chunked_request.core.common.exceptions import (
    ProtocolMisuseError,
    RecordFailure,
    RecordParseError,
)
from chunked_request.core.domain.chunks import DecodeResult, ParsedRecord

logger = logging.getLogger(__name__)

# Longest delimiter first so that "\r\n" is never split into "\r" + "\n".
DELIMITER_PATTERN = re.compile(r"\r\n|\n")

ChunkParser = Callable[[str, str, bool], tuple[list[Any], str | None]]


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Invalid JSON constant: {name}")


def new_text_decoder(encoding: str = "utf-8") -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder(encoding)(errors="replace")


def _to_text(
    raw_chunk: bytes | bytearray | str | None,
    is_final: bool,
    text_decoder: codecs.IncrementalDecoder | None,
) -> str:
    if isinstance(raw_chunk, str):
        return raw_chunk
    if text_decoder is None:
        text_decoder = new_text_decoder()
    return text_decoder.decode(bytes(raw_chunk or b""), final=is_final)


def parse_chunk(
    raw_chunk: bytes | bytearray | str | None,
    trailer: str | None = "",
    is_final: bool = False,
    *,
    text_decoder: codecs.IncrementalDecoder | None = None,
    start_sequence: int = 0,
) -> DecodeResult:
    """Decode one chunk of NDJSON.

    Args:
        raw_chunk: Bytes or text as delivered by the transport.
        trailer: The unterminated text carried over from the previous call.
        is_final: True when no more input follows; the last line is then
            parsed even without a terminating newline.
        text_decoder: Incremental decoder holding partial multi-byte
            sequences between calls. A fresh UTF-8 decoder is used if omitted.
        start_sequence: Ordinal given to the first non-blank line.

    Returns:
        The parsed records, a ``RecordParseError`` for the lines that are not
        valid JSON (if any), and the new trailer.
    """
    text = _to_text(raw_chunk, is_final, text_decoder)
    combined = f"{trailer or ''}{text}"
    lines = DELIMITER_PATTERN.split(combined)

    new_trailer = ""
    if not is_final and not combined.endswith("\n"):
        new_trailer = lines.pop()

    records: list[ParsedRecord] = []
    failures: list[RecordFailure] = []
    sequence = start_sequence
    for line in lines:
        if not line.strip():
            continue
        try:
            value = json.loads(line, parse_constant=_reject_constant)
        except (ValueError, RecursionError) as exc:
            failures.append(RecordFailure(line, sequence, str(exc) or type(exc).__name__))
        else:
            records.append(ParsedRecord(sequence, value))
        sequence += 1

    return DecodeResult(
        records=records,
        error=RecordParseError(failures) if failures else None,
        trailer=new_trailer,
        next_sequence=sequence,
    )


class DecoderPhase(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CLOSED = "closed"


@dataclass
class DecoderState:
    """Per-request state: the trailer and the partial multi-byte remainder."""

    text_decoder: codecs.IncrementalDecoder
    trailer: str = ""
    sequence: int = 0
    phase: DecoderPhase = field(default=DecoderPhase.IDLE)


class RecordDecoder:
    """Decodes one request's chunks in order.

    ``decode(chunk, done=False)`` may be called any number of times, then
    once with ``done=True``. :meth:`close` ends the session early (transport
    failure or abort) and drops the trailer without parsing it.

    Args:
        encoding: Encoding of byte chunks.
        chunk_parser: Optional replacement for the NDJSON parser. It receives
            ``(text, trailer, is_final)`` and returns ``(records, trailer)``;
            anything it raises is reported as the decode call's error.
    """

    def __init__(
        self, encoding: str = "utf-8", chunk_parser: ChunkParser | None = None
    ) -> None:
        self._state = DecoderState(text_decoder=new_text_decoder(encoding))
        self._chunk_parser = chunk_parser

    @property
    def phase(self) -> DecoderPhase:
        return self._state.phase

    @property
    def trailer(self) -> str:
        return self._state.trailer

    def decode(
        self, raw_chunk: bytes | bytearray | str | None, done: bool = False
    ) -> DecodeResult:
        state = self._state
        if state.phase in (DecoderPhase.CLOSED, DecoderPhase.FINALIZING):
            raise ProtocolMisuseError(
                f"decode() called on a {state.phase.value} decoder"
            )
        state.phase = DecoderPhase.FINALIZING if done else DecoderPhase.STREAMING

        if self._chunk_parser is None:
            result = parse_chunk(
                raw_chunk,
                state.trailer,
                done,
                text_decoder=state.text_decoder,
                start_sequence=state.sequence,
            )
        else:
            result = self._run_chunk_parser(raw_chunk, done)

        state.trailer = result.trailer
        state.sequence = result.next_sequence
        if done:
            state.phase = DecoderPhase.CLOSED
        return result

    def _run_chunk_parser(
        self, raw_chunk: bytes | bytearray | str | None, done: bool
    ) -> DecodeResult:
        state = self._state
        text = _to_text(raw_chunk, done, state.text_decoder)
        try:
            records, trailer = self._chunk_parser(text, state.trailer, done)  # type: ignore[misc]
        except Exception as exc:
            logger.warning("Chunk parser failed: %s", exc)
            return DecodeResult(error=exc, next_sequence=state.sequence)
        records = list(records or [])
        return DecodeResult(
            records=records,
            trailer="" if done else (trailer or ""),
            next_sequence=state.sequence + len(records),
        )

    def close(self) -> str:
        """End the session without finalizing; returns the discarded trailer."""
        discarded = self._state.trailer
        if discarded:
            logger.debug("Discarding %d characters of partial record", len(discarded))
        self._state.trailer = ""
        self._state.phase = DecoderPhase.CLOSED
        self._state.text_decoder.reset()
        return discarded
