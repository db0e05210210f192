"""
Common exception classes for chunked-request.

This module defines the error taxonomy shared by the transport layer, the
record decoder and the request session.
"""

from __future__ import annotations

from typing import Any


class ChunkedRequestError(Exception):
    """Base exception class for all chunked-request errors."""

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        *,
        status_code: int | None = None,
        **kwargs: Any,
    ):
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error details
            status_code: Optional HTTP status code associated with the failure
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.status_code = status_code if status_code is not None else 0
        for key, value in (kwargs or {}).items():
            setattr(self, key, value)

    def to_dict(self) -> dict:
        error_dict = {
            "message": self.message,
            "type": self.__class__.__name__,
            "details": self.details,
        }

        for attr_name in dir(self):
            if (
                not attr_name.startswith("_")
                and attr_name not in ["message", "details", "status_code", "args"]
                and not callable(getattr(self, attr_name))
            ):
                error_dict[attr_name] = getattr(self, attr_name)

        return {"error": error_dict}


class TransportUnavailableError(ChunkedRequestError):
    """Raised when no streaming capability could be selected."""

    def __init__(
        self,
        message: str = "No incremental transport is available",
        details: dict | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, details, status_code=0, **kwargs)


class TransportFailureError(ChunkedRequestError):
    """Raised when the connection fails while a request is in flight."""

    def __init__(
        self,
        message: str = "Transport failed",
        transport: str | None = None,
        details: dict | None = None,
        **kwargs: Any,
    ):
        status_code = kwargs.pop("status_code", 0)
        super().__init__(message, details, status_code=status_code, **kwargs)
        self.transport = transport


class TransportAbortedError(TransportFailureError):
    """Raised into a pending read when the request is aborted."""

    def __init__(
        self,
        message: str = "Request aborted",
        transport: str | None = None,
        details: dict | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, transport, details, **kwargs)


class RecordFailure:
    """A single NDJSON line that could not be parsed."""

    __slots__ = ("line", "position", "reason")

    def __init__(self, line: str, position: int, reason: str) -> None:
        self.line = line
        self.position = position
        self.reason = reason

    def __repr__(self) -> str:
        return f"<RecordFailure position={self.position} reason={self.reason!r}>"

    def to_dict(self) -> dict[str, Any]:
        return {"line": self.line, "position": self.position, "reason": self.reason}


class RecordParseError(ChunkedRequestError):
    """Raised (or reported) when one or more NDJSON lines are not valid JSON.

    The error is recoverable: it never closes the stream and it never hides
    sibling records parsed from the same chunk.
    """

    def __init__(
        self,
        failures: list[RecordFailure],
        message: str | None = None,
        details: dict | None = None,
        **kwargs: Any,
    ):
        if message is None:
            if len(failures) == 1:
                message = f"Invalid JSON record: {failures[0].reason}"
            else:
                message = f"{len(failures)} invalid JSON records"
        details = details or {"failures": [f.to_dict() for f in failures]}
        super().__init__(message, details, **kwargs)
        self.failures = failures


class ProtocolMisuseError(ChunkedRequestError):
    """Raised when a caller breaks the reader or decoder contract."""

    def __init__(
        self,
        message: str = "Stream protocol misuse",
        details: dict | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, details, **kwargs)


class InvalidOptionsError(ChunkedRequestError):
    """Raised when request options fail validation."""

    def __init__(
        self,
        message: str = "Invalid options",
        details: dict | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, details, status_code=400, **kwargs)
