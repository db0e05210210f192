"""
Pull-style reading on top of event-driven ``PollingRequest`` objects.

Each handle registers one set of listeners on its request, feeds the
increments they observe into a :class:`Mailbox`, and removes the listeners
on ``loadend`` or abort.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Callable

import httpx

from chunked_request.core.common.exceptions import (
    ProtocolMisuseError,
    TransportAbortedError,
    TransportFailureError,
)
from chunked_request.core.domain.chunks import RawChunk
from chunked_request.core.domain.completion import CompletionResult
from chunked_request.core.domain.environment import (
    CHUNKED_BINARY_RESPONSE_TYPE,
    TEXT_RESPONSE_TYPE,
)
from chunked_request.core.domain.request_spec import RequestSpec
from chunked_request.core.domain.transport_capability import TransportCapability
from chunked_request.core.interfaces.stream_reader_interface import (
    IRawTransport,
    IStreamHandle,
)
from chunked_request.core.transport.mailbox import Mailbox
from chunked_request.core.transport.polling_request import (
    USER_DEFINED_CHARSET,
    PollingEvent,
    PollingRequest,
)

logger = logging.getLogger(__name__)


class PollingStreamHandle(IStreamHandle):
    """Base handle bridging ``PollingRequest`` events into ``read_next``."""

    capability_value: TransportCapability

    def __init__(self, request: PollingRequest) -> None:
        self._request = request
        self._mailbox: Mailbox[bytes | str] = Mailbox()
        self._done = False
        self._reading = False
        self._listeners: dict[str, Callable[[PollingEvent], None]] = {
            "progress": self._on_progress,
            "load": self._on_load,
            "error": self._on_error,
            "abort": self._on_abort,
            "loadend": self._on_loadend,
        }
        for event_type, listener in self._listeners.items():
            request.add_event_listener(event_type, listener)
        self._attached = True

    @property
    def capability(self) -> TransportCapability:
        return self.capability_value

    @property
    def request(self) -> PollingRequest:
        return self._request

    @property
    def attached(self) -> bool:
        return self._attached

    @abstractmethod
    def _take_increment(self) -> bytes | str:
        """Return the data that arrived since the previous progress event."""

    def _detach(self) -> None:
        if not self._attached:
            return
        for event_type, listener in self._listeners.items():
            self._request.remove_event_listener(event_type, listener)
        self._attached = False

    def _on_progress(self, event: PollingEvent) -> None:
        increment = self._take_increment()
        if increment:
            self._mailbox.put(increment)

    def _on_load(self, event: PollingEvent) -> None:
        self._mailbox.close()

    def _on_error(self, event: PollingEvent) -> None:
        error = TransportFailureError(
            f"Request failed ({event.error})" if event.error else "Request failed",
            transport=self.capability.value,
        )
        error.__cause__ = event.error
        self._mailbox.fail(error)

    def _on_abort(self, event: PollingEvent) -> None:
        self._mailbox.fail(TransportAbortedError(transport=self.capability.value))

    def _on_loadend(self, event: PollingEvent) -> None:
        self._detach()

    async def read_next(self) -> RawChunk:
        if self._done:
            raise ProtocolMisuseError("read_next() called after the stream completed")
        if self._reading:
            raise ProtocolMisuseError("Only one read_next() may be in flight per handle")

        self._reading = True
        try:
            items, done = await self._mailbox.get()
        except TransportFailureError:
            self._done = True
            self._detach()
            raise
        finally:
            self._reading = False

        if done:
            self._done = True
            self._detach()
        value = items[0][:0].join(items) if items else b""  # type: ignore[arg-type]
        logger.debug(
            "%s delivered %d units (done=%s)", self.capability.value, len(value), done
        )
        return RawChunk(value, done=done)

    def abort(self) -> None:
        self._mailbox.fail(TransportAbortedError(transport=self.capability.value))
        self._detach()
        self._request.abort()

    async def aclose(self) -> None:
        self._detach()
        await self._request.wait_closed()

    def completion(self, error: Exception | None = None) -> CompletionResult:
        return CompletionResult(
            status_code=0 if error is not None else self._request.status,
            transport=self.capability,
            raw=self._request,
            error=error,
        )


class PollingBinaryStreamHandle(PollingStreamHandle):
    """Each progress event exposes only the newest bytes."""

    capability_value = TransportCapability.POLLING_BINARY

    def _take_increment(self) -> bytes:
        chunk = self._request.response
        return bytes(chunk) if chunk else b""


class PollingTextStreamHandle(PollingStreamHandle):
    """Each progress event exposes the cumulative text; diff it by offset."""

    capability_value = TransportCapability.POLLING_TEXT

    def __init__(self, request: PollingRequest) -> None:
        super().__init__(request)
        self._offset = 0

    @property
    def offset(self) -> int:
        return self._offset

    def _take_increment(self) -> bytes | str:
        text = self._request.response_text
        increment = text[self._offset :]
        self._offset = len(text)
        if self._request.charset == USER_DEFINED_CHARSET:
            # One character per byte, so the original bytes come back intact.
            return increment.encode("latin-1")
        return increment


class PollingTransport(IRawTransport):
    """Shared ``open`` logic of the polling strategies."""

    response_type: str
    handle_class: type[PollingStreamHandle]

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    @property
    def capability(self) -> TransportCapability:
        return self.handle_class.capability_value

    def _prepare(self, request: PollingRequest) -> None:
        """Hook for strategy-specific request tweaks before ``send``."""

    async def open(self, request_spec: RequestSpec) -> PollingStreamHandle:
        request = PollingRequest(self.client)
        request.open(request_spec.method, request_spec.url)
        request.response_type = self.response_type
        self._prepare(request)
        for name, value in request_spec.headers.items():
            request.set_request_header(name, value)
        request.credentials = request_spec.credentials

        handle = self.handle_class(request)
        request.send(request_spec.body)
        logger.debug(
            "Opened %s request %s %s",
            self.capability.value,
            request_spec.method,
            request_spec.url,
        )
        return handle


class PollingBinaryTransport(PollingTransport):
    response_type = CHUNKED_BINARY_RESPONSE_TYPE
    handle_class = PollingBinaryStreamHandle


class PollingTextTransport(PollingTransport):
    response_type = TEXT_RESPONSE_TYPE
    handle_class = PollingTextStreamHandle

    def _prepare(self, request: PollingRequest) -> None:
        request.override_mime_type(f"text/plain; charset={USER_DEFINED_CHARSET}")
