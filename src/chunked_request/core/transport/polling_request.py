"""
Event-emitting HTTP request object.

``PollingRequest`` exposes a response the way legacy request objects do:
the caller registers listeners, calls :meth:`PollingRequest.send`, and is
notified with ``readystatechange``, ``progress``, ``load``, ``error``,
``abort`` and ``loadend`` events. On each ``progress`` event only a snapshot
is available: the newest bytes for the ``chunked-arraybuffer`` response type,
or the whole text received so far for the ``text`` response type.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

import httpx

from chunked_request.core.common.exceptions import ProtocolMisuseError
from chunked_request.core.common.logging_utils import redact_headers
from chunked_request.core.domain.environment import (
    CHUNKED_BINARY_RESPONSE_TYPE,
    TEXT_RESPONSE_TYPE,
)
from chunked_request.core.domain.request_spec import CredentialsMode
from chunked_request.core.transport.http_request import prepare_request

logger = logging.getLogger(__name__)

# Charset under which every byte maps to exactly one character.
USER_DEFINED_CHARSET = "x-user-defined"

EVENT_TYPES = frozenset(
    {"readystatechange", "progress", "load", "error", "abort", "loadend"}
)


class ReadyState(IntEnum):
    UNSENT = 0
    OPENED = 1
    HEADERS_RECEIVED = 2
    LOADING = 3
    DONE = 4


class PollingRequestStateError(ProtocolMisuseError):
    """Raised when a PollingRequest method is called in the wrong state."""


@dataclass(frozen=True)
class PollingEvent:
    type: str
    target: PollingRequest
    error: BaseException | None = None


Listener = Callable[[PollingEvent], Any]


def _charset_of(mime_type: str | None) -> str | None:
    if not mime_type:
        return None
    for param in mime_type.split(";")[1:]:
        key, _, value = param.partition("=")
        if key.strip().lower() == "charset" and value.strip():
            return value.strip().strip('"').lower()
    return None


class PollingRequest:
    """An XHR-style request driven by an ``httpx.AsyncClient``."""

    SUPPORTED_RESPONSE_TYPES = frozenset(
        {"", TEXT_RESPONSE_TYPE, CHUNKED_BINARY_RESPONSE_TYPE}
    )

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        supported_response_types: frozenset[str] | None = None,
    ) -> None:
        self._client = client
        self._supported = (
            self.SUPPORTED_RESPONSE_TYPES
            if supported_response_types is None
            else frozenset(supported_response_types)
        )
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._ready_state = ReadyState.UNSENT
        self._method: str | None = None
        self._url: str | None = None
        self._request_headers: dict[str, str] = {}
        self._response_type = ""
        self._mime_override: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._sent = False
        self._aborted = False
        self._chunk: bytes | None = None
        self._text = ""
        self.status = 0
        self.response_headers = httpx.Headers()
        self.credentials: CredentialsMode | None = None
        self.http_response: httpx.Response | None = None

    # -- state ---------------------------------------------------------------

    @property
    def ready_state(self) -> ReadyState:
        return self._ready_state

    def _set_state(self, state: ReadyState) -> None:
        self._ready_state = state
        self._dispatch("readystatechange")

    @property
    def with_credentials(self) -> bool:
        return self.credentials == "include"

    @with_credentials.setter
    def with_credentials(self, value: bool) -> None:
        self.credentials = "include" if value else None

    @property
    def response_type(self) -> str:
        return self._response_type

    @response_type.setter
    def response_type(self, value: str) -> None:
        if self._ready_state in (ReadyState.LOADING, ReadyState.DONE):
            raise PollingRequestStateError(
                "response_type cannot change once loading has started"
            )
        if value not in self._supported:
            raise ValueError(f"Unsupported response type: {value!r}")
        self._response_type = value

    @property
    def is_binary(self) -> bool:
        return self._response_type == CHUNKED_BINARY_RESPONSE_TYPE

    @property
    def charset(self) -> str | None:
        return _charset_of(self._mime_override) or _charset_of(
            self.response_headers.get("content-type")
        )

    @property
    def response(self) -> bytes | str | None:
        """The newest bytes (binary response type) or all text received so far."""
        if self.is_binary:
            return self._chunk
        return self._text

    @property
    def response_text(self) -> str:
        if self.is_binary:
            raise PollingRequestStateError(
                "response_text is only available for text response types"
            )
        return self._text

    # -- listeners -----------------------------------------------------------

    def add_event_listener(self, event_type: str, listener: Listener) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type!r}")
        if listener not in self._listeners[event_type]:
            self._listeners[event_type].append(listener)

    def remove_event_listener(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event_type: str | None = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, ()))
        return sum(len(listeners) for listeners in self._listeners.values())

    def _fire(self, event_type: str, error: BaseException | None = None) -> None:
        event = PollingEvent(event_type, self, error)
        for listener in list(self._listeners.get(event_type, ())):
            listener(event)

    def _dispatch(self, event_type: str, error: BaseException | None = None) -> None:
        if self._aborted:
            return
        self._fire(event_type, error)

    # -- request lifecycle ---------------------------------------------------

    def open(self, method: str, url: str) -> None:
        if self._sent:
            raise PollingRequestStateError("open() called on a request already sent")
        self._method = method.upper()
        self._url = url
        self._request_headers = {}
        self._set_state(ReadyState.OPENED)

    def set_request_header(self, name: str, value: str) -> None:
        if self._ready_state is not ReadyState.OPENED or self._sent:
            raise PollingRequestStateError("Headers can only be set after open()")
        self._request_headers[name] = value

    def override_mime_type(self, mime_type: str) -> None:
        if self._ready_state in (ReadyState.LOADING, ReadyState.DONE):
            raise PollingRequestStateError(
                "override_mime_type() must be called before loading starts"
            )
        self._mime_override = mime_type

    def send(self, body: bytes | str | None = None) -> None:
        if self._ready_state is not ReadyState.OPENED or self._sent:
            raise PollingRequestStateError("send() requires an opened, unsent request")
        if self._client is None:
            raise PollingRequestStateError("send() requires an httpx client")
        self._sent = True
        self._task = asyncio.get_running_loop().create_task(self._pump(body))

    def abort(self) -> None:
        """Cancel the request, firing ``abort`` and ``loadend`` synchronously."""
        if not self._sent or self._aborted or self._ready_state is ReadyState.DONE:
            return
        self._aborted = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.status = 0
        self._ready_state = ReadyState.DONE
        self._fire("abort")
        self._fire("loadend")

    async def wait_closed(self) -> None:
        """Wait until the background transfer has released its connection."""
        if self._task is not None:
            await asyncio.wait({self._task})

    def _new_text_decoder(self) -> codecs.IncrementalDecoder:
        charset = self.charset or "utf-8"
        if charset == USER_DEFINED_CHARSET:
            charset = "latin-1"
        try:
            return codecs.getincrementaldecoder(charset)(errors="replace")
        except LookupError:
            logger.warning("Unknown charset %r, decoding as utf-8", charset)
            return codecs.getincrementaldecoder("utf-8")(errors="replace")

    def _fail(self, exc: BaseException) -> None:
        logger.warning("Polling request to %s failed: %s", self._url, exc)
        self.status = 0
        self._ready_state = ReadyState.DONE
        self._dispatch("error", exc)
        self._dispatch("loadend", exc)

    async def _pump(self, body: bytes | str | None) -> None:
        assert self._client is not None and self._method and self._url
        request, send_kwargs = prepare_request(
            self._client,
            self._method,
            self._url,
            headers=self._request_headers,
            body=body,
            credentials=self.credentials,
        )
        logger.debug(
            "Sending polling request %s %s headers=%s",
            request.method,
            request.url,
            redact_headers(request.headers),
        )
        try:
            response = await self._client.send(request, stream=True, **send_kwargs)
        except httpx.HTTPError as exc:
            self._fail(exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error sending polling request to %s", self._url)
            self._fail(exc)
            return

        self.http_response = response
        try:
            self.status = response.status_code
            self.response_headers = response.headers
            self._set_state(ReadyState.HEADERS_RECEIVED)
            decoder = None if self.is_binary else self._new_text_decoder()

            async for data in response.aiter_bytes():
                if self._ready_state is not ReadyState.LOADING:
                    self._set_state(ReadyState.LOADING)
                if decoder is None:
                    self._chunk = data
                else:
                    self._text += decoder.decode(data)
                self._dispatch("progress")

            if decoder is not None:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self._text += tail
                    self._dispatch("progress")

            self._set_state(ReadyState.DONE)
            self._dispatch("load")
            self._dispatch("loadend")
        except httpx.HTTPError as exc:
            self._fail(exc)
        except Exception as exc:
            logger.exception("Unexpected error reading polling response from %s", self._url)
            self._fail(exc)
        finally:
            await response.aclose()
