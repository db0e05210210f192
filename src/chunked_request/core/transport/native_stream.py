from __future__ import annotations

import asyncio
import logging

import httpx

from chunked_request.core.common.exceptions import (
    ProtocolMisuseError,
    TransportAbortedError,
    TransportFailureError,
)
from chunked_request.core.common.logging_utils import redact_headers
from chunked_request.core.domain.chunks import RawChunk
from chunked_request.core.domain.completion import CompletionResult
from chunked_request.core.domain.request_spec import RequestSpec
from chunked_request.core.domain.transport_capability import TransportCapability
from chunked_request.core.interfaces.stream_reader_interface import (
    IRawTransport,
    IStreamHandle,
)
from chunked_request.core.transport.http_request import prepare_request

logger = logging.getLogger(__name__)


class NativeStreamHandle(IStreamHandle):
    """Reads an ``httpx`` streaming response by pulling ``aiter_bytes()``."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._iterator = response.aiter_bytes()
        self._done = False
        self._reading = False
        self._aborted = asyncio.Event()

    @property
    def capability(self) -> TransportCapability:
        return TransportCapability.NATIVE_STREAM

    @property
    def response(self) -> httpx.Response:
        return self._response

    async def _pull(self) -> bytes | None:
        try:
            return await self._iterator.__anext__()
        except StopAsyncIteration:
            return None

    async def _pull_unless_aborted(self) -> bytes | None:
        read = asyncio.ensure_future(self._pull())
        aborted = asyncio.ensure_future(self._aborted.wait())
        try:
            await asyncio.wait({read, aborted}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            read.cancel()
            raise
        finally:
            aborted.cancel()

        if read.done():
            return read.result()

        read.cancel()
        await asyncio.wait({read})
        raise TransportAbortedError(transport=self.capability.value)

    async def read_next(self) -> RawChunk:
        if self._done:
            raise ProtocolMisuseError("read_next() called after the stream completed")
        if self._reading:
            raise ProtocolMisuseError("Only one read_next() may be in flight per handle")
        if self._aborted.is_set():
            self._done = True
            raise TransportAbortedError(transport=self.capability.value)

        self._reading = True
        try:
            data = await self._pull_unless_aborted()
        except TransportAbortedError:
            self._done = True
            raise
        except httpx.HTTPError as exc:
            self._done = True
            logger.warning("Native stream failed for %s: %s", self._response.url, exc)
            raise TransportFailureError(
                f"Stream interrupted ({exc})", transport=self.capability.value
            ) from exc
        finally:
            self._reading = False

        if data is None:
            self._done = True
            await self.aclose()
            return RawChunk(b"", done=True)

        logger.debug("Native stream delivered %d bytes", len(data))
        return RawChunk(data, done=False)

    def abort(self) -> None:
        if not self._aborted.is_set():
            logger.debug("Aborting native stream for %s", self._response.url)
        self._aborted.set()

    async def aclose(self) -> None:
        await self._response.aclose()

    def completion(self, error: Exception | None = None) -> CompletionResult:
        return CompletionResult(
            status_code=0 if error is not None else self._response.status_code,
            transport=self.capability,
            raw=self._response,
            error=error,
        )


class NativeStreamTransport(IRawTransport):
    """True streaming through ``httpx.AsyncClient.send(..., stream=True)``."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    @property
    def capability(self) -> TransportCapability:
        return TransportCapability.NATIVE_STREAM

    async def open(self, request_spec: RequestSpec) -> NativeStreamHandle:
        request, send_kwargs = prepare_request(
            self.client,
            request_spec.method,
            request_spec.url,
            headers=request_spec.headers,
            body=request_spec.body,
            credentials=request_spec.credentials,
        )
        logger.debug(
            "Opening native stream %s %s headers=%s",
            request.method,
            request.url,
            redact_headers(request.headers),
        )
        try:
            response = await self.client.send(request, stream=True, **send_kwargs)
        except httpx.HTTPError as exc:
            raise TransportFailureError(
                f"Could not connect to {request.url} ({exc})",
                transport=self.capability.value,
            ) from exc
        return NativeStreamHandle(response)
