from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable, Mapping
from typing import Any

import httpx

from chunked_request.core.common.exceptions import (
    ProtocolMisuseError,
    TransportAbortedError,
    TransportFailureError,
)
from chunked_request.core.common.logging_utils import get_logger
from chunked_request.core.config.app_config import StreamConfig
from chunked_request.core.domain.chunks import RecordBatch
from chunked_request.core.domain.completion import CompletionResult
from chunked_request.core.domain.request_spec import (
    ChunkedRequestOptions,
    RequestSpec,
    validate_options,
)
from chunked_request.core.interfaces.stream_reader_interface import (
    IRawTransport,
    IStreamHandle,
)
from chunked_request.core.services.record_decoder import ChunkParser, RecordDecoder
from chunked_request.core.transport.selector import TransportSelector, create_transport

logger = logging.getLogger(__name__)
events = get_logger(__name__)

ChunkCallback = Callable[[Exception | None, list[Any] | None], Any]
CompleteCallback = Callable[[CompletionResult], Any]


class ChunkedRequest:
    """One request: reads chunks from a transport and decodes them to records.

    Consume it with :meth:`batches`, :meth:`records` or :meth:`run`; a request
    can only be consumed once. Used as an async context manager it aborts the
    transfer if the block exits before the stream completed.
    """

    def __init__(
        self,
        transport: IRawTransport,
        request_spec: RequestSpec,
        *,
        encoding: str = "utf-8",
        chunk_parser: ChunkParser | None = None,
    ) -> None:
        self._transport = transport
        self._spec = request_spec
        self._decoder = RecordDecoder(encoding, chunk_parser)
        self._handle: IStreamHandle | None = None
        self._completion: CompletionResult | None = None
        self._started = False
        self._aborted = False

    @property
    def request_spec(self) -> RequestSpec:
        return self._spec

    @property
    def completion(self) -> CompletionResult | None:
        """The terminal result, once the request has ended."""
        return self._completion

    @property
    def done(self) -> bool:
        return self._completion is not None

    def abort(self) -> None:
        """Abort the request; safe to call from ``on_chunk`` callbacks."""
        if self._completion is not None:
            return
        self._aborted = True
        if self._handle is not None:
            self._handle.abort()

    def _finish(self, completion: CompletionResult) -> None:
        if self._completion is not None:
            return
        self._completion = completion
        events.debug(
            "chunked_request_complete",
            url=self._spec.url,
            status_code=completion.status_code,
            transport=completion.transport.value,
            error=type(completion.error).__name__ if completion.error else None,
        )

    def _fail(self, error: TransportFailureError) -> None:
        discarded = self._decoder.close()
        if not isinstance(error, TransportAbortedError):
            logger.warning(
                "Chunked request to %s failed: %s (%d characters discarded)",
                self._spec.url,
                error,
                len(discarded),
            )
        if self._handle is None:
            completion = CompletionResult(
                status_code=0, transport=self._transport.capability, error=error
            )
        else:
            completion = self._handle.completion(error)
        self._finish(completion)

    async def batches(self) -> AsyncGenerator[RecordBatch, None]:
        """Yield one ``(error, records)`` batch per productive decode call."""
        if self._started:
            raise ProtocolMisuseError("A chunked request can only be consumed once")
        self._started = True

        if self._aborted:
            self._fail(TransportAbortedError(transport=self._transport.capability.value))
            return

        try:
            self._handle = await self._transport.open(self._spec)
        except TransportFailureError as exc:
            self._fail(exc)
            return

        try:
            while True:
                try:
                    chunk = await self._handle.read_next()
                except TransportFailureError as exc:
                    self._fail(exc)
                    return

                result = self._decoder.decode(chunk.value, chunk.done)
                if result.has_output:
                    yield RecordBatch(result.error, result.records or None)

                if chunk.done:
                    self._finish(self._handle.completion())
                    return
        finally:
            if self._completion is None:
                self._handle.abort()
                self._fail(TransportAbortedError(transport=self._handle.capability.value))
            await self._handle.aclose()

    async def records(self, strict: bool = False) -> AsyncGenerator[Any, None]:
        """Yield decoded records one at a time.

        Malformed lines are logged and skipped, or raised when ``strict``;
        raising aborts the rest of the transfer.
        """
        batches = self.batches()
        try:
            async for batch in batches:
                if batch.error is not None:
                    if strict:
                        raise batch.error
                    logger.warning("Skipping malformed records: %s", batch.error)
                for record in batch.records or ():
                    yield record
        finally:
            await batches.aclose()

    async def run(
        self,
        on_chunk: ChunkCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> CompletionResult:
        """Drive the request to completion, invoking the callbacks."""
        batches = self.batches()
        try:
            async for batch in batches:
                if on_chunk is not None:
                    on_chunk(batch.error, batch.records)
        finally:
            await batches.aclose()

        completion = self._completion
        if completion is None:
            raise ProtocolMisuseError("Request ended without a completion result")
        if on_complete is not None:
            on_complete(completion)
        return completion

    async def __aenter__(self) -> ChunkedRequest:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.abort()
        if self._handle is not None:
            await self._handle.aclose()
            if self._completion is None:
                self._fail(TransportAbortedError(transport=self._handle.capability.value))


class ChunkedRequestService:
    """Owns the httpx client, the configuration and the transport selector.

    Args:
        config: Runtime configuration; read from the environment if omitted.
        client: An existing client. When omitted one is created from
            ``config`` and closed by :meth:`aclose`.
        selector: Transport selector to share between services.
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        client: httpx.AsyncClient | None = None,
        selector: TransportSelector | None = None,
    ) -> None:
        self.config = config or StreamConfig.from_env()
        self._client = client
        self._owns_client = client is None
        self.selector = selector or TransportSelector(self.config)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self.config.create_client()
        return self._client

    def transport(self) -> IRawTransport:
        """The strategy for the selected capability.

        Raises:
            TransportUnavailableError: If the environment has no capability.
        """
        return create_transport(self.selector.require(), self.client)

    def request(
        self,
        request_spec: RequestSpec | str,
        *,
        chunk_parser: ChunkParser | None = None,
        transport: IRawTransport | None = None,
        **spec_fields: Any,
    ) -> ChunkedRequest:
        """Create a :class:`ChunkedRequest`; nothing is sent until it is consumed."""
        if isinstance(request_spec, str):
            request_spec = RequestSpec(url=request_spec, **spec_fields)
        return ChunkedRequest(
            transport or self.transport(),
            request_spec,
            encoding=self.config.encoding,
            chunk_parser=chunk_parser,
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ChunkedRequestService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


async def chunked_request(
    options: ChunkedRequestOptions | Mapping[str, Any],
    *,
    service: ChunkedRequestService | None = None,
) -> CompletionResult:
    """Make a request and pass NDJSON records to ``options.on_chunk``.

    ``options.on_chunk(error, records)`` is invoked once per decode call that
    produced records or a parse error, then ``options.on_complete(result)``
    once at the end.

    Raises:
        InvalidOptionsError: If ``options`` fail validation.
        TransportUnavailableError: If no transport can be selected.
    """
    options = validate_options(options)
    if service is None:
        async with ChunkedRequestService() as owned:
            return await _run_options(owned, options)
    return await _run_options(service, options)


async def _run_options(
    service: ChunkedRequestService, options: ChunkedRequestOptions
) -> CompletionResult:
    request = service.request(
        options.to_request_spec(),
        chunk_parser=options.chunk_parser,
        transport=options.transport,
    )
    return await request.run(options.on_chunk, options.on_complete)
