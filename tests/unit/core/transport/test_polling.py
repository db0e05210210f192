import asyncio
import json

import httpx
import pytest
from chunked_request.core.common.exceptions import (
    ProtocolMisuseError,
    TransportAbortedError,
    TransportFailureError,
)
from chunked_request.core.domain.request_spec import RequestSpec
from chunked_request.core.domain.transport_capability import TransportCapability
from chunked_request.core.transport.polling import (
    PollingBinaryTransport,
    PollingTextTransport,
)
from chunked_request.core.transport.polling_request import (
    PollingRequest,
    PollingRequestStateError,
    ReadyState,
)

from tests.fixtures.ndjson_server import ChunkedByteStream, NdjsonServer


async def read_all(handle):
    chunks = []
    while True:
        chunk = await handle.read_next()
        chunks.append(chunk)
        if chunk.done:
            return chunks


class TestPollingRequest:
    """Tests for the event-emitting request object."""

    @pytest.mark.asyncio
    async def test_event_sequence_binary(
        self, client: httpx.AsyncClient, ndjson_server: NdjsonServer
    ) -> None:
        ndjson_server.serve("/feed", ChunkedByteStream([b"ab", b"cd"]))
        request = PollingRequest(client)
        seen: list[tuple[str, object]] = []
        for event_type in ("readystatechange", "progress", "load", "loadend"):
            request.add_event_listener(
                event_type,
                lambda event: seen.append(
                    (
                        event.type,
                        event.target.response
                        if event.type == "progress"
                        else event.target.ready_state,
                    )
                ),
            )

        request.open("get", "/feed")
        request.response_type = "chunked-arraybuffer"
        request.send()
        await request.wait_closed()

        assert seen == [
            ("readystatechange", ReadyState.OPENED),
            ("readystatechange", ReadyState.HEADERS_RECEIVED),
            ("readystatechange", ReadyState.LOADING),
            ("progress", b"ab"),
            ("progress", b"cd"),
            ("readystatechange", ReadyState.DONE),
            ("load", ReadyState.DONE),
            ("loadend", ReadyState.DONE),
        ]
        assert request.status == 200

    @pytest.mark.asyncio
    async def test_text_response_is_cumulative(
        self, client: httpx.AsyncClient, ndjson_server: NdjsonServer
    ) -> None:
        encoded = "é".encode()
        ndjson_server.serve("/feed", ChunkedByteStream([encoded[:1], encoded[1:] + b"x"]))
        request = PollingRequest(client)
        snapshots: list[str] = []
        request.add_event_listener(
            "progress", lambda event: snapshots.append(event.target.response_text)
        )
        request.open("GET", "/feed")
        request.response_type = "text"
        request.send()
        await request.wait_closed()

        assert snapshots == ["", "éx"]

    def test_unsupported_response_type(self) -> None:
        request = PollingRequest(supported_response_types=frozenset({"text"}))
        request.open("GET", "http://localhost/")
        with pytest.raises(ValueError):
            request.response_type = "chunked-arraybuffer"

    def test_state_errors(self) -> None:
        request = PollingRequest()
        request.with_credentials = True
        assert request.credentials == "include"
        with pytest.raises(PollingRequestStateError):
            request.set_request_header("X-Test", "1")
        request.open("GET", "http://localhost/")
        with pytest.raises(PollingRequestStateError):
            request.send()
        request.response_type = "chunked-arraybuffer"
        with pytest.raises(PollingRequestStateError):
            _ = request.response_text


class TestPollingBinaryTransport:
    """Tests for the binary polling strategy."""

    @pytest.mark.asyncio
    async def test_reads_each_increment_once(
        self, client: httpx.AsyncClient, ndjson_server: NdjsonServer
    ) -> None:
        ndjson_server.serve("/feed", ChunkedByteStream([b'{"a":1}\n', b'{"b":2}\n']))
        handle = await PollingBinaryTransport(client).open(RequestSpec(url="/feed"))

        chunks = await read_all(handle)
        assert b"".join(c.value for c in chunks) == b'{"a":1}\n{"b":2}\n'
        assert chunks[-1].done
        assert handle.request.listener_count() == 0
        assert not handle.attached

        completion = handle.completion()
        assert completion.status_code == 200
        assert completion.transport is TransportCapability.POLLING_BINARY
        assert completion.raw is handle.request

        with pytest.raises(ProtocolMisuseError):
            await handle.read_next()

    @pytest.mark.asyncio
    async def test_registers_one_listener_per_event(
        self, client: httpx.AsyncClient, ndjson_server: NdjsonServer
    ) -> None:
        stream = ChunkedByteStream([b"1\n"], hold_before=0)
        ndjson_server.serve("/feed", stream)
        handle = await PollingBinaryTransport(client).open(RequestSpec(url="/feed"))

        for event_type in ("progress", "load", "error", "abort", "loadend"):
            assert handle.request.listener_count(event_type) == 1

        stream.release.set()
        await read_all(handle)
        await handle.aclose()

    @pytest.mark.asyncio
    async def test_abort_resolves_pending_read_and_detaches(
        self, client: httpx.AsyncClient, ndjson_server: NdjsonServer
    ) -> None:
        stream = ChunkedByteStream([b"1\n", b"2\n"], hold_before=1)
        ndjson_server.serve("/feed", stream)
        handle = await PollingBinaryTransport(client).open(RequestSpec(url="/feed"))
        assert (await handle.read_next()).value == b"1\n"

        pending = asyncio.ensure_future(handle.read_next())
        await asyncio.sleep(0)
        handle.abort()

        with pytest.raises(TransportAbortedError):
            await asyncio.wait_for(pending, timeout=1)
        assert handle.request.listener_count() == 0
        await handle.aclose()
        assert stream.delivered == 1
        assert stream.closed

    @pytest.mark.asyncio
    async def test_connection_error_surfaces_on_read(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
            handle = await PollingBinaryTransport(client).open(
                RequestSpec(url="http://unreachable.test/feed")
            )
            with pytest.raises(TransportFailureError) as excinfo:
                await handle.read_next()
            assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
            assert handle.completion(excinfo.value).status_code == 0
            assert handle.request.listener_count() == 0

    @pytest.mark.asyncio
    async def test_non_http_stream_error_fails_pending_read(
        self, client: httpx.AsyncClient, ndjson_server: NdjsonServer
    ) -> None:
        stream = ChunkedByteStream(
            [b'{"a":1}\n', b'{"b":2}\n'],
            hold_before=1,
            fail_before=1,
            fail_with=httpx.StreamClosed(),
        )
        ndjson_server.serve("/feed", stream)
        handle = await PollingBinaryTransport(client).open(RequestSpec(url="/feed"))
        assert (await asyncio.wait_for(handle.read_next(), timeout=1)).value == b'{"a":1}\n'
        stream.release.set()

        with pytest.raises(TransportFailureError) as excinfo:
            await asyncio.wait_for(handle.read_next(), timeout=1)
        assert isinstance(excinfo.value.__cause__, httpx.StreamClosed)
        assert handle.request.ready_state is ReadyState.DONE
        assert handle.request.listener_count() == 0
        assert stream.delivered == 1

    @pytest.mark.asyncio
    async def test_non_http_send_error_fails_pending_read(self) -> None:
        def explode(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("handler crashed")

        async with httpx.AsyncClient(transport=httpx.MockTransport(explode)) as client:
            handle = await PollingBinaryTransport(client).open(
                RequestSpec(url="http://broken.test/feed")
            )
            with pytest.raises(TransportFailureError) as excinfo:
                await asyncio.wait_for(handle.read_next(), timeout=1)
            assert isinstance(excinfo.value.__cause__, RuntimeError)
            assert handle.completion(excinfo.value).status_code == 0


class TestPollingTextTransport:
    """Tests for the text polling strategy."""

    @pytest.mark.asyncio
    async def test_increments_are_diffed_by_offset(
        self, client: httpx.AsyncClient, ndjson_server: NdjsonServer
    ) -> None:
        body = json.dumps({"greeting": "grüß dich €"}, ensure_ascii=False).encode()
        body += b"\n"
        pieces = [body[i : i + 3] for i in range(0, len(body), 3)]
        ndjson_server.serve("/feed", ChunkedByteStream(pieces))

        handle = await PollingTextTransport(client).open(RequestSpec(url="/feed"))
        chunks = await read_all(handle)

        assert b"".join(c.value for c in chunks) == body
        assert handle.offset == len(body)
        assert handle.request.charset == "x-user-defined"
        assert handle.completion().transport is TransportCapability.POLLING_TEXT

    @pytest.mark.asyncio
    async def test_request_headers_and_body_are_sent(
        self, client: httpx.AsyncClient, ndjson_server: NdjsonServer
    ) -> None:
        handle = await PollingTextTransport(client).open(
            RequestSpec(
                url="/echo-response",
                method="post",
                headers={"X-Trace": "abc"},
                body="payload",
            )
        )
        chunks = await read_all(handle)
        echoed = json.loads(b"".join(c.value for c in chunks))

        assert echoed["method"] == "POST"
        assert echoed["headers"]["x-trace"] == "abc"
        assert echoed["body"] == "payload"
