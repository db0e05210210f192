import asyncio

import httpx
import pytest
from chunked_request.core.common.exceptions import (
    ProtocolMisuseError,
    TransportAbortedError,
    TransportFailureError,
)
from chunked_request.core.domain.request_spec import RequestSpec
from chunked_request.core.domain.transport_capability import TransportCapability
from chunked_request.core.transport.native_stream import NativeStreamTransport

from tests.fixtures.ndjson_server import ChunkedByteStream, NdjsonServer


async def read_all(handle):
    chunks = []
    while True:
        chunk = await handle.read_next()
        chunks.append(chunk)
        if chunk.done:
            return chunks


@pytest.mark.asyncio
async def test_reads_chunks_as_delivered(
    client: httpx.AsyncClient, ndjson_server: NdjsonServer
) -> None:
    stream = ChunkedByteStream([b'{"a":1}\n{"b"', b':2}\n'])
    ndjson_server.serve("/feed", stream)

    handle = await NativeStreamTransport(client).open(RequestSpec(url="/feed"))
    chunks = await read_all(handle)

    assert [c.value for c in chunks] == [b'{"a":1}\n{"b"', b":2}\n", b""]
    assert [c.done for c in chunks] == [False, False, True]
    assert stream.closed

    completion = handle.completion()
    assert completion.status_code == 200
    assert completion.transport is TransportCapability.NATIVE_STREAM
    assert isinstance(completion.raw, httpx.Response)


@pytest.mark.asyncio
async def test_read_after_done_fails_fast(
    client: httpx.AsyncClient, ndjson_server: NdjsonServer
) -> None:
    ndjson_server.serve("/feed", ChunkedByteStream([b"1\n"]))
    handle = await NativeStreamTransport(client).open(RequestSpec(url="/feed"))
    await read_all(handle)

    with pytest.raises(ProtocolMisuseError):
        await handle.read_next()


@pytest.mark.asyncio
async def test_concurrent_read_is_rejected(
    client: httpx.AsyncClient, ndjson_server: NdjsonServer
) -> None:
    stream = ChunkedByteStream([b"1\n"], hold_before=0)
    ndjson_server.serve("/feed", stream)
    handle = await NativeStreamTransport(client).open(RequestSpec(url="/feed"))

    pending = asyncio.ensure_future(handle.read_next())
    await asyncio.sleep(0)
    with pytest.raises(ProtocolMisuseError):
        await handle.read_next()

    stream.release.set()
    assert (await pending).value == b"1\n"
    await handle.aclose()


@pytest.mark.asyncio
async def test_abort_resolves_pending_read(
    client: httpx.AsyncClient, ndjson_server: NdjsonServer
) -> None:
    stream = ChunkedByteStream([b"1\n", b"2\n"], hold_before=1)
    ndjson_server.serve("/feed", stream)
    handle = await NativeStreamTransport(client).open(RequestSpec(url="/feed"))
    assert (await handle.read_next()).value == b"1\n"

    pending = asyncio.ensure_future(handle.read_next())
    await asyncio.sleep(0)
    handle.abort()

    with pytest.raises(TransportAbortedError):
        await asyncio.wait_for(pending, timeout=1)
    await handle.aclose()
    assert stream.delivered == 1
    assert handle.completion(TransportAbortedError()).status_code == 0


@pytest.mark.asyncio
async def test_mid_stream_failure_is_transport_failure(
    client: httpx.AsyncClient, ndjson_server: NdjsonServer
) -> None:
    ndjson_server.serve("/feed", ChunkedByteStream([b"1\n", b"2\n"], fail_before=1))
    handle = await NativeStreamTransport(client).open(RequestSpec(url="/feed"))
    await handle.read_next()

    with pytest.raises(TransportFailureError) as excinfo:
        await handle.read_next()
    assert excinfo.value.transport == TransportCapability.NATIVE_STREAM.value
    with pytest.raises(ProtocolMisuseError):
        await handle.read_next()
    await handle.aclose()


@pytest.mark.asyncio
async def test_connect_failure_is_transport_failure() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
        with pytest.raises(TransportFailureError):
            await NativeStreamTransport(client).open(
                RequestSpec(url="http://unreachable.test/feed")
            )
