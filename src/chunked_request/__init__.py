"""
chunked-request: observe NDJSON records of an HTTP response as they arrive.

Quick start::

    async with ChunkedRequestService() as service:
        async for record in service.request("https://example.com/feed").records():
            print(record.sequence, record.value)
"""

from chunked_request.core.common.exceptions import (
    ChunkedRequestError,
    InvalidOptionsError,
    ProtocolMisuseError,
    RecordFailure,
    RecordParseError,
    TransportAbortedError,
    TransportFailureError,
    TransportUnavailableError,
)
from chunked_request.core.config.app_config import StreamConfig
from chunked_request.core.domain.chunks import ParsedRecord, RawChunk, RecordBatch
from chunked_request.core.domain.completion import CompletionResult
from chunked_request.core.domain.environment import EnvironmentCapabilities
from chunked_request.core.domain.request_spec import ChunkedRequestOptions, RequestSpec
from chunked_request.core.domain.transport_capability import TransportCapability
from chunked_request.core.services.chunked_request_service import (
    ChunkedRequest,
    ChunkedRequestService,
    chunked_request,
)
from chunked_request.core.services.record_decoder import RecordDecoder, parse_chunk
from chunked_request.core.transport.selector import (
    TransportSelector,
    probe_environment,
    select_capability,
)

__version__ = "0.1.0"

__all__ = [
    "ChunkedRequest",
    "ChunkedRequestError",
    "ChunkedRequestOptions",
    "ChunkedRequestService",
    "CompletionResult",
    "EnvironmentCapabilities",
    "InvalidOptionsError",
    "ParsedRecord",
    "ProtocolMisuseError",
    "RawChunk",
    "RecordBatch",
    "RecordDecoder",
    "RecordFailure",
    "RecordParseError",
    "RequestSpec",
    "StreamConfig",
    "TransportAbortedError",
    "TransportCapability",
    "TransportFailureError",
    "TransportSelector",
    "TransportUnavailableError",
    "chunked_request",
    "parse_chunk",
    "probe_environment",
    "select_capability",
]
