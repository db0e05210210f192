from __future__ import annotations

from abc import ABC, abstractmethod

from chunked_request.core.domain.chunks import RawChunk
from chunked_request.core.domain.completion import CompletionResult
from chunked_request.core.domain.request_spec import RequestSpec
from chunked_request.core.domain.transport_capability import TransportCapability


class IStreamHandle(ABC):
    """Uniform pull interface over one in-flight response body."""

    @property
    @abstractmethod
    def capability(self) -> TransportCapability:
        """The transport capability serving this handle."""

    @abstractmethod
    async def read_next(self) -> RawChunk:
        """Return the next increment of the body.

        Callable repeatedly until a chunk with ``done`` set is returned. Only
        one read may be in flight per handle.

        Raises:
            ProtocolMisuseError: On a read after ``done`` or a concurrent read.
            TransportFailureError: When the connection fails.
            TransportAbortedError: When the handle has been aborted.
        """

    @abstractmethod
    def abort(self) -> None:
        """Abort the request.

        Takes effect immediately: listeners are released and a suspended
        ``read_next`` resolves with ``TransportAbortedError``. Safe to call from
        synchronous callbacks and safe to call more than once.
        """

    @abstractmethod
    async def aclose(self) -> None:
        """Release the underlying connection once reading has stopped."""

    @abstractmethod
    def completion(self, error: Exception | None = None) -> CompletionResult:
        """Describe how the request ended.

        Args:
            error: The failure that ended the request, if any. A failed request
                always reports status code 0.
        """


class IRawTransport(ABC):
    """A strategy for obtaining response data as it arrives."""

    @property
    @abstractmethod
    def capability(self) -> TransportCapability:
        """The capability this strategy implements."""

    @abstractmethod
    async def open(self, request_spec: RequestSpec) -> IStreamHandle:
        """Start ``request_spec`` and return a handle for reading its body.

        Raises:
            TransportFailureError: If the request cannot be started.
        """
