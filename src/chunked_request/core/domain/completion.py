from __future__ import annotations

from typing import Any

from pydantic import ConfigDict

from chunked_request.core.domain.transport_capability import TransportCapability
from chunked_request.core.interfaces.model_bases import DomainModel


class CompletionResult(DomainModel):
    """Terminal outcome of one chunked request.

    ``status_code`` is 0 when the transport failed or was aborted, in which
    case ``error`` holds the cause. ``raw`` is the underlying response object
    and is only meant for diagnostics.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status_code: int
    transport: TransportCapability
    raw: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status_code < 300
