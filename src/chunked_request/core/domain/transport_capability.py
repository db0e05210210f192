from __future__ import annotations

from enum import Enum


class TransportCapability(str, Enum):
    """How the environment can deliver a response body incrementally.

    Members are declared in order of preference.
    """

    NATIVE_STREAM = "native-stream"
    POLLING_BINARY = "polling-binary"
    POLLING_TEXT = "polling-text"
    UNSUPPORTED = "unsupported"

    @property
    def is_incremental(self) -> bool:
        return self is not TransportCapability.UNSUPPORTED
