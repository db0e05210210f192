"""
Transport capability detection and selection.

Detection is split in two: :func:`probe_environment` gathers facts and turns
every probe failure into a plain ``False``, while :func:`select_capability`
is a pure decision over those facts. :class:`TransportSelector` memoizes the
decision for its owner.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

import httpx

from chunked_request.core.common.exceptions import TransportUnavailableError
from chunked_request.core.config.app_config import StreamConfig
from chunked_request.core.domain.environment import (
    CHUNKED_BINARY_RESPONSE_TYPE,
    TEXT_RESPONSE_TYPE,
    EnvironmentCapabilities,
)
from chunked_request.core.domain.transport_capability import TransportCapability
from chunked_request.core.interfaces.stream_reader_interface import IRawTransport
from chunked_request.core.transport.native_stream import NativeStreamTransport
from chunked_request.core.transport.polling import (
    PollingBinaryTransport,
    PollingTextTransport,
)
from chunked_request.core.transport.polling_request import PollingRequest

logger = logging.getLogger(__name__)

# Polling response types worth probing, most preferred first.
CANDIDATE_RESPONSE_TYPES = (CHUNKED_BINARY_RESPONSE_TYPE, TEXT_RESPONSE_TYPE)

_PROBE_URL = "http://localhost/"


def select_capability(environment: EnvironmentCapabilities) -> TransportCapability:
    """Pick the best capability the environment offers."""
    if environment.native_stream:
        return TransportCapability.NATIVE_STREAM
    if environment.supports_response_type(
        CHUNKED_BINARY_RESPONSE_TYPE
    ) and not environment.binary_polling_is_unreliable():
        return TransportCapability.POLLING_BINARY
    if environment.supports_response_type(TEXT_RESPONSE_TYPE):
        return TransportCapability.POLLING_TEXT
    return TransportCapability.UNSUPPORTED


def _has_native_stream() -> bool:
    return callable(getattr(httpx.AsyncClient, "send", None)) and callable(
        getattr(httpx.Response, "aiter_bytes", None)
    )


def _probe_response_type(
    request_factory: Callable[[], PollingRequest], response_type: str
) -> bool:
    # response_type may only be assigned on an opened request.
    try:
        request = request_factory()
        request.open("GET", _PROBE_URL)
        request.response_type = response_type
        return request.response_type == response_type
    except Exception as exc:
        logger.debug("Response type %r unavailable: %s", response_type, exc)
        return False


def probe_environment(
    config: StreamConfig | None = None,
    request_factory: Callable[[], PollingRequest] = PollingRequest,
) -> EnvironmentCapabilities:
    """Gather the facts :func:`select_capability` decides on."""
    config = config or StreamConfig()
    try:
        native = not config.disable_native_stream and _has_native_stream()
    except Exception as exc:
        logger.debug("Native stream probe failed: %s", exc)
        native = False

    response_types = frozenset(
        response_type
        for response_type in CANDIDATE_RESPONSE_TYPES
        if _probe_response_type(request_factory, response_type)
    )
    return EnvironmentCapabilities(
        native_stream=native,
        polling_response_types=response_types,
        user_agent=config.user_agent,
        binary_polling_unreliable_agents=config.binary_polling_unreliable_agents,
    )


class TransportSelector:
    """Chooses a transport capability once and remembers the choice.

    Args:
        config: Configuration; ``forced_transport`` short-circuits probing.
        probe: Callable producing the environment facts.
        environment: Fixed environment facts, bypassing ``probe``.
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        probe: Callable[[StreamConfig], EnvironmentCapabilities] | None = None,
        environment: EnvironmentCapabilities | None = None,
    ) -> None:
        self._config = config or StreamConfig()
        self._probe = probe or probe_environment
        self._environment = environment
        self._selected: TransportCapability | None = None
        self._lock = threading.Lock()

    @property
    def selected(self) -> TransportCapability | None:
        return self._selected

    def select(self) -> TransportCapability:
        if self._selected is not None:
            return self._selected
        with self._lock:
            if self._selected is None:
                self._selected = self._decide()
                logger.info("Selected transport: %s", self._selected.value)
        return self._selected

    def _decide(self) -> TransportCapability:
        if self._config.forced_transport is not None:
            return self._config.forced_transport
        environment = self._environment
        if environment is None:
            environment = self._probe(self._config)
        logger.debug("Probed environment: %s", environment.model_dump())
        return select_capability(environment)

    def require(self) -> TransportCapability:
        """Like :meth:`select`, but refuse an environment with no capability."""
        capability = self.select()
        if not capability.is_incremental:
            raise TransportUnavailableError(
                details={"user_agent": self._config.user_agent}
            )
        return capability

    def reset_for_testing(
        self, environment: EnvironmentCapabilities | None = None
    ) -> None:
        """Forget the memoized choice, optionally pinning new environment facts."""
        with self._lock:
            self._selected = None
            self._environment = environment


_TRANSPORTS: dict[TransportCapability, Callable[[httpx.AsyncClient], IRawTransport]] = {
    TransportCapability.NATIVE_STREAM: NativeStreamTransport,
    TransportCapability.POLLING_BINARY: PollingBinaryTransport,
    TransportCapability.POLLING_TEXT: PollingTextTransport,
}


def create_transport(
    capability: TransportCapability, client: httpx.AsyncClient
) -> IRawTransport:
    """Instantiate the strategy implementing ``capability``."""
    factory = _TRANSPORTS.get(capability)
    if factory is None:
        raise TransportUnavailableError(
            f"No transport implements capability {capability.value!r}"
        )
    return factory(client)
