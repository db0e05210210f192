from __future__ import annotations

from pydantic import ConfigDict, Field

from chunked_request.core.interfaces.model_bases import DomainModel

# Response types a PollingRequest may expose.
CHUNKED_BINARY_RESPONSE_TYPE = "chunked-arraybuffer"
TEXT_RESPONSE_TYPE = "text"


class EnvironmentCapabilities(DomainModel):
    """Facts about the execution environment, as gathered by a probe.

    The model carries no behaviour: deciding which capability to use from
    these facts is the job of ``select_capability``.
    """

    model_config = ConfigDict(frozen=True)

    native_stream: bool = False
    polling_response_types: frozenset[str] = Field(default_factory=frozenset)
    user_agent: str = ""
    binary_polling_unreliable_agents: tuple[str, ...] = ()

    def supports_response_type(self, response_type: str) -> bool:
        return response_type in self.polling_response_types

    def binary_polling_is_unreliable(self) -> bool:
        agent = self.user_agent.lower()
        return any(
            marker.lower() in agent
            for marker in self.binary_polling_unreliable_agents
            if marker
        )
