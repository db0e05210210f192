from __future__ import annotations

import codecs
import logging
import os
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import ConfigDict, Field, field_validator

from chunked_request.core.common.logging_utils import LogFormat
from chunked_request.core.domain.transport_capability import TransportCapability
from chunked_request.core.interfaces.model_bases import DomainModel

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "chunked-request/0.1.0"


def _env_to_bool(name: str, default: bool, env: Mapping[str, str]) -> bool:
    """Return an environment variable parsed as a boolean flag."""
    value = env.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_to_float(name: str, default: float, env: Mapping[str, str]) -> float:
    """Return an environment variable parsed as a float."""
    value = env.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s=%r", name, value)
        return default


def _env_to_list(name: str, env: Mapping[str, str]) -> tuple[str, ...]:
    """Return a comma-separated environment variable as a tuple of entries."""
    raw = env.get(name)
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


class StreamConfig(DomainModel):
    """Runtime configuration for chunked requests."""

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(default=30.0, gt=0)
    connect_timeout: float = Field(default=10.0, gt=0)
    encoding: str = "utf-8"
    forced_transport: TransportCapability | None = None
    disable_native_stream: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    binary_polling_unreliable_agents: tuple[str, ...] = ()
    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.PLAIN
    log_file: str | None = None

    @field_validator("encoding")
    @classmethod
    def _check_encoding(cls, value: str) -> str:
        try:
            codecs.lookup(value)
        except LookupError as exc:
            raise ValueError(f"Unknown text encoding: {value}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.strip().upper()

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> StreamConfig:
        """Build a configuration from ``CHUNKED_REQUEST_*`` environment variables."""
        if env is None:
            env = os.environ

        values: dict[str, Any] = {
            "timeout": _env_to_float("CHUNKED_REQUEST_TIMEOUT", 30.0, env),
            "connect_timeout": _env_to_float(
                "CHUNKED_REQUEST_CONNECT_TIMEOUT", 10.0, env
            ),
            "disable_native_stream": _env_to_bool(
                "CHUNKED_REQUEST_DISABLE_NATIVE_STREAM", False, env
            ),
            "binary_polling_unreliable_agents": _env_to_list(
                "CHUNKED_REQUEST_BINARY_POLLING_BLOCKLIST", env
            ),
        }
        if env.get("CHUNKED_REQUEST_ENCODING"):
            values["encoding"] = env["CHUNKED_REQUEST_ENCODING"]
        if env.get("CHUNKED_REQUEST_TRANSPORT"):
            values["forced_transport"] = env["CHUNKED_REQUEST_TRANSPORT"].strip().lower()
        if env.get("CHUNKED_REQUEST_USER_AGENT"):
            values["user_agent"] = env["CHUNKED_REQUEST_USER_AGENT"]
        if env.get("CHUNKED_REQUEST_LOG_LEVEL"):
            values["log_level"] = env["CHUNKED_REQUEST_LOG_LEVEL"]
        if env.get("CHUNKED_REQUEST_LOG_FORMAT"):
            values["log_format"] = env["CHUNKED_REQUEST_LOG_FORMAT"].strip().lower()
        if env.get("CHUNKED_REQUEST_LOG_FILE"):
            values["log_file"] = env["CHUNKED_REQUEST_LOG_FILE"]

        return cls(**values)

    def httpx_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout, connect=self.connect_timeout)

    def create_client(self, **kwargs: Any) -> httpx.AsyncClient:
        """Create the ``httpx.AsyncClient`` used by every transport strategy."""
        headers = {"User-Agent": self.user_agent}
        headers.update(kwargs.pop("headers", None) or {})
        kwargs.setdefault("timeout", self.httpx_timeout())
        return httpx.AsyncClient(headers=headers, **kwargs)
