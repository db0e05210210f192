"""
Logging utilities for chunked-request.

This module provides:
- Structured logger access through structlog
- Redaction of credentials carried in request headers
- Environment tagging (test/prod) of log records
"""

from __future__ import annotations

import logging
import os
import re
import sys
from collections.abc import Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

import structlog

if TYPE_CHECKING:
    from chunked_request.core.config.app_config import StreamConfig


class LogFormat(str, Enum):
    """Log format options."""

    JSON = "json"
    CONSOLE = "console"
    PLAIN = "plain"


# Header names whose values never reach the logs
DEFAULT_REDACTED_HEADERS = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
}

BEARER_TOKEN_PATTERN = re.compile(r"Bearer\s+([a-zA-Z0-9._~+/-]+=*)")

DEFAULT_LOG_FORMAT = (
    "%(asctime)s [%(levelname)-8s] [%(env_tag)s] %(name)s:%(lineno)d %(message)s"
)


def _is_running_under_pytest() -> bool:
    return "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST") is not None


def _get_environment_tag() -> str:
    return "test" if _is_running_under_pytest() else "prod"


class EnvironmentTaggingFilter(logging.Filter):
    """Logging filter that adds environment tags to log records."""

    def __init__(self) -> None:
        super().__init__()
        self._env_tag = _get_environment_tag()

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        record.env_tag = self._env_tag
        return True


class EnvironmentTaggingFormatter(logging.Formatter):
    """Logging formatter that includes environment tags."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: Literal["%", "{", "$"] = "%",
    ) -> None:
        super().__init__(fmt or DEFAULT_LOG_FORMAT, datefmt, style=style)

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "env_tag"):
            record.env_tag = _get_environment_tag()
        return super().format(record)


def _route_structlog_to_stdlib(renderer: Any) -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger.

    Until :func:`configure_logging` runs, structlog events are routed through
    stdlib logging so that they obey the host application's levels.

    Args:
        name: Optional logger name

    Returns:
        A structured logger
    """
    if not structlog.is_configured():
        _route_structlog_to_stdlib(_structlog_renderer(LogFormat.PLAIN))
    return structlog.get_logger(name)  # type: ignore


def redact(value: str, mask: str = "***") -> str:
    """Redact a sensitive value, keeping two characters on each side."""
    if not value:
        return value
    if len(value) > 6:
        return f"{value[0:2]}{mask}{value[-2:]}"
    return mask


def redact_headers(
    headers: Mapping[str, str] | None,
    redacted: set[str] | None = None,
    mask: str = "***",
) -> dict[str, str]:
    """Return a copy of ``headers`` that is safe to log.

    Args:
        headers: The request or response headers
        redacted: Lower-case header names to mask
        mask: The mask to use

    Returns:
        A new dictionary with sensitive values masked
    """
    if not headers:
        return {}
    if redacted is None:
        redacted = DEFAULT_REDACTED_HEADERS
    result: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in redacted:
            result[key] = redact(str(value), mask)
        else:
            result[key] = value
    return result


class HeaderRedactionFilter(logging.Filter):
    """Logging filter that masks bearer tokens in messages and arguments."""

    def __init__(self, mask: str = "***") -> None:
        super().__init__()
        self.mask = mask

    def _sanitize(self, obj: object) -> object:
        if isinstance(obj, str):
            return BEARER_TOKEN_PATTERN.sub(f"Bearer {self.mask}", obj)
        if isinstance(obj, dict):
            return redact_headers(
                {k: self._sanitize(v) for k, v in obj.items()}, mask=self.mask
            )
        if isinstance(obj, list | tuple):
            return type(obj)(self._sanitize(v) for v in obj)
        return obj

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if isinstance(record.msg, str):
            record.msg = self._sanitize(record.msg)  # type: ignore[assignment]
        if record.args:
            if isinstance(record.args, dict):
                record.args = self._sanitize(record.args)  # type: ignore[assignment]
            elif isinstance(record.args, tuple):
                record.args = tuple(self._sanitize(a) for a in record.args)
        return True


def _structlog_renderer(log_format: LogFormat) -> Any:
    if log_format == LogFormat.JSON:
        return structlog.processors.JSONRenderer()
    if log_format == LogFormat.CONSOLE:
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.KeyValueRenderer(key_order=["event"])


def configure_logging(
    level: int | str = logging.INFO,
    log_format: LogFormat | str = LogFormat.PLAIN,
    log_file: str | None = None,
) -> None:
    """Configure stdlib logging and structlog for the package.

    Args:
        level: Logging level, as a number or a level name
        log_format: Rendering used for structlog events
        log_file: Optional log file path
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    log_format = LogFormat(log_format)

    formatter = EnvironmentTaggingFormatter()
    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(EnvironmentTaggingFilter())
        handler.addFilter(HeaderRedactionFilter())

    logging.basicConfig(level=level, handlers=handlers, force=True)

    _route_structlog_to_stdlib(_structlog_renderer(log_format))


def configure_logging_from_config(config: StreamConfig) -> None:
    """Configure logging from a :class:`StreamConfig`."""
    configure_logging(
        level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
    )
