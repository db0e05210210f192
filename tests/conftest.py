import warnings
from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from chunked_request.core.config.app_config import StreamConfig
from chunked_request.core.domain.environment import EnvironmentCapabilities
from chunked_request.core.services.chunked_request_service import (
    ChunkedRequestService,
)
from chunked_request.core.transport.selector import TransportSelector

from tests.fixtures.ndjson_server import NdjsonServer

BASE_URL = "http://testserver"


@pytest.fixture
def mock_env_vars(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    env = {
        "CHUNKED_REQUEST_TIMEOUT": "5",
        "CHUNKED_REQUEST_CONNECT_TIMEOUT": "2",
        "CHUNKED_REQUEST_TRANSPORT": "polling-text",
        "CHUNKED_REQUEST_LOG_LEVEL": "debug",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture
def ndjson_server() -> NdjsonServer:
    return NdjsonServer()


@pytest_asyncio.fixture
async def client(ndjson_server: NdjsonServer) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=ndjson_server.transport(), base_url=BASE_URL
    ) as http_client:
        yield http_client


@pytest.fixture
def stream_config() -> StreamConfig:
    return StreamConfig()


@pytest.fixture
def make_service(client: httpx.AsyncClient, stream_config: StreamConfig):
    """Build a service pinned to one capability."""

    def factory(environment: EnvironmentCapabilities) -> ChunkedRequestService:
        selector = TransportSelector(stream_config, environment=environment)
        return ChunkedRequestService(stream_config, client=client, selector=selector)

    return factory


def pytest_configure(config) -> None:  # type: ignore[no-untyped-def]
    warnings.filterwarnings("ignore", category=PendingDeprecationWarning)
    warnings.filterwarnings("ignore", category=ResourceWarning)
