"""Pytest fixtures and shared test configuration.

Provides reusable fixtures for unit and integration tests.

Fixtures:
    - relay_config: Relay configuration with a test credential
    - provider: Fake upstream completion endpoint recording every call
    - upstream_client: HTTPX client routed to the fake provider
    - relay: RelayService wired to the fake provider
    - async_client: HTTPX client for API testing with the test relay injected
"""

import json
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from nexi.api import app
from nexi.config import RelayConfig
from nexi.relay.service import RelayService, get_relay_service

UPSTREAM_BASE_URL = "https://upstream.test/v1"


async def stream_chunks(
    chunks: list[bytes], error: Exception | None = None
) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


class FakeProvider:
    """Stands in for the upstream completion endpoint.

    Streams ``chunks`` with status 200, or answers ``status_code`` with
    ``body`` when the status is not 200, or raises ``error``. With
    ``stream_error`` set, the body breaks with that error after the chunks.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.chunks: list[bytes] = [b"Hi", b" there", b"!"]
        self.status_code = 200
        self.body = b""
        self.content_type = "application/json"
        self.error: Exception | None = None
        self.stream_error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.status_code != 200:
            return httpx.Response(
                self.status_code,
                content=self.body,
                headers={"content-type": self.content_type},
            )
        return httpx.Response(
            200,
            content=stream_chunks(self.chunks, self.stream_error),
            headers={"content-type": "text/event-stream"},
        )

    @property
    def last_payload(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def relay_config() -> RelayConfig:
    """Relay configuration pointing at the fake provider."""
    return RelayConfig(
        api_key="sk-test-key",
        base_url=UPSTREAM_BASE_URL,
        default_model="gpt-4o-mini",
        max_tokens=800,
        rate_limit_per_minute=0,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def upstream_client(provider: FakeProvider) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=httpx.MockTransport(provider)) as client:
        yield client


@pytest.fixture
def relay(relay_config: RelayConfig, upstream_client: AsyncClient) -> RelayService:
    return RelayService(config=relay_config, http_client=upstream_client)


@asynccontextmanager
async def serve(relay: RelayService) -> AsyncIterator[AsyncClient]:
    """Serve the app in-process with the given relay injected."""
    app.dependency_overrides[get_relay_service] = lambda: relay
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.pop(get_relay_service, None)


@pytest.fixture
async def async_client(relay: RelayService) -> AsyncGenerator[AsyncClient]:
    """Create async HTTP client for API testing.

    Yields:
        AsyncClient talking to the app in-process, with the test relay injected.
    """
    async with serve(relay) as client:
        yield client
