"""Unit tests for RelayService and upstream stream handling."""

import asyncio

import httpx
import pytest
import pytest_check as check

from nexi.api.chat import RelayStreamingResponse
from nexi.config import RelayConfig
from nexi.models.schemas import ChatMessage, ChatRequest, Role
from nexi.relay.errors import (
    AdmissionDeniedError,
    ConfigurationMissingError,
    TransportAbortedError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from nexi.relay.service import (
    RelayService,
    UpstreamStream,
    build_upstream_messages,
    build_upstream_payload,
)
from tests.conftest import FakeProvider


class DenyAllPolicy:
    def admit(self, identity: str) -> bool:
        return False


def make_request(system_prompt: str = "Be brief.") -> ChatRequest:
    return ChatRequest(
        model="gpt-4o",
        system_prompt=system_prompt,
        messages=[
            ChatMessage(role=Role.USER, content="Hello"),
            ChatMessage(role=Role.ASSISTANT, content="Hi"),
            ChatMessage(role=Role.USER, content="How are you?"),
        ],
    )


class TestBuildUpstreamMessages:
    """Tests for upstream message construction."""

    def test_prepends_system_prompt(self) -> None:
        messages = build_upstream_messages(make_request())

        assert messages == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hi"},
            {"role": "user", "content": "How are you?"},
        ]

    def test_omits_empty_system_prompt(self) -> None:
        messages = build_upstream_messages(make_request(system_prompt=""))

        check.equal(len(messages), 3)
        check.equal(messages[0]["role"], "user")

    def test_payload_streams_with_token_cap(self) -> None:
        config = RelayConfig(api_key="sk-test", max_tokens=800)

        payload = build_upstream_payload(make_request(), config)

        check.equal(payload["model"], "gpt-4o")
        check.is_true(payload["stream"])
        check.equal(payload["max_tokens"], 800)

    def test_payload_uses_default_model(self) -> None:
        config = RelayConfig(api_key="sk-test", default_model="gpt-4o-mini")

        payload = build_upstream_payload(ChatRequest(), config)

        assert payload["model"] == "gpt-4o-mini"


class TestOpenExchange:
    """Tests for RelayService.open_exchange."""

    async def test_missing_credential_makes_no_upstream_call(
        self, upstream_client: httpx.AsyncClient, provider: FakeProvider
    ) -> None:
        relay = RelayService(config=RelayConfig(api_key=""), http_client=upstream_client)

        with pytest.raises(ConfigurationMissingError, match="OPENAI_API_KEY not configured"):
            await relay.open_exchange(make_request(), "10.0.0.1")

        assert provider.requests == []

    async def test_denied_caller_makes_no_upstream_call(
        self,
        relay_config: RelayConfig,
        upstream_client: httpx.AsyncClient,
        provider: FakeProvider,
    ) -> None:
        relay = RelayService(relay_config, http_client=upstream_client, policy=DenyAllPolicy())

        with pytest.raises(AdmissionDeniedError):
            await relay.open_exchange(make_request(), "10.0.0.1")

        assert provider.requests == []

    async def test_sends_bearer_credential_and_payload(
        self, relay: RelayService, provider: FakeProvider
    ) -> None:
        upstream = await relay.open_exchange(make_request(), "10.0.0.1")
        await upstream.aclose()

        request = provider.requests[0]
        check.equal(str(request.url), "https://upstream.test/v1/chat/completions")
        check.equal(request.headers["authorization"], "Bearer sk-test-key")
        check.equal(provider.last_payload["messages"][0], {"role": "system", "content": "Be brief."})
        check.is_true(provider.last_payload["stream"])

    async def test_streams_chunks_in_order(self, relay: RelayService, provider: FakeProvider) -> None:
        provider.chunks = [b"C1", b"C2", b"C3"]

        upstream = await relay.open_exchange(make_request(), "10.0.0.1")
        try:
            chunks = [c async for c in upstream.chunks()]
        finally:
            await upstream.aclose()

        assert b"".join(chunks) == b"C1C2C3"

    async def test_rejection_carries_status_and_body(
        self, relay: RelayService, provider: FakeProvider
    ) -> None:
        provider.status_code = 429
        provider.body = b'{"error":"rate_limited"}'

        with pytest.raises(UpstreamRejectedError) as exc_info:
            await relay.open_exchange(make_request(), "10.0.0.1")

        check.equal(exc_info.value.status_code, 429)
        check.equal(exc_info.value.body, b'{"error":"rate_limited"}')
        check.equal(exc_info.value.content_type, "application/json")

    async def test_unreachable_provider(self, relay: RelayService, provider: FakeProvider) -> None:
        provider.error = httpx.ConnectError("connection refused")

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await relay.open_exchange(make_request(), "10.0.0.1")

        assert exc_info.value.status_code == 502


async def _open(handler) -> UpstreamStream:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    response = await client.send(client.build_request("POST", "https://upstream.test/"), stream=True)
    return UpstreamStream(response)


class TestUpstreamStream:
    """Tests for UpstreamStream."""

    async def test_aclose_is_idempotent(self) -> None:
        upstream = await _open(lambda request: httpx.Response(200, content=b"data"))

        await upstream.aclose()
        await upstream.aclose()

        assert upstream.closed

    async def test_broken_stream_raises_transport_aborted(self) -> None:
        async def broken():
            yield b"partial"
            raise httpx.ReadError("connection reset")

        upstream = await _open(lambda request: httpx.Response(200, content=broken()))

        received = []
        with pytest.raises(TransportAbortedError):
            async for chunk in upstream.chunks():
                received.append(chunk)

        assert received == [b"partial"]


class TestCallerDisconnect:
    """Tests for aborting the upstream read when the caller leaves."""

    async def test_disconnect_closes_upstream(self) -> None:
        never = asyncio.Event()
        yielded = asyncio.Event()

        async def endless():
            yield b"first"
            yielded.set()
            await never.wait()
            yield b"never sent"

        upstream = await _open(lambda request: httpx.Response(200, content=endless()))
        response = RelayStreamingResponse(upstream, "10.0.0.1")
        sent: list[dict] = []

        async def receive() -> dict:
            await yielded.wait()
            return {"type": "http.disconnect"}

        async def send(message: dict) -> None:
            sent.append(message)

        await asyncio.wait_for(response({"type": "http"}, receive, send), timeout=5)

        bodies = [m.get("body") for m in sent if m["type"] == "http.response.body"]
        check.is_true(upstream.closed)
        check.is_in(b"first", bodies)
        check.is_not_in(b"never sent", bodies)

    async def test_upstream_abort_leaves_body_unterminated(self) -> None:
        """A mid-stream upstream failure propagates instead of ending the body cleanly."""

        async def broken():
            yield b"partial"
            raise httpx.ReadError("connection reset")

        upstream = await _open(lambda request: httpx.Response(200, content=broken()))
        response = RelayStreamingResponse(upstream, "10.0.0.1")
        sent: list[dict] = []
        caller_gone = asyncio.Event()

        async def receive() -> dict:
            await caller_gone.wait()
            return {"type": "http.disconnect"}

        async def send(message: dict) -> None:
            sent.append(message)

        with pytest.raises(TransportAbortedError):
            await asyncio.wait_for(response({"type": "http"}, receive, send), timeout=5)

        bodies = [m for m in sent if m["type"] == "http.response.body"]
        check.is_true(upstream.closed)
        check.equal([m["body"] for m in bodies], [b"partial"])
        check.is_true(all(m.get("more_body") for m in bodies))
