"""Upstream dispatch for the streaming relay.

One inbound call maps to one outbound call. The relay never parses the
provider's stream framing: it opens the upstream request, hands back the
raw byte stream, and leaves interpretation to the client.

Responsibilities:
    - Configuration gate (no upstream call without a credential)
    - Admission guard keyed by caller identity
    - Upstream message construction (system prompt first)
    - Verbatim forwarding of upstream rejections
"""

import logging
from collections.abc import AsyncGenerator

import httpx

from nexi.config import RelayConfig, get_relay_config
from nexi.models.schemas import ChatRequest, Role
from nexi.relay.admission import AdmissionPolicy, policy_from_config
from nexi.relay.errors import (
    AdmissionDeniedError,
    ConfigurationMissingError,
    TransportAbortedError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


def build_upstream_messages(request: ChatRequest) -> list[dict[str, str]]:
    """Build the provider message array for a chat request.

    The system prompt becomes the first message and is omitted entirely
    when empty. Caller messages follow in their original order.

    Args:
        request: The validated relay request.

    Returns:
        List of ``{"role", "content"}`` dicts.
    """
    built: list[dict[str, str]] = []
    if request.system_prompt:
        built.append({"role": Role.SYSTEM.value, "content": request.system_prompt})
    built.extend({"role": m.role.value, "content": m.content} for m in request.messages)
    return built


def build_upstream_payload(request: ChatRequest, config: RelayConfig) -> dict:
    """Build the streamed completion request body."""
    return {
        "model": request.model or config.default_model,
        "messages": build_upstream_messages(request),
        "stream": True,
        "max_tokens": config.max_tokens,
    }


class UpstreamStream:
    """An open upstream response whose body is relayed chunk by chunk."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def closed(self) -> bool:
        return self._closed

    async def chunks(self) -> AsyncGenerator[bytes]:
        """Yield upstream body chunks in arrival order.

        Raises:
            TransportAbortedError: If the upstream connection breaks mid-stream.
        """
        try:
            async for chunk in self._response.aiter_bytes():
                if chunk:
                    yield chunk
        except (httpx.TransportError, httpx.StreamError) as e:
            raise TransportAbortedError(f"Upstream stream aborted: {e}") from e

    async def aclose(self) -> None:
        """Close the upstream response. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class RelayService:
    """Stateless relay between a caller and the upstream provider.

    Holds only configuration, the admission policy, and a pooled HTTP
    client; nothing about one exchange survives into the next.
    """

    def __init__(
        self,
        config: RelayConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        policy: AdmissionPolicy | None = None,
    ) -> None:
        """Initialize the relay.

        Args:
            config: Relay configuration. Loads from environment if not provided.
            http_client: Client used for upstream calls. Created lazily if
                not provided, and then owned (closed) by the relay.
            policy: Admission policy. Derived from config if not provided.
        """
        self._config = config or get_relay_config()
        self._client = http_client
        self._owns_client = http_client is None
        self._policy = policy or policy_from_config(self._config)

    @property
    def config(self) -> RelayConfig:
        return self._config

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # No read timeout: a stalled stream ends when the caller leaves.
            timeout = httpx.Timeout(None, connect=self._config.connect_timeout)
            self._client = httpx.AsyncClient(timeout=timeout)
        return self._client

    async def open_exchange(self, request: ChatRequest, identity: str) -> UpstreamStream:
        """Dispatch a streamed completion request upstream.

        Args:
            request: The caller's conversation turn request.
            identity: Caller identity from the admission guard.

        Returns:
            The open upstream stream. The caller must close it.

        Raises:
            ConfigurationMissingError: No upstream credential; nothing was sent.
            AdmissionDeniedError: The admission policy rejected the caller.
            UpstreamUnavailableError: The provider could not be reached.
            UpstreamRejectedError: The provider answered with a non-success status.
        """
        if not self._config.is_configured:
            logger.error("Upstream credential missing; refusing chat request")
            raise ConfigurationMissingError()

        if not self._policy.admit(identity):
            logger.warning(f"Admission denied for caller {identity}")
            raise AdmissionDeniedError(identity)

        payload = build_upstream_payload(request, self._config)
        client = self._get_client()
        upstream_request = client.build_request(
            "POST",
            self._config.completions_url,
            json=payload,
            headers={"Authorization": f"Bearer {self._config.api_key}"},
        )

        logger.info(
            f"Dispatching exchange for {identity}: model={payload['model']}, "
            f"messages={len(payload['messages'])}"
        )

        try:
            response = await client.send(upstream_request, stream=True)
        except httpx.RequestError as e:
            logger.warning(f"Upstream unreachable: {e}")
            raise UpstreamUnavailableError(f"Upstream request failed: {e}") from e

        if response.is_success:
            return UpstreamStream(response)

        try:
            body = await response.aread()
        finally:
            await response.aclose()

        logger.warning(f"Upstream rejected exchange for {identity} with status {response.status_code}")
        raise UpstreamRejectedError(
            response.status_code,
            body,
            response.headers.get("content-type"),
        )

    async def aclose(self) -> None:
        """Release the pooled HTTP client if the relay created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# Module-level singleton instance
_relay_service: RelayService | None = None


def get_relay_service() -> RelayService:
    """Get or create the global relay service.

    Returns:
        The RelayService instance.
    """
    global _relay_service
    if _relay_service is None:
        _relay_service = RelayService()
    return _relay_service


async def close_relay_service() -> None:
    """Close the global relay service, if one was created."""
    global _relay_service
    if _relay_service is not None:
        await _relay_service.aclose()
        _relay_service = None
