"""Streaming chat relay endpoint.

POST /api/chat forwards the conversation upstream and re-streams the
provider's bytes unmodified. Other verbs on the path answer 405 through
FastAPI routing, before any upstream work.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Body, Depends, Request, status
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from nexi.models.schemas import ChatRequest, ErrorResponse
from nexi.relay.admission import caller_identity
from nexi.relay.errors import RelayError, TransportAbortedError, UpstreamRejectedError
from nexi.relay.service import RelayService, UpstreamStream, get_relay_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
    )


async def relay_body(upstream: UpstreamStream, identity: str) -> AsyncGenerator[bytes]:
    """Copy upstream chunks to the caller in arrival order.

    Args:
        upstream: The open upstream stream.
        identity: Caller identity, for logging.

    Yields:
        Raw upstream byte chunks.

    Raises:
        TransportAbortedError: If the upstream breaks mid-stream. Headers are
            already sent, so the error propagates and the server drops the
            connection without terminating the body.
    """
    try:
        async for chunk in upstream.chunks():
            yield chunk
    except TransportAbortedError as e:
        logger.warning(f"Exchange for {identity} aborted upstream: {e}")
        raise
    except Exception:
        logger.exception(f"Relay stream for {identity} failed")
        raise


class RelayStreamingResponse(StreamingResponse):
    """Event-stream response tied to one upstream stream.

    Watches for the caller disconnecting while bytes are still flowing and
    closes the upstream exactly once however the exchange ends.
    """

    def __init__(self, upstream: UpstreamStream, identity: str) -> None:
        super().__init__(
            relay_body(upstream, identity),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )
        self._upstream = upstream
        self._identity = identity

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        stream_task = asyncio.create_task(self.stream_response(send))
        disconnect_task = asyncio.create_task(self.listen_for_disconnect(receive))
        try:
            await asyncio.wait({stream_task, disconnect_task}, return_when=asyncio.FIRST_COMPLETED)
            if not stream_task.done():
                logger.info(f"Caller {self._identity} disconnected, aborting upstream read")
        finally:
            try:
                stream_task.cancel()
                disconnect_task.cancel()
                await asyncio.wait({stream_task, disconnect_task})
            finally:
                await self._upstream.aclose()

        if stream_task.cancelled():
            return
        exc = stream_task.exception()
        if isinstance(exc, OSError):
            logger.info(f"Caller {self._identity} went away mid-stream: {exc}")
        elif exc is not None:
            raise exc


@router.post(
    "/chat",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"text/event-stream": {}}, "description": "Raw provider stream"},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def chat(
    request: Request,
    payload: ChatRequest | None = Body(default=None),
    relay: RelayService = Depends(get_relay_service),
) -> Response:
    """Relay a conversation turn to the provider as a stream.

    Args:
        request: The inbound request (for caller identity).
        payload: Model, system prompt, and ordered conversation messages.
            An empty body counts as a request with every field defaulted.
        relay: The relay service.

    Returns:
        A text/event-stream response carrying the provider's bytes, the
        provider's own status and body when it rejects the request, or a
        JSON error generated by the relay.
    """
    peer_host = request.client.host if request.client else None
    identity = caller_identity(request.headers, peer_host)

    try:
        upstream = await relay.open_exchange(payload or ChatRequest(), identity)
    except UpstreamRejectedError as e:
        return Response(content=e.body, status_code=e.status_code, media_type=e.content_type)
    except RelayError as e:
        return _error_response(e.status_code, e.message)
    except Exception as e:
        logger.exception(f"Unexpected relay failure for {identity}")
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))

    return RelayStreamingResponse(upstream, identity)
