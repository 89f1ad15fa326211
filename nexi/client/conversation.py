"""Conversation client: one streaming exchange per user turn.

Owns the ordered message list and publishes it as immutable snapshots.
At most one exchange may write to the list at a time: submitting a new
turn, clearing, importing, or cancelling invalidates the previous
exchange, and a stale exchange never touches the list again.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from enum import Enum

import httpx

from nexi.client.decoder import RawTextDecoder, StreamDecoder, StreamEventError, iter_deltas
from nexi.client.history import (
    DEFAULT_SYSTEM_PROMPT,
    export_history,
    import_history,
    seed_history,
)
from nexi.models.schemas import ChatMessage, ChatRequest, Message, Role, new_message_id

logger = logging.getLogger(__name__)

ERROR_MARKER = "⚠️ Error: "
DEFAULT_ENDPOINT = "/api/chat"
DEFAULT_MODEL = "gpt-4o-mini"

Snapshot = tuple[Message, ...]
Listener = Callable[[Snapshot], None]


def is_error_message(message: Message) -> bool:
    """Whether a message reports a transport failure rather than a reply."""
    return message.role == Role.ASSISTANT and message.content.startswith(ERROR_MARKER)


class ExchangeState(str, Enum):
    """Lifecycle of one exchange."""

    PENDING = "pending"
    STREAMING = "streaming"
    CLOSED = "closed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Exchange:
    """Handle on one in-flight request/response cycle."""

    def __init__(self, generation: int) -> None:
        self.generation = generation
        self.state = ExchangeState.PENDING
        self.assistant_id: str | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self.state in (ExchangeState.PENDING, ExchangeState.STREAMING)

    async def wait(self) -> None:
        """Wait until the exchange finishes, however it ends. Never raises."""
        if self._task is not None:
            await asyncio.wait({self._task})

    def _abort(self) -> None:
        self.state = ExchangeState.CANCELLED
        if self._task is not None and not self._task.done():
            self._task.cancel()


class ConversationClient:
    """Streams assistant replies from the relay into an ordered message list.

    Args:
        http_client: Client pointed at the relay (base_url set).
        endpoint: Relay path.
        model: Model for the next submit.
        system_prompt: System prompt for the next submit.
        messages: Initial conversation; a seeded system message if omitted.
        decoder_factory: Builds a fresh stream decoder per exchange.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        model: str = DEFAULT_MODEL,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        messages: Sequence[Message] | None = None,
        decoder_factory: Callable[[], StreamDecoder] = RawTextDecoder,
    ) -> None:
        self._http = http_client
        self._endpoint = endpoint
        self.model = model
        self.system_prompt = system_prompt
        self._decoder_factory = decoder_factory
        self._messages: Snapshot = (
            tuple(messages) if messages is not None else seed_history(system_prompt)
        )
        self._listeners: list[Listener] = []
        self._generation = 0
        self._current: Exchange | None = None

    @property
    def messages(self) -> Snapshot:
        return self._messages

    @property
    def current_exchange(self) -> Exchange | None:
        return self._current

    @property
    def is_streaming(self) -> bool:
        return self._current is not None and self._current.active

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with every new snapshot.

        Returns:
            Callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, messages: Iterable[Message]) -> None:
        self._messages = tuple(messages)
        for listener in list(self._listeners):
            listener(self._messages)

    def _is_live(self, exchange: Exchange) -> bool:
        return self._current is exchange and exchange.active

    async def submit(self, text: str) -> Exchange | None:
        """Send a user turn and start streaming the reply.

        Args:
            text: What the user typed. Blank input is ignored.

        Returns:
            The new exchange, or None if nothing was sent.
        """
        if not text.strip():
            return None

        self._publish((*self._messages, Message(id=new_message_id("u"), role=Role.USER, content=text)))
        self.cancel()

        self._generation += 1
        exchange = Exchange(self._generation)
        self._current = exchange
        request = self.build_request()
        exchange._task = asyncio.create_task(self._run(exchange, request))
        return exchange

    def build_request(self) -> ChatRequest:
        """Build the turn request from the current conversation.

        System messages and transport error notices are not sent.
        """
        return ChatRequest(
            model=self.model,
            system_prompt=self.system_prompt,
            messages=[
                ChatMessage(role=m.role, content=m.content)
                for m in self._messages
                if m.role != Role.SYSTEM and not is_error_message(m)
            ],
        )

    async def _run(self, exchange: Exchange, request: ChatRequest) -> None:
        try:
            async with self._http.stream(
                "POST",
                self._endpoint,
                json=request.model_dump(mode="json", by_alias=True),
                headers={"Accept": "text/event-stream"},
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    self._fail(exchange, f"HTTP {response.status_code}: {body}")
                    return

                if not self._is_live(exchange):
                    return
                placeholder = Message(id=new_message_id("a"), role=Role.ASSISTANT, content="")
                exchange.assistant_id = placeholder.id
                exchange.state = ExchangeState.STREAMING
                self._publish((*self._messages, placeholder))

                content = ""
                async for delta in iter_deltas(response.aiter_bytes(), self._decoder_factory()):
                    if not self._is_live(exchange):
                        return
                    content += delta
                    self._replace_content(placeholder.id, content)

            if self._is_live(exchange):
                exchange.state = ExchangeState.CLOSED
                self._current = None
        except asyncio.CancelledError:
            logger.debug(f"Exchange {exchange.generation} cancelled")
            exchange.state = ExchangeState.CANCELLED
            raise
        except StreamEventError as e:
            self._fail(exchange, str(e))
        except (httpx.HTTPError, httpx.StreamError) as e:
            self._fail(exchange, str(e) or type(e).__name__)
        except Exception as e:
            logger.exception(f"Exchange {exchange.generation} failed")
            self._fail(exchange, str(e) or type(e).__name__)

    def _replace_content(self, message_id: str, content: str) -> None:
        self._publish(
            m.model_copy(update={"content": content}) if m.id == message_id else m
            for m in self._messages
        )

    def _drop_empty_placeholder(self, exchange: Exchange) -> None:
        if exchange.assistant_id is None:
            return
        remaining = [
            m for m in self._messages if not (m.id == exchange.assistant_id and not m.content)
        ]
        if len(remaining) != len(self._messages):
            self._publish(remaining)

    def _fail(self, exchange: Exchange, detail: str) -> None:
        if not self._is_live(exchange):
            return
        logger.warning(f"Exchange {exchange.generation} failed: {detail}")
        exchange.state = ExchangeState.FAILED
        self._current = None
        self._drop_empty_placeholder(exchange)
        error = Message(id=new_message_id("err"), role=Role.ASSISTANT, content=ERROR_MARKER + detail)
        self._publish((*self._messages, error))

    def cancel(self) -> None:
        """Abort the in-flight exchange, if any. Never raises.

        Content already streamed stays in place; an empty placeholder is
        removed.
        """
        exchange = self._current
        if exchange is None:
            return
        self._current = None
        if exchange.active:
            exchange._abort()
            self._drop_empty_placeholder(exchange)

    def clear(self) -> None:
        """Reset to a single system message seeded from the system prompt."""
        self.cancel()
        self._publish(seed_history(self.system_prompt))

    def export(self) -> bytes:
        """Serialize the conversation as a JSON document."""
        return export_history(self._messages)

    def import_(self, blob: bytes | str) -> None:
        """Replace the conversation with an exported document.

        Raises:
            HistoryFormatError: If the document is invalid; the list is unchanged.
        """
        messages = import_history(blob)
        self.cancel()
        self._publish(messages)

    def replace_messages(self, messages: Sequence[Message]) -> None:
        """Replace the conversation wholesale, cancelling any exchange."""
        self.cancel()
        self._publish(messages)

    async def aclose(self) -> None:
        """Cancel the in-flight exchange and wait for it to wind down."""
        exchange = self._current
        self.cancel()
        if exchange is not None:
            await exchange.wait()
