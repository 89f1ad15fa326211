"""Stream decoders turning relayed bytes into text deltas.

The relay forwards the provider's bytes untouched, so interpreting the
provider's event syntax happens here, on the client side.
"""

import codecs
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class StreamEventError(Exception):
    """Raised when the provider reports an error inside a successful stream."""


class StreamDecoder(Protocol):
    """Incremental decoder fed one byte chunk at a time.

    ``error`` is set once the stream has reported a failure; nothing after
    it is decoded.
    """

    error: str | None

    def feed(self, chunk: bytes) -> list[str]: ...

    def flush(self) -> list[str]: ...


class RawTextDecoder:
    """Decodes each chunk as UTF-8 text and passes it through as-is.

    Multi-byte characters split across chunk boundaries are held back until
    the rest of the sequence arrives.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.error: str | None = None

    def feed(self, chunk: bytes) -> list[str]:
        text = self._decoder.decode(chunk)
        return [text] if text else []

    def flush(self) -> list[str]:
        text = self._decoder.decode(b"", final=True)
        return [text] if text else []


class OpenAIEventDecoder:
    """Extracts content deltas from an OpenAI-style event stream.

    Handles ``data: {...}`` lines split across chunks, skips comments,
    blank lines and events without content, and stops at ``data: [DONE]``
    or at an ``{"error": ...}`` event.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False
        self.error: str | None = None

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._parse_lines(lines)

    def flush(self) -> list[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        lines, self._buffer = [self._buffer], ""
        return self._parse_lines(lines)

    def _parse_lines(self, lines: list[str]) -> list[str]:
        deltas: list[str] = []
        for raw_line in lines:
            if self.done:
                break
            line = raw_line.rstrip("\r")
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == DONE_SENTINEL:
                self.done = True
                continue
            event = _parse_event(data)
            if event is None:
                continue
            if "error" in event:
                self.error = _error_detail(event["error"])
                self.done = True
                continue
            if content := _extract_content(event):
                deltas.append(content)
        return deltas


def _parse_event(data: str) -> dict[str, Any] | None:
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        logger.debug(f"Skipping non-JSON event data: {data[:80]!r}")
        return None
    return event if isinstance(event, dict) else None


def _error_detail(error: Any) -> str:
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return str(error)


def _extract_content(event: dict[str, Any]) -> str | None:
    try:
        content = event["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) else None


async def iter_deltas(
    chunks: AsyncIterable[bytes],
    decoder: StreamDecoder,
) -> AsyncGenerator[str]:
    """Decode a byte stream into text deltas, in order.

    Args:
        chunks: Byte chunks as they arrive.
        decoder: Decoder holding state across chunks.

    Yields:
        Non-empty text deltas; the decoder is flushed at end of stream.

    Raises:
        StreamEventError: After the deltas preceding an in-stream error event.
    """
    async for chunk in chunks:
        for delta in decoder.feed(chunk):
            yield delta
        if decoder.error is not None:
            raise StreamEventError(decoder.error)
    for delta in decoder.flush():
        yield delta
    if decoder.error is not None:
        raise StreamEventError(decoder.error)
