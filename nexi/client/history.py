"""Conversation history export, import, and key/value persistence.

The persisted value, the export document, and the import input all share
one shape: a JSON array of ``{"id", "role", "content"}`` objects.
"""

import logging
from collections.abc import Callable, MutableMapping, Sequence
from typing import TYPE_CHECKING

from pydantic import BaseModel, TypeAdapter, ValidationError

from nexi.models.schemas import Message, Role

if TYPE_CHECKING:
    from nexi.client.conversation import ConversationClient

logger = logging.getLogger(__name__)

HISTORY_KEY = "nexi_history"
EXPORT_FILENAME = "nexi_history.json"
DEFAULT_SYSTEM_PROMPT = "You are Nexi, a helpful, concise assistant."
SYSTEM_MESSAGE_ID = "sys"

_history_adapter = TypeAdapter(list[Message])


class StoredMessage(BaseModel):
    """Persisted form of a Message. Every field is required."""

    id: str
    role: Role
    content: str


_stored_adapter = TypeAdapter(list[StoredMessage])


class HistoryFormatError(ValueError):
    """Raised when an imported history document has the wrong shape."""


def seed_history(system_prompt: str = DEFAULT_SYSTEM_PROMPT) -> tuple[Message, ...]:
    """Return a fresh conversation holding only the system message."""
    return (Message(id=SYSTEM_MESSAGE_ID, role=Role.SYSTEM, content=system_prompt),)


DEFAULT_SEED = seed_history()


def export_history(messages: Sequence[Message]) -> bytes:
    """Serialize messages to a downloadable JSON document.

    Args:
        messages: The ordered conversation.

    Returns:
        UTF-8 encoded, indented JSON array.
    """
    return _history_adapter.dump_json(list(messages), indent=2)


def import_history(blob: bytes | str) -> tuple[Message, ...]:
    """Parse a document produced by export_history.

    Args:
        blob: JSON document (bytes or text).

    Returns:
        The ordered messages.

    Raises:
        HistoryFormatError: If the document is not a valid message array.
    """
    try:
        stored = _stored_adapter.validate_json(blob)
    except ValidationError as e:
        raise HistoryFormatError(f"Invalid history document: {e}") from e
    return tuple(Message(id=m.id, role=m.role, content=m.content) for m in stored)


class HistoryStore:
    """Persists the conversation under a fixed key of a key/value store.

    Works over any mutable mapping: NiceGUI's per-browser storage in the
    UI, a plain dict in tests.
    """

    def __init__(
        self,
        storage: MutableMapping[str, str],
        key: str = HISTORY_KEY,
        seed: Sequence[Message] = DEFAULT_SEED,
    ) -> None:
        self._storage = storage
        self._key = key
        self._seed = tuple(seed)

    def load(self) -> tuple[Message, ...]:
        """Read the stored conversation, falling back to the seed."""
        raw = self._storage.get(self._key)
        if raw is None:
            return self._seed
        try:
            return import_history(raw)
        except HistoryFormatError as e:
            logger.warning(f"Discarding unreadable history under {self._key!r}: {e}")
            return self._seed

    def save(self, messages: Sequence[Message]) -> None:
        self._storage[self._key] = export_history(messages).decode("utf-8")

    def attach(self, client: "ConversationClient") -> Callable[[], None]:
        """Persist every snapshot the client publishes.

        Returns:
            Callable that stops persisting.
        """
        return client.subscribe(self.save)
