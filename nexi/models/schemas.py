import itertools
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

_id_counter = itertools.count()


class Role(str, Enum):
    """Speaker of a conversation message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def new_message_id(prefix: str = "m") -> str:
    """Generate a unique, roughly time-ordered message identifier."""
    return f"{prefix}_{time.time_ns():x}_{next(_id_counter)}"


class Message(BaseModel):
    """A message in the visible conversation.

    Instances are frozen; streaming updates produce a new Message with the
    same id via ``model_copy``.

    Attributes:
        id: Unique identifier, stable across content updates.
        role: The speaker (system, user, or assistant).
        content: The message text.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_message_id)
    role: Role
    content: str = ""


class ChatMessage(BaseModel):
    """Wire form of a message sent to the relay and the provider.

    Attributes:
        role: The speaker identifier (user, assistant, or system).
        content: The message text.
    """

    role: Role
    content: str


class ChatRequest(BaseModel):
    """Request payload for the streaming relay endpoint.

    Attributes:
        model: Provider model identifier.
        system_prompt: Prepended as a system message when non-empty
            (``systemPrompt`` on the wire).
        messages: Conversation turns in order, without the system prompt.
    """

    model_config = ConfigDict(populate_by_name=True)

    model: str | None = None
    system_prompt: str = Field(default="", alias="systemPrompt")
    messages: list[ChatMessage] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """JSON body of every error generated by the relay itself.

    Attributes:
        error: Human-readable cause.
    """

    error: str
