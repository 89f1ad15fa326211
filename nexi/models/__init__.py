"""Pydantic models for API requests and responses.

Provides type safety, validation, and automatic OpenAPI documentation.

Models:
    - Message: Message in the visible conversation (with id)
    - ChatMessage: Wire form of a message (role and content)
    - ChatRequest: Incoming relay request payload
    - ErrorResponse: Relay-generated error body
"""

from nexi.models.schemas import (
    ChatMessage,
    ChatRequest,
    ErrorResponse,
    Message,
    Role,
    new_message_id,
)

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ErrorResponse",
    "Message",
    "Role",
    "new_message_id",
]
