"""NiceGUI interface - thin visualization layer for chat interactions.

Responsibilities:
    - Message list rendering with streaming updates
    - Model and system prompt controls
    - Clear, export, and import of the conversation

Contains no relay logic. Delegates every exchange to the conversation
client, which talks to the API.
"""
