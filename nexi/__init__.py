"""Nexi - streaming chat relay and conversation client.

Forwards a conversation to an OpenAI-compatible completion endpoint and
streams the reply back byte-for-byte to the caller.

Components:
    - api: FastAPI application and the streaming relay route
    - relay: Upstream dispatch, admission guard, and error taxonomy
    - client: Conversation client, stream decoders, and history export/import
    - ui: NiceGUI chat page
    - models: Request/response schemas
"""

__version__ = "0.1.0"
