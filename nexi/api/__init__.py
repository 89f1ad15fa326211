"""FastAPI endpoints for the Nexi relay.

HTTP and streaming routes with async request handling.

Endpoints:
    - GET /health: Service health and upstream configuration status
    - POST /api/chat: Streamed chat completion relay
"""

from nexi.api.app import app, create_app

__all__ = ["app", "create_app"]
