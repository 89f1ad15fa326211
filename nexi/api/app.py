"""FastAPI application factory and configuration.

Main application entry point with lifespan management, middleware,
and router registration.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from nexi.api.chat import router as chat_router
from nexi.relay.service import RelayService, close_relay_service, get_relay_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application startup and shutdown lifecycle.

    Checks the upstream credential once at startup and releases the
    pooled upstream client on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application while it runs.
    """
    # Startup
    logger.info("Starting Nexi relay API...")
    if not get_relay_service().config.is_configured:
        logger.warning("OPENAI_API_KEY not configured; chat requests will be refused")
    yield
    # Shutdown
    logger.info("Shutting down Nexi relay API...")
    await close_relay_service()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    application = FastAPI(
        title="Nexi Relay API",
        description=(
            "Streaming relay for chat completions. Forwards a conversation to an "
            "OpenAI-compatible provider and re-streams the provider's bytes to the "
            "caller unmodified."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    application.include_router(chat_router)

    @application.get("/health")
    async def health_check(
        relay: RelayService = Depends(get_relay_service),
    ) -> dict[str, str]:
        """Check service health and upstream configuration."""
        configured = relay.config.is_configured
        return {
            "status": "healthy",
            "service": "nexi-relay",
            "upstream_configured": str(configured).lower(),
        }

    return application


app = create_app()
