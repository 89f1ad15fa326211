"""Main application entry point.

Runs FastAPI (port 8000) with NiceGUI mounted for the chat interface.
Environment variables are loaded from .env file.
"""

import logging
import os
import sys

from dotenv import load_dotenv

# Load environment variables before any other imports that might need them
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


def run_integrated() -> None:
    """Run FastAPI with NiceGUI mounted on the same server.

    FastAPI serves the relay, NiceGUI serves the chat page.
    Both accessible on the same port.
    """
    import uvicorn
    from nicegui import ui

    from nexi.api.app import create_app
    from nexi.ui.chat_page import chat_page  # noqa: F401 - Registers the page

    app = create_app()

    # Mount NiceGUI onto FastAPI
    ui.run_with(
        app,
        title="Nexi",
        storage_secret=os.getenv("NICEGUI_STORAGE_SECRET", "nexi-chatbot-secret"),
    )

    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting integrated server on http://localhost:{port}")
    logger.info(f"Relay endpoint: POST http://localhost:{port}/api/chat")

    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


def run_separate() -> None:
    """Run the relay and the chat page as two processes.

    The relay listens on RELAY_PORT (8000) and the page on UI_PORT (8080).
    The page process gets API_BASE_URL pointing at the relay unless one is
    already set, so the relay can also live on another host. Both run
    without auto-reload; when either exits, the other is terminated.
    """
    import asyncio

    host = os.getenv("HOST", "0.0.0.0")
    relay_port = os.getenv("RELAY_PORT", "8000")
    ui_env = {
        **os.environ,
        "API_BASE_URL": os.getenv("API_BASE_URL", f"http://localhost:{relay_port}"),
        "UI_PORT": os.getenv("UI_PORT", "8080"),
    }

    async def run_servers() -> None:
        logger.info(f"Starting relay on http://{host}:{relay_port}")
        relay_proc = await asyncio.create_subprocess_exec(
            sys.executable, "-m", "uvicorn", "nexi.api.app:app",
            "--host", host, "--port", relay_port,
        )
        logger.info(f"Starting NiceGUI on port {ui_env['UI_PORT']}, relay at {ui_env['API_BASE_URL']}")
        ui_proc = await asyncio.create_subprocess_exec(
            sys.executable, "-m", "nexi.ui.chat_page", env=ui_env
        )

        procs = (relay_proc, ui_proc)
        try:
            await asyncio.wait(
                [asyncio.create_task(proc.wait()) for proc in procs],
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for proc in procs:
                if proc.returncode is None:
                    proc.terminate()
            await asyncio.gather(*(proc.wait() for proc in procs))

    try:
        asyncio.run(run_servers())
    except KeyboardInterrupt:
        logger.info("Shutting down servers...")


def main() -> None:
    """Application entry point.

    Set RUN_MODE=separate to run the relay and NiceGUI on different ports.
    Default is integrated mode (both on one port).
    """
    mode = os.getenv("RUN_MODE", "integrated").lower()

    logger.info(f"Starting Nexi in {mode} mode")

    if mode == "separate":
        run_separate()
    else:
        run_integrated()


if __name__ == "__main__":
    main()
