"""NiceGUI chat interface streaming replies through the Nexi relay."""

import logging
import os

import httpx
from nicegui import app, events, ui

from nexi.client.conversation import ConversationClient, Snapshot, is_error_message
from nexi.client.decoder import OpenAIEventDecoder
from nexi.client.history import EXPORT_FILENAME, HistoryFormatError, HistoryStore
from nexi.models.schemas import Message, Role

logger = logging.getLogger(__name__)

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")

MODEL_OPTIONS = ["gpt-4o-mini", "gpt-4o", "gpt-4o-mini-tts"]
DEFAULT_UI_SYSTEM_PROMPT = "You are Nexi, an advanced assistant."

CUSTOM_CSS = """
<style>
    body { background: #f8fafc; }
    .bubble { border-radius: 12px; padding: 0.75rem 1rem; white-space: pre-wrap; }
    .bubble-user { background: #e0f2fe; }
    .bubble-assistant { background: #f1f5f9; }
    .bubble-error { background: #fef2f2; color: #b91c1c; }
    .bubble-system { color: #94a3b8; font-size: 0.75rem; }
</style>
"""


def bubble_class(message: Message) -> str:
    if is_error_message(message):
        return "bubble bubble-error"
    return f"bubble bubble-{message.role.value}"


def row_alignment(message: Message) -> str:
    if message.role == Role.USER:
        return "justify-end"
    if message.role == Role.SYSTEM:
        return "justify-center"
    return "justify-start"


@ui.page("/")
def chat_page() -> None:
    """Main chat page."""
    ui.add_head_html(CUSTOM_CSS)

    store = HistoryStore(app.storage.user)
    http_client = httpx.AsyncClient(
        base_url=API_BASE_URL,
        timeout=httpx.Timeout(None, connect=10.0),
    )
    client = ConversationClient(
        http_client,
        model=MODEL_OPTIONS[0],
        system_prompt=DEFAULT_UI_SYSTEM_PROMPT,
        messages=store.load(),
        decoder_factory=OpenAIEventDecoder,
    )
    store.attach(client)

    messages_container: ui.column
    send_btn: ui.button
    streaming_label: ui.label
    # Content elements of the rendered messages, by message id
    rendered: dict[str, ui.markdown] = {}

    def render_all(snapshot: Snapshot) -> None:
        messages_container.clear()
        rendered.clear()
        with messages_container:
            for message in snapshot:
                with ui.row().classes(f"w-full {row_alignment(message)}"):
                    with ui.element("div").classes(f"max-w-[80%] {bubble_class(message)}"):
                        rendered[message.id] = ui.markdown(message.content)

    def on_snapshot(snapshot: Snapshot) -> None:
        # A streaming chunk only changes the content of known messages
        if list(rendered) == [m.id for m in snapshot]:
            for message in snapshot:
                element = rendered[message.id]
                if element.content != message.content:
                    element.set_content(message.content)
        else:
            render_all(snapshot)
        streaming = client.is_streaming
        streaming_label.set_text(f"Streaming: {'Yes' if streaming else 'No'}")
        send_btn.set_enabled(not streaming)

    async def send_message() -> None:
        text = input_field.value
        if not text.strip():
            return
        input_field.value = ""
        exchange = await client.submit(text)
        if exchange is not None:
            await exchange.wait()
            on_snapshot(client.messages)

    def on_model_change(e: events.ValueChangeEventArguments) -> None:
        client.model = e.value

    def on_prompt_change(e: events.ValueChangeEventArguments) -> None:
        client.system_prompt = e.value or ""

    def export_history() -> None:
        ui.download.content(client.export(), EXPORT_FILENAME, "application/json")

    async def import_history(e: events.UploadEventArguments) -> None:
        try:
            client.import_(await e.file.read())
        except HistoryFormatError as err:
            logger.warning(f"Rejected history import: {err}")
            ui.notify("Not a Nexi history file", type="negative")
            return
        ui.notify("History imported", type="positive")

    with ui.column().classes("w-full max-w-3xl mx-auto p-6 gap-4"):
        ui.label("Nexi - Advanced Chatbot").classes("text-3xl font-bold")
        ui.label("Replies stream from the configured provider through the relay.").classes(
            "text-sm text-slate-600"
        )

        with ui.row().classes("w-full gap-2 items-center"):
            ui.select(MODEL_OPTIONS, value=client.model, on_change=on_model_change)
            ui.button("Clear", on_click=client.clear).props("outline")
            ui.button("Export", on_click=export_history).props("outline")
            ui.upload(label="Import", auto_upload=True, on_upload=import_history).props(
                "accept=.json flat bordered"
            ).classes("max-w-xs")

        ui.input("System prompt", value=client.system_prompt, on_change=on_prompt_change).classes(
            "w-full"
        )

        with ui.scroll_area().classes("w-full h-[60vh] bg-white rounded-lg shadow"):
            messages_container = ui.column().classes("w-full p-4 gap-3")

        with ui.row().classes("w-full gap-2 items-center"):
            input_field = (
                ui.input(placeholder="Ask Nexi...")
                .classes("flex-grow")
                .on("keydown.enter", send_message)
            )
            send_btn = ui.button("Send", on_click=send_message)

        streaming_label = ui.label("Streaming: No").classes("text-xs text-slate-500")

    render_all(client.messages)
    client.subscribe(on_snapshot)

    async def teardown() -> None:
        await client.aclose()
        await http_client.aclose()

    ui.context.client.on_disconnect(teardown)


def main() -> None:
    ui.run(
        title="Nexi",
        port=int(os.getenv("UI_PORT", "8080")),
        reload=False,
        storage_secret=os.getenv("NICEGUI_STORAGE_SECRET", "nexi-chatbot-secret"),
    )


if __name__ == "__main__":
    main()
