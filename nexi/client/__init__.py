"""Conversation client for the Nexi relay.

Turns typed text into relay requests, keeps exactly one exchange writable
at a time, and materializes the assistant's reply as it streams in.

Responsibilities:
    - Ordered message list published as immutable snapshots
    - Streaming consumption with pluggable decoders
    - Cancellation of superseded exchanges
    - History export/import and key/value persistence
"""

from nexi.client.conversation import (
    ERROR_MARKER,
    ConversationClient,
    Exchange,
    ExchangeState,
    is_error_message,
)
from nexi.client.decoder import (
    OpenAIEventDecoder,
    RawTextDecoder,
    StreamEventError,
    iter_deltas,
)
from nexi.client.history import (
    DEFAULT_SEED,
    EXPORT_FILENAME,
    HISTORY_KEY,
    HistoryFormatError,
    HistoryStore,
    export_history,
    import_history,
)

__all__ = [
    "DEFAULT_SEED",
    "ERROR_MARKER",
    "EXPORT_FILENAME",
    "HISTORY_KEY",
    "ConversationClient",
    "Exchange",
    "ExchangeState",
    "HistoryFormatError",
    "HistoryStore",
    "OpenAIEventDecoder",
    "RawTextDecoder",
    "StreamEventError",
    "export_history",
    "import_history",
    "is_error_message",
    "iter_deltas",
]
