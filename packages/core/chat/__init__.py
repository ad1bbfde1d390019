"""Deep-topic chat for Curiow gems."""

from packages.core.chat.dispatcher import (
    AnswerPayloadError,
    CancellationToken,
    QuestionDispatcher,
    extract_answer,
    extract_follow_ups,
)
from packages.core.chat.events import ChatEvent, ChatEventType, EventBus
from packages.core.chat.identity import (
    JsonFileStorage,
    MemoryStorage,
    SessionIdentityManager,
)
from packages.core.chat.models import (
    ConversationSession,
    ConversationTurn,
    ElementContext,
    HistoryEntry,
    QuestionOrigin,
    SuggestionItem,
    TurnStateError,
    TurnStatus,
)
from packages.core.chat.panel import ChatPanel, PanelState
from packages.core.chat.store import (
    ConversationStore,
    ConversationStoreError,
    HistoryRecordingStore,
    InMemoryConversationStore,
    SessionNotFoundError,
    SessionPermissionError,
    normalize_history_entry,
)
from packages.core.chat.suggestions import SuggestionPools, SuggestionView

__all__ = [
    # Models
    "ConversationSession",
    "ConversationTurn",
    "ElementContext",
    "HistoryEntry",
    "QuestionOrigin",
    "SuggestionItem",
    "TurnStateError",
    "TurnStatus",
    # Events
    "ChatEvent",
    "ChatEventType",
    "EventBus",
    # Identity
    "JsonFileStorage",
    "MemoryStorage",
    "SessionIdentityManager",
    # Store
    "ConversationStore",
    "ConversationStoreError",
    "HistoryRecordingStore",
    "InMemoryConversationStore",
    "SessionNotFoundError",
    "SessionPermissionError",
    "normalize_history_entry",
    # Dispatch
    "AnswerPayloadError",
    "CancellationToken",
    "QuestionDispatcher",
    "extract_answer",
    "extract_follow_ups",
    # Panel
    "ChatPanel",
    "PanelState",
    "SuggestionPools",
    "SuggestionView",
]
