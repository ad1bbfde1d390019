"""ORM model exports."""

from packages.db.models.chat_history import ChatHistoryEntry
from packages.db.models.chat_sessions import ChatSession

__all__ = [
    "ChatHistoryEntry",
    "ChatSession",
]
