"""Database base, models and the SQL conversation store."""

from packages.db.base import Base, get_async_engine
from packages.db.store import SqlConversationStore

__all__ = [
    "Base",
    "SqlConversationStore",
    "get_async_engine",
]
