"""Database session management."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from packages.db import SqlConversationStore, get_async_engine

settings = get_settings()

# Async engine for FastAPI endpoints
async_engine = get_async_engine(
    settings.database_url,
    echo=settings.environment == "development",
    pool_pre_ping=True,
)

# Async session factory
async_session_factory = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

conversation_store = SqlConversationStore(async_session_factory)


def get_conversation_store() -> SqlConversationStore:
    """Dependency that returns the SQL conversation store."""
    return conversation_store
