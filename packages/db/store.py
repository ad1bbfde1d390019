"""SQLAlchemy-backed conversation store."""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from packages.core.chat.models import (
    DEFAULT_SESSION_TITLE,
    ConversationSession,
    ConversationTurn,
    HistoryEntry,
    derive_title,
    utcnow,
)
from packages.core.chat.store import (
    HistoryRecordingStore,
    SessionNotFoundError,
    SessionPermissionError,
    check_gem,
    coerce_timestamp,
    normalize_history_entry,
)
from packages.db.models import ChatHistoryEntry, ChatSession

logger = logging.getLogger(__name__)


class SqlConversationStore(HistoryRecordingStore):
    """
    Conversation store on SQLAlchemy async sessions.

    Each operation runs in its own session and commits before
    returning.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """
        Initialize the store.

        Args:
            session_factory: Factory producing AsyncSession objects.
        """
        self._session_factory = session_factory

    async def create_session(self, session_id: str, gem_id: str, user_id: str) -> str:
        async with self._session_factory() as session:
            existing = await session.get(ChatSession, session_id)
            if existing is not None:
                if existing.user_id != user_id:
                    raise SessionPermissionError(
                        f"Session {session_id} belongs to another user"
                    )
                return session_id

            now = utcnow()
            session.add(
                ChatSession(
                    id=session_id,
                    gem_id=gem_id,
                    user_id=user_id,
                    created_at=now,
                    modified_at=now,
                )
            )
            await session.commit()

        logger.info(f"Created chat session {session_id} for gem {gem_id}")
        return session_id

    async def touch_session(self, session_id: str, user_id: str | None = None) -> None:
        async with self._session_factory() as session:
            if user_id is None:
                record = await session.get(ChatSession, session_id)
                if record is None:
                    raise SessionNotFoundError(f"Session {session_id} not found")
            else:
                record = await self._get_owned(session, session_id, user_id)
            record.modified_at = utcnow()
            await session.commit()

    async def fetch_history(
        self,
        session_id: str,
        user_id: str,
        gem_id: str,
    ) -> list[ConversationTurn]:
        async with self._session_factory() as session:
            record = await self._get_owned(session, session_id, user_id)
            if record.gem_id != gem_id:
                return []
            result = await session.execute(
                select(ChatHistoryEntry)
                .where(ChatHistoryEntry.session_id == session_id)
                .order_by(ChatHistoryEntry.seq)
            )
            rows = result.scalars().all()

        return [normalize_history_entry(row.to_raw()) for row in rows]

    async def delete_session(self, session_id: str, user_id: str) -> None:
        async with self._session_factory() as session:
            record = await self._get_owned(session, session_id, user_id)
            await session.execute(
                delete(ChatHistoryEntry).where(ChatHistoryEntry.session_id == session_id)
            )
            await session.delete(record)
            await session.commit()

        logger.info(f"Deleted chat session {session_id}")

    async def append_history(
        self,
        session_id: str,
        user_id: str,
        gem_id: str,
        entry: HistoryEntry,
    ) -> None:
        async with self._session_factory() as session:
            record = await self._get_owned(session, session_id, user_id)
            check_gem(session_id, record.gem_id, gem_id)

            session.add(
                ChatHistoryEntry(
                    session_id=session_id,
                    question=entry.question,
                    answer=entry.answer,
                    follow_ups=list(entry.follow_ups),
                    element=entry.element.model_dump() if entry.element else None,
                    created_at=entry.created_at,
                )
            )
            if not record.title:
                record.title = derive_title(entry.question)
            await session.commit()

    async def _query_sessions(
        self,
        gem_id: str,
        user_id: str,
        limit: int,
    ) -> list[ConversationSession]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ChatSession).where(
                    ChatSession.gem_id == gem_id,
                    ChatSession.user_id == user_id,
                )
            )
            records = result.scalars().all()

        return [
            ConversationSession(
                id=r.id,
                gem_id=r.gem_id,
                user_id=r.user_id,
                created_at=coerce_timestamp(r.created_at),
                modified_at=coerce_timestamp(r.modified_at),
                title=r.title or DEFAULT_SESSION_TITLE,
            )
            for r in records
        ]

    @staticmethod
    async def _get_owned(
        session: AsyncSession,
        session_id: str,
        user_id: str,
    ) -> ChatSession:
        record = await session.get(ChatSession, session_id)
        if record is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        if record.user_id != user_id:
            raise SessionPermissionError(
                f"Session {session_id} belongs to another user"
            )
        return record
