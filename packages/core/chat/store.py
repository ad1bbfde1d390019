"""
Conversation store contract for Curiow.

Durable persistence of session metadata and turn history. The chat
core only depends on ConversationStore; concrete backends live in
packages.db (SQLAlchemy) and packages.core.chat.api_client (HTTP).
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from packages.core.chat.models import (
    DEFAULT_SESSION_TITLE,
    ConversationSession,
    ConversationTurn,
    ElementContext,
    HistoryEntry,
    QuestionOrigin,
    derive_title,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)

MISSING_ANSWER_ERROR = "Risposta non disponibile"
DEFAULT_LIST_LIMIT = 20


# -----------------------------
# Errors
# -----------------------------


class ConversationStoreError(Exception):
    """Base error for conversation store operations."""

    pass


class SessionNotFoundError(ConversationStoreError):
    """Raised when a session id is unknown."""

    pass


class SessionPermissionError(ConversationStoreError):
    """Raised when a user touches a session owned by someone else."""

    pass


# -----------------------------
# Normalization
# -----------------------------


def coerce_timestamp(value: Any) -> datetime:
    """
    Convert a store-native time representation to an aware datetime.

    Accepts datetimes, Firestore-like timestamps (objects with
    to_datetime(), dicts with seconds/nanoseconds or _seconds),
    epoch seconds or milliseconds, and ISO 8601 strings. Anything
    else maps to the current time.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if hasattr(value, "to_datetime"):
        return coerce_timestamp(value.to_datetime())

    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
        if isinstance(seconds, (int, float)):
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Values this large are milliseconds (JS Date.now())
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    if isinstance(value, str) and value:
        try:
            return coerce_timestamp(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass

    return utcnow()


def _first_present(raw: dict, *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, "", []):
            return value
    return None


def _element_from(raw: Any) -> ElementContext | None:
    if isinstance(raw, ElementContext):
        return raw
    if not isinstance(raw, dict):
        return None
    return ElementContext.model_validate({k: v for k, v in raw.items() if v is not None})


def normalize_history_entry(raw: dict[str, Any]) -> ConversationTurn:
    """
    Build a terminal turn from a persisted history entry.

    Answer and follow-up fields are read under their aliases; entries
    without an answer become failed turns.
    """
    answer = _first_present(raw, "answer", "response")
    follow_ups = _first_present(raw, "followUps", "follow_ups", "questions") or []
    element = raw.get("element")

    turn = ConversationTurn(
        id=str(raw.get("id") or new_id("turn_")),
        question=str(raw.get("question") or raw.get("questionText") or ""),
        origin=QuestionOrigin.CUSTOM,
        element=_element_from(element),
        created_at=coerce_timestamp(raw.get("createdAt", raw.get("created_at"))),
    )
    if isinstance(answer, str) and answer.strip():
        turn.resolve(answer, [str(q) for q in follow_ups if isinstance(q, str) and q.strip()])
    else:
        turn.fail(MISSING_ANSWER_ERROR)
    return turn


# -----------------------------
# Store contract
# -----------------------------


class ConversationStore(ABC):
    """
    Abstract conversation store.

    Subclasses implement the storage primitives; list_sessions adds the
    client-side sort and best-effort title derivation on top.
    """

    @abstractmethod
    async def create_session(self, session_id: str, gem_id: str, user_id: str) -> str:
        """Create a session document and return its id."""

    @abstractmethod
    async def touch_session(self, session_id: str, user_id: str | None = None) -> None:
        """
        Update the last-modified timestamp of a session.

        When user_id is given the session must belong to that user.
        """

    @abstractmethod
    async def fetch_history(
        self,
        session_id: str,
        user_id: str,
        gem_id: str,
    ) -> list[ConversationTurn]:
        """Return the persisted turns of a session, oldest first."""

    @abstractmethod
    async def delete_session(self, session_id: str, user_id: str) -> None:
        """Remove a session and its history."""

    @abstractmethod
    async def _query_sessions(
        self,
        gem_id: str,
        user_id: str,
        limit: int,
    ) -> list[ConversationSession]:
        """Return raw session records for a gem/user pair."""

    async def list_sessions(
        self,
        gem_id: str,
        user_id: str,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[ConversationSession]:
        """
        List a user's sessions for a gem, most recently modified first.

        Titles are derived from the first question of each session and
        fall back to "Sessione" when the lookup fails.
        """
        sessions = await self._query_sessions(gem_id, user_id, limit)
        sessions.sort(key=lambda s: s.modified_at, reverse=True)

        for session in sessions:
            if session.title and session.title != DEFAULT_SESSION_TITLE:
                continue
            session.title = await self._lookup_title(session)
        return sessions[:limit]

    async def _lookup_title(self, session: ConversationSession) -> str:
        try:
            history = await self.fetch_history(session.id, session.user_id, session.gem_id)
        except Exception as e:
            logger.debug(f"Title lookup failed for session {session.id}: {e}")
            return DEFAULT_SESSION_TITLE
        if not history:
            return DEFAULT_SESSION_TITLE
        return derive_title(history[0].question)


class HistoryRecordingStore(ConversationStore):
    """
    Conversation store that also records answered questions.

    Implemented by the stores the answer backend writes to; remote
    clients of the backend only see ConversationStore.
    """

    @abstractmethod
    async def append_history(
        self,
        session_id: str,
        user_id: str,
        gem_id: str,
        entry: HistoryEntry,
    ) -> None:
        """
        Persist an answered question in a session's history.

        Raises:
            SessionNotFoundError: If the session does not exist.
            SessionPermissionError: If the session belongs to another
                user or another gem.
        """


def check_gem(session_id: str, session_gem_id: str, gem_id: str) -> None:
    if session_gem_id != gem_id:
        raise SessionPermissionError(f"Session {session_id} belongs to another gem")


class InMemoryConversationStore(HistoryRecordingStore):
    """Conversation store kept in process memory."""

    def __init__(self):
        self._sessions: dict[str, ConversationSession] = {}
        self._history: dict[str, list[dict[str, Any]]] = {}

    async def create_session(self, session_id: str, gem_id: str, user_id: str) -> str:
        existing = self._sessions.get(session_id)
        if existing is not None:
            if existing.user_id != user_id:
                raise SessionPermissionError(
                    f"Session {session_id} belongs to another user"
                )
            return session_id

        now = utcnow()
        self._sessions[session_id] = ConversationSession(
            id=session_id,
            gem_id=gem_id,
            user_id=user_id,
            created_at=now,
            modified_at=now,
        )
        self._history[session_id] = []
        return session_id

    async def touch_session(self, session_id: str, user_id: str | None = None) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        if user_id is not None:
            session = self._get_owned(session_id, user_id)
        session.modified_at = utcnow()

    async def fetch_history(
        self,
        session_id: str,
        user_id: str,
        gem_id: str,
    ) -> list[ConversationTurn]:
        session = self._get_owned(session_id, user_id)
        if session.gem_id != gem_id:
            return []
        return [normalize_history_entry(raw) for raw in self._history.get(session_id, [])]

    async def delete_session(self, session_id: str, user_id: str) -> None:
        self._get_owned(session_id, user_id)
        del self._sessions[session_id]
        self._history.pop(session_id, None)

    async def append_history(
        self,
        session_id: str,
        user_id: str,
        gem_id: str,
        entry: HistoryEntry,
    ) -> None:
        session = self._get_owned(session_id, user_id)
        check_gem(session_id, session.gem_id, gem_id)
        self._history[session_id].append(
            {
                "id": new_id("turn_"),
                "question": entry.question,
                "answer": entry.answer,
                "followUps": list(entry.follow_ups),
                "element": entry.element.model_dump() if entry.element else None,
                "createdAt": entry.created_at,
            }
        )

    async def _query_sessions(
        self,
        gem_id: str,
        user_id: str,
        limit: int,
    ) -> list[ConversationSession]:
        return [
            session.model_copy()
            for session in self._sessions.values()
            if session.gem_id == gem_id and session.user_id == user_id
        ]

    def _get_owned(self, session_id: str, user_id: str) -> ConversationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        if session.user_id != user_id:
            raise SessionPermissionError(
                f"Session {session_id} belongs to another user"
            )
        return session
