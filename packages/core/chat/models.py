"""
Chat models for Curiow.

Turns, sessions and suggestions exchanged between the chat panel,
the question dispatcher and the conversation store.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

GENERAL_ELEMENT = "general"
DEFAULT_SESSION_TITLE = "Sessione"
TITLE_MAX_LENGTH = 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str = "") -> str:
    return f"{prefix}{uuid4().hex}"


# -----------------------------
# Enums
# -----------------------------


class QuestionOrigin(str, Enum):
    """Where a question came from."""

    SUGGESTED = "suggested"  # Clicked from a suggestion list
    CUSTOM = "custom"  # Typed freely or clicked as a follow-up


class TurnStatus(str, Enum):
    """Lifecycle of a single turn: pending -> answered | failed."""

    PENDING = "pending"
    ANSWERED = "answered"
    FAILED = "failed"


# -----------------------------
# Errors
# -----------------------------


class TurnStateError(Exception):
    """Raised when a terminal turn is finalized a second time."""

    pass


# -----------------------------
# Models
# -----------------------------


class ElementContext(BaseModel):
    """
    The content section a question relates to.

    Examples:
        a myth / reality block, the n-th step of a mini thread,
        or "general" for gem-level questions.
    """

    name: str = GENERAL_ELEMENT
    title: str | None = None
    test: str | None = None
    index: int | None = None

    @property
    def is_general(self) -> bool:
        return self.name == GENERAL_ELEMENT

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "title": self.title,
            "test": self.test,
        }
        if self.index is not None:
            payload["index"] = self.index
        return payload


class SuggestionItem(BaseModel):
    """A pre-generated candidate question."""

    id: str
    testo: str
    tipologia: str | None = None
    element: ElementContext | None = None

    @property
    def is_general(self) -> bool:
        return self.element is None or self.element.is_general


class ConversationTurn(BaseModel):
    """
    One question and its answer (or error).

    A turn starts pending and is finalized exactly once, either with
    resolve() or with fail().
    """

    id: str = Field(default_factory=lambda: new_id("turn_"))
    question: str
    answer: str | None = None
    error: str | None = None
    status: TurnStatus = TurnStatus.PENDING
    origin: QuestionOrigin = QuestionOrigin.CUSTOM
    element: ElementContext | None = None
    follow_ups: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def loading(self) -> bool:
        return self.status == TurnStatus.PENDING

    def resolve(self, answer: str, follow_ups: list[str] | None = None) -> None:
        """Mark the turn answered."""
        self._ensure_pending()
        self.answer = answer
        self.follow_ups = list(follow_ups or [])
        self.error = None
        self.status = TurnStatus.ANSWERED

    def fail(self, error: str) -> None:
        """Mark the turn failed, leaving the answer empty."""
        self._ensure_pending()
        self.answer = None
        self.error = error
        self.status = TurnStatus.FAILED

    def _ensure_pending(self) -> None:
        if self.status != TurnStatus.PENDING:
            raise TurnStateError(
                f"Turn {self.id} is already {self.status.value}"
            )


class ConversationSession(BaseModel):
    """Persisted metadata of a conversation thread for a (user, gem) pair."""

    id: str
    gem_id: str
    user_id: str
    created_at: datetime
    modified_at: datetime
    title: str = DEFAULT_SESSION_TITLE


class HistoryEntry(BaseModel):
    """An answered question as persisted by the answer backend."""

    question: str
    answer: str
    follow_ups: list[str] = Field(default_factory=list)
    element: ElementContext | None = None
    created_at: datetime = Field(default_factory=utcnow)


def derive_title(question: str | None) -> str:
    """Session title from its first question, truncated."""
    if not question or not question.strip():
        return DEFAULT_SESSION_TITLE
    text = " ".join(question.split())
    if len(text) <= TITLE_MAX_LENGTH:
        return text
    return text[: TITLE_MAX_LENGTH - 1].rstrip() + "…"
