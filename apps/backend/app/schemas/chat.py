"""Pydantic schemas for the deep-topic chat API."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from packages.core.chat.models import ConversationSession, ConversationTurn, ElementContext


class CamelModel(BaseModel):
    """Base schema using the camelCase field names of the web client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ──────────────────────────────────────────────────────────────────────
# Answer endpoint
# ──────────────────────────────────────────────────────────────────────


class DeepQuestionRequest(CamelModel):
    """Body of an apitype=deep-question call."""

    apitype: str = "deep-question"
    gem_id: str = Field(..., min_length=1)
    description: str = ""
    question_text: str = Field(..., min_length=1, max_length=2000)
    question_id: str | None = None
    element: ElementContext | None = None
    session_id: str | None = None


class DeepQuestionResponse(BaseModel):
    """Answer plus follow-up questions."""

    response: str
    questions: list[str] = Field(default_factory=list)


# ──────────────────────────────────────────────────────────────────────
# Sessions
# ──────────────────────────────────────────────────────────────────────


class CreateSessionRequest(CamelModel):
    session_id: str = Field(..., min_length=1, max_length=128)
    gem_id: str = Field(..., min_length=1, max_length=128)


class SessionSchema(CamelModel):
    """A session as listed to the client."""

    id: str
    gem_id: str
    user_id: str
    title: str
    created_at: datetime
    modified_at: datetime

    @classmethod
    def from_session(cls, session: ConversationSession) -> "SessionSchema":
        return cls(
            id=session.id,
            gem_id=session.gem_id,
            user_id=session.user_id,
            title=session.title,
            created_at=session.created_at,
            modified_at=session.modified_at,
        )


class SessionListResponse(BaseModel):
    sessions: list[SessionSchema]


class HistoryEntrySchema(CamelModel):
    """One persisted turn."""

    id: str
    question: str
    answer: str | None = None
    follow_ups: list[str] = Field(default_factory=list)
    element: ElementContext | None = None
    created_at: datetime

    @classmethod
    def from_turn(cls, turn: ConversationTurn) -> "HistoryEntrySchema":
        return cls(
            id=turn.id,
            question=turn.question,
            answer=turn.answer,
            follow_ups=turn.follow_ups,
            element=turn.element,
            created_at=turn.created_at,
        )


class HistoryResponse(BaseModel):
    session_id: str
    entries: list[HistoryEntrySchema]
