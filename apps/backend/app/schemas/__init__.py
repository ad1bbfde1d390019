"""Pydantic schemas."""

from app.schemas.chat import (
    CreateSessionRequest,
    DeepQuestionRequest,
    DeepQuestionResponse,
    HistoryEntrySchema,
    HistoryResponse,
    SessionListResponse,
    SessionSchema,
)

__all__ = [
    "CreateSessionRequest",
    "DeepQuestionRequest",
    "DeepQuestionResponse",
    "HistoryEntrySchema",
    "HistoryResponse",
    "SessionListResponse",
    "SessionSchema",
]
