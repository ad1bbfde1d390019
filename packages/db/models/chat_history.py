"""History entry model for answered deep-topic questions."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from packages.core.chat.models import utcnow
from packages.db.base import Base


class ChatHistoryEntry(Base):
    """A question and its answer inside a chat session."""

    __tablename__ = "chat_history_entries"

    # Insertion order of history entries
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, default=lambda: uuid4().hex
    )
    session_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    follow_ups: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    element: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    session: Mapped["ChatSession"] = relationship(
        "ChatSession",
        back_populates="entries",
    )

    def to_raw(self) -> dict[str, Any]:
        """Row as a raw history entry for normalize_history_entry()."""
        return {
            "id": self.id,
            "question": self.question,
            "answer": self.answer,
            "followUps": self.follow_ups or [],
            "element": self.element,
            "createdAt": self.created_at,
        }

    def __repr__(self) -> str:
        return f"<ChatHistoryEntry {self.id} session={self.session_id}>"
