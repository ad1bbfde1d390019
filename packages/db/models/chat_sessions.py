"""Chat session model for deep-topic conversations."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from packages.core.chat.models import utcnow
from packages.db.base import Base


class ChatSession(Base):
    """A conversation thread of one user about one gem."""

    __tablename__ = "chat_sessions"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    gem_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    entries: Mapped[list["ChatHistoryEntry"]] = relationship(
        "ChatHistoryEntry",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatHistoryEntry.seq",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ChatSession {self.id}>"
