"""SQLAlchemy base and engine configuration."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def get_async_engine(url: str, **kwargs) -> AsyncEngine:
    """Create an async engine, e.g. postgresql+asyncpg or sqlite+aiosqlite."""

    return create_async_engine(url, **kwargs)
