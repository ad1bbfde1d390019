"""
Session identity for the Curiow chat.

Hands out the id of the conversation currently open in a chat panel
and the calendar-day scoped id used by the generic (non-gem) chat.
"""

import json
import logging
from collections.abc import Callable
from datetime import date
from pathlib import Path
from typing import Any

from packages.core.chat.events import ChatEvent, ChatEventType, EventBus
from packages.core.chat.models import new_id

logger = logging.getLogger(__name__)

DAILY_SESSION_KEY = "curiow.daily_session"


# -----------------------------
# Client storage
# -----------------------------


class MemoryStorage:
    """Key-value storage kept in a dict."""

    def __init__(self):
        self._data: dict[str, Any] = {}

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileStorage:
    """
    Key-value storage persisted to a JSON file.

    Plays the role of the browser's localStorage for the terminal
    client. Read and write errors propagate as OSError or ValueError.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def get(self, key: str) -> Any:
        if not self._path.exists():
            return None
        data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        return data.get(key)

    def set(self, key: str, value: Any) -> None:
        data: dict[str, Any] = {}
        if self._path.exists():
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")


# -----------------------------
# Identity manager
# -----------------------------


class SessionIdentityManager:
    """
    Holds the id of the current conversation.

    One instance lives with each chat panel. Every change of the
    current id is broadcast as CURRENT_SESSION_CHANGED.
    """

    def __init__(
        self,
        bus: EventBus,
        storage: MemoryStorage | JsonFileStorage | None = None,
        today: Callable[[], date] = date.today,
        id_factory: Callable[[], str] | None = None,
    ):
        """
        Initialize the identity manager.

        Args:
            bus: Event bus used to broadcast identity changes.
            storage: Client storage for the day-scoped id.
                Uses a MemoryStorage if not provided.
            today: Clock returning the current calendar date.
            id_factory: Generator of fresh session ids.
        """
        self._bus = bus
        self._storage = storage if storage is not None else MemoryStorage()
        self._today = today
        self._id_factory = id_factory or (lambda: new_id("s_"))
        self._current_id: str | None = None
        # Used when the client storage is unusable
        self._fallback_daily: tuple[str, str] | None = None

    @property
    def current_id(self) -> str | None:
        return self._current_id

    def today(self) -> date:
        return self._today()

    def ensure_session(self, forced_id: str | None = None) -> str:
        """
        Make sure a current session id exists.

        Args:
            forced_id: Id of a known session to switch to.

        Returns:
            The current session id.
        """
        if forced_id and forced_id != self._current_id:
            self._current_id = forced_id
            self._announce()
        elif self._current_id is None:
            self._current_id = forced_id or self._id_factory()
            self._announce()
        return self._current_id

    def clear(self) -> None:
        """Forget the current id, e.g. when a new conversation starts."""
        if self._current_id is None:
            return
        self._current_id = None
        self._announce()

    def daily_session_id(self) -> str:
        """
        Return the id scoped to the current calendar day.

        The id is cached in client storage and replaced on the first
        call of each new day.
        """
        today = self._today().isoformat()

        try:
            cached = self._storage.get(DAILY_SESSION_KEY)
        except (OSError, ValueError) as e:
            logger.warning(f"Daily session storage unreadable: {e}")
            return self._fallback_daily_id(today)

        if isinstance(cached, dict) and cached.get("date") == today and cached.get("session_id"):
            return cached["session_id"]

        session_id = f"day_{today.replace('-', '')}_{self._id_factory()}"
        try:
            self._storage.set(DAILY_SESSION_KEY, {"date": today, "session_id": session_id})
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Daily session storage not writable: {e}")
            return self._fallback_daily_id(today)
        return session_id

    def _fallback_daily_id(self, today: str) -> str:
        if self._fallback_daily is None or self._fallback_daily[0] != today:
            self._fallback_daily = (
                today,
                f"day_{today.replace('-', '')}_{self._id_factory()}",
            )
        return self._fallback_daily[1]

    def _announce(self) -> None:
        self._bus.publish(
            ChatEvent(
                type=ChatEventType.CURRENT_SESSION_CHANGED,
                session_id=self._current_id,
            )
        )
