"""
In-process event bus for the Curiow chat.

Decouples the chat panel from the rest of the page: section widgets
open the chat, the session list switches or deletes sessions, and the
panel announces session changes back.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from packages.core.chat.models import SuggestionItem

logger = logging.getLogger(__name__)


class ChatEventType(str, Enum):
    """Signals exchanged between the chat panel and its neighbours."""

    OPEN_CHAT = "open_chat"
    USE_EXISTING_SESSION = "use_existing_session"
    NEW_SESSION = "new_session"
    SESSIONS_CHANGED = "sessions_changed"
    CURRENT_SESSION_CHANGED = "current_session_changed"


class ChatEvent(BaseModel):
    """A message published on the bus."""

    type: ChatEventType
    session_id: str | None = None
    suggestions: list[SuggestionItem] = Field(default_factory=list)
    auto_question_id: str | None = None
    auto_question_text: str | None = None


Handler = Callable[[ChatEvent], Any]


class EventBus:
    """
    Publish/subscribe channel keyed by ChatEventType.

    Handlers run synchronously in subscription order. A handler that
    returns an awaitable is scheduled on the running loop; drain()
    waits for every task scheduled that way.
    """

    def __init__(self):
        self._handlers: dict[ChatEventType, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Future] = set()

    def subscribe(self, event_type: ChatEventType, handler: Handler) -> Callable[[], None]:
        """
        Register a handler.

        Returns:
            A callable that removes the handler again.
        """
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: ChatEvent) -> None:
        """Deliver an event to every handler of its type."""
        for handler in list(self._handlers.get(event.type, [])):
            try:
                result = handler(event)
            except Exception:
                logger.exception(f"Handler for {event.type.value} failed")
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)

    async def drain(self) -> None:
        """Wait until every scheduled handler task has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def handler_count(self, event_type: ChatEventType) -> int:
        return len(self._handlers.get(event_type, []))

    def _schedule(self, event: ChatEvent, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop for async {event.type.value} handler")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._pending.add(task)

        def _done(fut: asyncio.Future) -> None:
            self._pending.discard(fut)
            if not fut.cancelled() and fut.exception() is not None:
                logger.error(
                    f"Async handler for {event.type.value} failed",
                    exc_info=fut.exception(),
                )

        task.add_done_callback(_done)
