"""
Chat panel controller for Curiow.

Composes the identity manager, the question dispatcher and the
suggestion pools into the state machine of one open chat panel:

    idle --ask--> active
    idle --use existing session--> history_hydrated
    active / history_hydrated --new session--> idle
    active --delete current session--> idle
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from enum import Enum

from packages.core.chat.dispatcher import (
    DEFAULT_TIMEOUT_SECONDS,
    AnswerClient,
    QuestionDispatcher,
)
from packages.core.chat.events import ChatEvent, ChatEventType, EventBus
from packages.core.chat.identity import SessionIdentityManager
from packages.core.chat.models import (
    ConversationSession,
    ConversationTurn,
    QuestionOrigin,
    SuggestionItem,
)
from packages.core.chat.store import DEFAULT_LIST_LIMIT, ConversationStore
from packages.core.chat.suggestions import SuggestionPools, SuggestionView

logger = logging.getLogger(__name__)

DAY_ROLLOVER_INTERVAL_SECONDS = 3600.0


class PanelState(str, Enum):
    """State of a chat panel instance."""

    IDLE = "idle"
    ACTIVE = "active"
    HISTORY_HYDRATED = "history_hydrated"


class ChatPanel:
    """
    Conversation controller for one (user, gem) chat panel.

    Created when the panel mounts and closed when it goes away.
    """

    def __init__(
        self,
        gem_id: str,
        store: ConversationStore,
        client: AnswerClient,
        bus: EventBus | None = None,
        identity: SessionIdentityManager | None = None,
        user_id: str | None = None,
        description: str = "",
        section_questions: Iterable[SuggestionItem] = (),
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
        rollover_interval: float = DAY_ROLLOVER_INTERVAL_SECONDS,
    ):
        self.gem_id = gem_id
        self.user_id = user_id
        self.bus = bus or EventBus()
        self.identity = identity or SessionIdentityManager(self.bus)
        self._store = store
        self._dispatcher = QuestionDispatcher(
            client=client,
            store=store,
            identity=self.identity,
            bus=self.bus,
            gem_id=gem_id,
            user_id=user_id,
            description=description,
            timeout=timeout,
        )
        self._pools = SuggestionPools(section_questions)
        self._state = PanelState.IDLE
        self._has_history = False
        self._auto_fired: str | None = None
        self._rollover_interval = rollover_interval
        self._rollover_task: asyncio.Task | None = None
        self._unsubscribers: list[Callable[[], None]] = []

        self.daily_session_id = self.identity.daily_session_id()
        self._daily_date = self.identity.today()

    # -------------------------
    # State
    # -------------------------

    @property
    def state(self) -> PanelState:
        return self._state

    @property
    def turns(self) -> list[ConversationTurn]:
        return self._dispatcher.turns

    @property
    def dispatcher(self) -> QuestionDispatcher:
        return self._dispatcher

    @property
    def current_session_id(self) -> str | None:
        return self.identity.current_id

    def suggestions(self) -> SuggestionView:
        """Suggestion groups to show right now."""
        return self._pools.visible(
            has_turns=bool(self.turns),
            has_history=self._has_history,
        )

    # -------------------------
    # Asking
    # -------------------------

    async def ask_suggestion(self, item: SuggestionItem) -> ConversationTurn:
        """Ask a clicked suggestion, carrying its element context forward."""
        return await self._ask(item.testo, QuestionOrigin.SUGGESTED, item.id, item)

    async def ask_custom(self, text: str) -> ConversationTurn | None:
        """Ask a free-typed question. Blank input is ignored."""
        text = text.strip()
        if not text:
            return None
        return await self._ask(text, QuestionOrigin.CUSTOM)

    async def ask_follow_up(
        self,
        text: str,
        source: ConversationTurn | None = None,
    ) -> ConversationTurn:
        """
        Ask a follow-up chip returned with a previous answer.

        The question keeps the element of the turn it was suggested by.
        Without an explicit source, the latest turn offering the chip is used.
        """
        self._mark_active()
        if source is None:
            source = next(
                (t for t in reversed(self.turns) if text in t.follow_ups),
                None,
            )
        element = source.element if source else None
        return await self._dispatcher.ask_follow_up(text, element)

    def cancel(self, turn_id: str) -> bool:
        return self._dispatcher.cancel(turn_id)

    async def _ask(
        self,
        text: str,
        origin: QuestionOrigin,
        suggestion_id: str | None = None,
        item: SuggestionItem | None = None,
    ) -> ConversationTurn:
        self._mark_active()
        return await self._dispatcher.ask(
            text,
            origin,
            preset_suggestion_id=suggestion_id,
            element=item.element if item else None,
        )

    def _mark_active(self) -> None:
        if self._state == PanelState.IDLE:
            self._state = PanelState.ACTIVE

    # -------------------------
    # Event flows
    # -------------------------

    async def open_chat(
        self,
        suggestions: Iterable[SuggestionItem] = (),
        auto_question_id: str | None = None,
        auto_question_text: str | None = None,
    ) -> ConversationTurn | None:
        """
        Open the panel with the candidate suggestions of an invocation.

        An auto question is asked once per distinct (id, text) pair.
        """
        self._pools.load_event(suggestions)

        token = f"{auto_question_id or ''}|{auto_question_text or ''}"
        if token == "|" or token == self._auto_fired:
            return None
        self._auto_fired = token

        if auto_question_id:
            item = self._pools.find(auto_question_id)
            if item is not None:
                return await self.ask_suggestion(item)
            logger.debug(f"Auto question {auto_question_id} not among suggestions")
            return None
        return await self.ask_custom(auto_question_text or "")

    async def use_existing_session(self, session_id: str) -> list[ConversationTurn]:
        """
        Switch to a persisted session and hydrate its history.

        History fetch failures leave the panel idle with no turns.
        """
        self._dispatcher.reset()
        self._has_history = False
        self._state = PanelState.IDLE
        self.identity.ensure_session(session_id)

        if not self.user_id:
            return []

        try:
            history = await self._store.fetch_history(session_id, self.user_id, self.gem_id)
        except Exception as e:
            logger.warning(f"Failed to load history for session {session_id}: {e}")
            return []

        self._dispatcher.hydrate(history)
        self._has_history = bool(history)
        self._state = PanelState.HISTORY_HYDRATED
        return history

    def new_session(self, suggestions: Iterable[SuggestionItem] = ()) -> None:
        """Clear the conversation and start over from the given suggestions."""
        self._dispatcher.reset()
        self._has_history = False
        self._auto_fired = None
        self._state = PanelState.IDLE
        self.identity.clear()
        self._pools.reset()
        self._pools.load_event(suggestions)

    async def delete_session(self, session_id: str) -> None:
        """
        Delete a persisted session.

        Deleting the open session resets the panel and broadcasts a new
        session. Store errors propagate to the caller.
        """
        if not self.user_id:
            return
        try:
            await self._store.delete_session(session_id, self.user_id)
        except Exception as e:
            logger.error(f"Failed to delete session {session_id}: {e}")
            raise

        if session_id == self.identity.current_id:
            self.new_session()
            self.bus.publish(ChatEvent(type=ChatEventType.NEW_SESSION))
        self.bus.publish(ChatEvent(type=ChatEventType.SESSIONS_CHANGED, session_id=session_id))

    async def list_sessions(self, limit: int = DEFAULT_LIST_LIMIT) -> list[ConversationSession]:
        """The user's sessions for this gem; empty on failure."""
        if not self.user_id:
            return []
        try:
            return await self._store.list_sessions(self.gem_id, self.user_id, limit)
        except Exception as e:
            logger.warning(f"Failed to list sessions for gem {self.gem_id}: {e}")
            return []

    # -------------------------
    # Day rollover
    # -------------------------

    def check_day_rollover(self) -> bool:
        """
        Refresh the day-scoped id when the calendar date advanced.

        Returns:
            True if the id was refreshed.
        """
        today = self.identity.today()
        if today == self._daily_date:
            return False
        self._daily_date = today
        self.daily_session_id = self.identity.daily_session_id()
        logger.info(f"Day rolled over to {today.isoformat()}")
        return True

    async def _rollover_loop(self) -> None:
        while True:
            await asyncio.sleep(self._rollover_interval)
            self.check_day_rollover()

    # -------------------------
    # Lifecycle
    # -------------------------

    def attach(self) -> None:
        """Listen to open / switch / new-session events on the bus."""
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.bus.subscribe(ChatEventType.OPEN_CHAT, self._on_open_chat),
            self.bus.subscribe(ChatEventType.USE_EXISTING_SESSION, self._on_use_existing),
            self.bus.subscribe(ChatEventType.NEW_SESSION, self._on_new_session),
        ]

    def start(self) -> None:
        """Attach to the bus and start the hourly day-rollover check."""
        self.attach()
        if self._rollover_task is None:
            self._rollover_task = asyncio.ensure_future(self._rollover_loop())

    async def close(self) -> None:
        """Stop timers, detach from the bus and wait for background work."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

        if self._rollover_task is not None:
            self._rollover_task.cancel()
            try:
                await self._rollover_task
            except asyncio.CancelledError:
                pass
            self._rollover_task = None

        await self._dispatcher.drain()

    def _on_open_chat(self, event: ChatEvent):
        return self.open_chat(
            event.suggestions,
            auto_question_id=event.auto_question_id,
            auto_question_text=event.auto_question_text,
        )

    def _on_use_existing(self, event: ChatEvent):
        if event.session_id:
            return self.use_existing_session(event.session_id)
        return None

    def _on_new_session(self, event: ChatEvent) -> None:
        self.new_session(event.suggestions)
