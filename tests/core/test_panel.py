"""
Tests for the chat panel state machine.

Tests cover:
1. idle -> active on the first question
2. Auto questions on open, fired once per invocation
3. Switching to, starting and deleting sessions
4. Day rollover of the day-scoped session id
"""

import asyncio
from datetime import date

import pytest

from packages.core.chat.events import ChatEvent, ChatEventType, EventBus
from packages.core.chat.identity import MemoryStorage, SessionIdentityManager
from packages.core.chat.models import (
    ElementContext,
    HistoryEntry,
    QuestionOrigin,
    SuggestionItem,
    TurnStatus,
)
from packages.core.chat.panel import ChatPanel, PanelState
from packages.core.chat.store import InMemoryConversationStore, SessionPermissionError


class FakeClient:
    def __init__(self):
        self.calls = []

    async def call_api(self, body):
        self.calls.append(body)
        return {"response": f"A: {body['questionText']}", "questions": ["E poi?"]}


class FailingStore(InMemoryConversationStore):
    async def fetch_history(self, session_id, user_id, gem_id):
        raise RuntimeError("offline")

    async def _query_sessions(self, gem_id, user_id, limit):
        raise RuntimeError("offline")


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


def make_panel(store, client, bus=None, **kwargs) -> ChatPanel:
    return ChatPanel(
        gem_id="gem1",
        store=store,
        client=client,
        bus=bus,
        user_id="u1",
        description="Fotosintesi",
        **kwargs,
    )


def myth_question() -> SuggestionItem:
    return SuggestionItem(
        id="q1",
        testo="È vero che le piante mangiano terra?",
        element=ElementContext(name="myth", test="Le piante mangiano terra"),
    )


async def seed_session(store, session_id="old", questions=("Prima domanda",)):
    await store.create_session(session_id, "gem1", "u1")
    for question in questions:
        await store.append_history(
            session_id, "u1", "gem1", HistoryEntry(question=question, answer="Risposta")
        )


class TestAsking:
    """Tests for the idle -> active transition."""

    def test_starts_idle(self, store, client) -> None:
        panel = make_panel(store, client)

        assert panel.state == PanelState.IDLE
        assert panel.turns == []
        assert panel.current_session_id is None

    def test_custom_question_activates(self, store, client) -> None:
        panel = make_panel(store, client)

        turn = asyncio.run(panel.ask_custom("  Cos'è la clorofilla? "))

        assert panel.state == PanelState.ACTIVE
        assert turn.question == "Cos'è la clorofilla?"
        assert turn.origin == QuestionOrigin.CUSTOM
        assert turn.status == TurnStatus.ANSWERED
        assert panel.current_session_id is not None

    def test_blank_question_is_ignored(self, store, client) -> None:
        panel = make_panel(store, client)

        assert asyncio.run(panel.ask_custom("   ")) is None
        assert panel.state == PanelState.IDLE
        assert client.calls == []

    def test_suggestion_carries_element(self, store, client) -> None:
        panel = make_panel(store, client)

        turn = asyncio.run(panel.ask_suggestion(myth_question()))

        assert turn.origin == QuestionOrigin.SUGGESTED
        assert client.calls[0]["questionId"] == "q1"
        assert client.calls[0]["element"]["name"] == "myth"

    def test_follow_up(self, store, client) -> None:
        panel = make_panel(store, client)

        async def scenario():
            first = await panel.ask_custom("Cos'è?")
            return await panel.ask_follow_up(first.follow_ups[0])

        turn = asyncio.run(scenario())

        assert turn.question == "E poi?"
        assert turn.origin == QuestionOrigin.CUSTOM
        assert len(panel.turns) == 2

    def test_follow_up_keeps_element_of_its_turn(self, store, client) -> None:
        panel = make_panel(store, client)

        async def scenario():
            first = await panel.ask_suggestion(myth_question())
            await panel.ask_custom("Altra domanda")
            return await panel.ask_follow_up(first.follow_ups[0], first)

        turn = asyncio.run(scenario())

        assert turn.element.name == "myth"
        assert client.calls[-1]["element"]["name"] == "myth"
        assert client.calls[-1]["element"]["test"] == "Le piante mangiano terra"

    def test_follow_up_without_source_uses_turn_offering_it(self, store, client) -> None:
        panel = make_panel(store, client)

        async def scenario():
            await panel.ask_suggestion(myth_question())
            return await panel.ask_follow_up("E poi?")

        turn = asyncio.run(scenario())

        assert turn.element.name == "myth"
        assert client.calls[-1]["element"]["name"] == "myth"

    def test_suggestions_hidden_after_first_question(self, store, client) -> None:
        panel = make_panel(store, client, section_questions=[myth_question()])
        assert not panel.suggestions().is_empty

        asyncio.run(panel.ask_custom("Q"))

        assert panel.suggestions().is_empty


class TestOpenChat:
    """Tests for auto questions on open."""

    def test_auto_question_by_id_fires_once(self, store, client) -> None:
        panel = make_panel(store, client)
        item = myth_question()

        async def scenario():
            first = await panel.open_chat([item], auto_question_id="q1")
            again = await panel.open_chat([item], auto_question_id="q1")
            return first, again

        first, again = asyncio.run(scenario())

        assert first.origin == QuestionOrigin.SUGGESTED
        assert again is None
        assert len(client.calls) == 1

    def test_auto_question_by_text(self, store, client) -> None:
        panel = make_panel(store, client)

        turn = asyncio.run(panel.open_chat(auto_question_text="Perché le foglie sono verdi?"))

        assert turn.origin == QuestionOrigin.CUSTOM
        assert turn.question == "Perché le foglie sono verdi?"

    def test_unknown_auto_question_is_not_asked(self, store, client) -> None:
        panel = make_panel(store, client)

        assert asyncio.run(panel.open_chat([myth_question()], auto_question_id="nope")) is None
        assert client.calls == []

    def test_open_without_auto_question_only_loads_suggestions(self, store, client) -> None:
        panel = make_panel(store, client)

        assert asyncio.run(panel.open_chat([myth_question()])) is None
        assert [q.id for q in panel.suggestions().dynamic] == ["q1"]

    def test_new_session_allows_the_same_auto_question_again(self, store, client) -> None:
        panel = make_panel(store, client)
        item = myth_question()

        async def scenario():
            await panel.open_chat([item], auto_question_id="q1")
            panel.new_session()
            return await panel.open_chat([item], auto_question_id="q1")

        assert asyncio.run(scenario()) is not None
        assert len(client.calls) == 2


class TestSessions:
    """Tests for switching, starting and deleting sessions."""

    def test_use_existing_session_hydrates(self, store, client) -> None:
        panel = make_panel(store, client, section_questions=[
            SuggestionItem(id="g1", testo="Generale"),
            myth_question(),
        ])

        async def scenario():
            await seed_session(store, questions=("Uno", "Due"))
            history = await panel.use_existing_session("old")
            turn = await panel.ask_custom("Tre")
            return history, turn

        history, turn = asyncio.run(scenario())

        assert [t.question for t in history] == ["Uno", "Due"]
        assert panel.current_session_id == "old"
        assert client.calls[-1]["sessionId"] == "old"
        assert panel.dispatcher.session_created
        assert [t.question for t in panel.turns] == ["Uno", "Due", "Tre"]

    def test_hydrated_state_and_suggestions(self, store, client) -> None:
        panel = make_panel(store, client, section_questions=[
            SuggestionItem(id="g1", testo="Generale"),
        ])

        async def scenario():
            await seed_session(store)
            await panel.use_existing_session("old")

        asyncio.run(scenario())

        assert panel.state == PanelState.HISTORY_HYDRATED
        assert not any(t.loading for t in panel.turns)

    def test_use_existing_session_failure_stays_idle(self, client) -> None:
        panel = make_panel(FailingStore(), client)

        history = asyncio.run(panel.use_existing_session("old"))

        assert history == []
        assert panel.turns == []
        assert panel.state == PanelState.IDLE
        assert panel.current_session_id == "old"

    def test_new_session_resets(self, store, client, bus) -> None:
        panel = make_panel(store, client, bus)
        changes = []
        bus.subscribe(ChatEventType.CURRENT_SESSION_CHANGED, lambda e: changes.append(e.session_id))
        asyncio.run(panel.ask_custom("Q"))

        panel.new_session([myth_question()])

        assert panel.state == PanelState.IDLE
        assert panel.turns == []
        assert panel.current_session_id is None
        assert not panel.dispatcher.session_created
        assert changes[-1] is None
        assert [q.id for q in panel.suggestions().dynamic] == ["q1"]

    def test_new_session_gets_a_new_id(self, store, client) -> None:
        panel = make_panel(store, client)

        async def scenario():
            await panel.ask_custom("Uno")
            first = panel.current_session_id
            panel.new_session()
            await panel.ask_custom("Due")
            return first, panel.current_session_id

        first, second = asyncio.run(scenario())

        assert first != second

    def test_delete_current_session(self, store, client, bus) -> None:
        panel = make_panel(store, client, bus)
        published = []
        bus.subscribe(ChatEventType.NEW_SESSION, lambda e: published.append(e.type))
        bus.subscribe(ChatEventType.SESSIONS_CHANGED, lambda e: published.append(e.type))

        async def scenario():
            await panel.ask_custom("Q")
            await panel.dispatcher.drain()
            published.clear()
            await panel.delete_session(panel.current_session_id)
            return await panel.list_sessions()

        sessions = asyncio.run(scenario())

        assert sessions == []
        assert panel.state == PanelState.IDLE
        assert panel.turns == []
        assert panel.current_session_id is None
        assert published == [ChatEventType.NEW_SESSION, ChatEventType.SESSIONS_CHANGED]

    def test_delete_other_session(self, store, client, bus) -> None:
        panel = make_panel(store, client, bus)
        published = []
        bus.subscribe(ChatEventType.NEW_SESSION, lambda e: published.append(e.type))
        bus.subscribe(ChatEventType.SESSIONS_CHANGED, lambda e: published.append(e.type))

        async def scenario():
            await seed_session(store)
            await panel.ask_custom("Q")
            await panel.dispatcher.drain()
            published.clear()
            await panel.delete_session("old")

        asyncio.run(scenario())

        assert panel.state == PanelState.ACTIVE
        assert len(panel.turns) == 1
        assert published == [ChatEventType.SESSIONS_CHANGED]

    def test_delete_failure_propagates(self, store, client) -> None:
        panel = make_panel(store, client)

        async def scenario():
            await store.create_session("foreign", "gem1", "someone-else")
            await panel.delete_session("foreign")

        with pytest.raises(SessionPermissionError):
            asyncio.run(scenario())

    def test_list_sessions(self, store, client) -> None:
        panel = make_panel(store, client)

        async def scenario():
            await seed_session(store)
            return await panel.list_sessions()

        sessions = asyncio.run(scenario())

        assert [(s.id, s.title) for s in sessions] == [("old", "Prima domanda")]

    def test_list_sessions_failure_is_empty(self, client) -> None:
        panel = make_panel(FailingStore(), client)

        assert asyncio.run(panel.list_sessions()) == []


class TestBusEvents:
    """Tests for the panel's bus subscriptions."""

    def test_open_chat_event_asks_auto_question(self, store, client, bus) -> None:
        panel = make_panel(store, client, bus)
        panel.attach()

        async def scenario():
            bus.publish(ChatEvent(
                type=ChatEventType.OPEN_CHAT,
                suggestions=[myth_question()],
                auto_question_id="q1",
            ))
            await bus.drain()

        asyncio.run(scenario())

        assert [t.question for t in panel.turns] == ["È vero che le piante mangiano terra?"]

    def test_use_existing_event(self, store, client, bus) -> None:
        panel = make_panel(store, client, bus)
        panel.attach()

        async def scenario():
            await seed_session(store)
            bus.publish(ChatEvent(type=ChatEventType.USE_EXISTING_SESSION, session_id="old"))
            await bus.drain()

        asyncio.run(scenario())

        assert panel.state == PanelState.HISTORY_HYDRATED

    def test_close_detaches(self, store, client, bus) -> None:
        panel = make_panel(store, client, bus)

        async def scenario():
            panel.start()
            assert bus.handler_count(ChatEventType.OPEN_CHAT) == 1
            await panel.close()

        asyncio.run(scenario())

        assert bus.handler_count(ChatEventType.OPEN_CHAT) == 0
        assert bus.handler_count(ChatEventType.NEW_SESSION) == 0


class TestDayRollover:
    """Tests for the day-scoped id refresh."""

    def test_rollover_refreshes_daily_id(self, store, client, bus) -> None:
        current = [date(2024, 3, 5)]
        identity = SessionIdentityManager(bus, MemoryStorage(), today=lambda: current[0])
        panel = make_panel(store, client, bus, identity=identity)
        first = panel.daily_session_id

        assert not panel.check_day_rollover()
        current[0] = date(2024, 3, 6)
        assert panel.check_day_rollover()

        assert panel.daily_session_id != first
        assert panel.daily_session_id.startswith("day_20240306_")
        assert not panel.check_day_rollover()

    def test_rollover_loop_runs_periodically(self, store, client, bus) -> None:
        current = [date(2024, 3, 5)]
        identity = SessionIdentityManager(bus, MemoryStorage(), today=lambda: current[0])
        panel = make_panel(store, client, bus, identity=identity, rollover_interval=0.01)

        async def scenario():
            panel.start()
            current[0] = date(2024, 3, 6)
            await asyncio.sleep(0.05)
            await panel.close()

        asyncio.run(scenario())

        assert panel.daily_session_id.startswith("day_20240306_")
