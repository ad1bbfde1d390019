"""
Tests for the conversation store.

Tests cover:
1. History normalization (aliases, timestamps, missing answers)
2. Session listing order and title derivation
3. Ownership checks of the in-memory store
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from packages.core.chat.models import (
    DEFAULT_SESSION_TITLE,
    ConversationSession,
    HistoryEntry,
    TurnStatus,
)
from packages.core.chat.store import (
    MISSING_ANSWER_ERROR,
    InMemoryConversationStore,
    SessionNotFoundError,
    SessionPermissionError,
    coerce_timestamp,
    normalize_history_entry,
)


# ==============================
# Normalization
# ==============================


class TestCoerceTimestamp:
    """Tests for coerce_timestamp."""

    def test_aware_datetime_passes_through(self) -> None:
        value = datetime(2024, 3, 5, 12, tzinfo=timezone.utc)
        assert coerce_timestamp(value) == value

    def test_naive_datetime_is_utc(self) -> None:
        assert coerce_timestamp(datetime(2024, 3, 5)).tzinfo == timezone.utc

    def test_firestore_dict(self) -> None:
        value = coerce_timestamp({"seconds": 1709640000, "nanoseconds": 500_000_000})
        assert value == datetime(2024, 3, 5, 12, 0, 0, 500_000, tzinfo=timezone.utc)

    def test_serialized_firestore_dict(self) -> None:
        assert coerce_timestamp({"_seconds": 1709640000}).year == 2024

    def test_object_with_to_datetime(self) -> None:
        class Stamp:
            def to_datetime(self):
                return datetime(2024, 3, 5, tzinfo=timezone.utc)

        assert coerce_timestamp(Stamp()) == datetime(2024, 3, 5, tzinfo=timezone.utc)

    def test_epoch_seconds_and_millis(self) -> None:
        assert coerce_timestamp(1709640000) == coerce_timestamp(1709640000000)

    def test_iso_string(self) -> None:
        assert coerce_timestamp("2024-03-05T12:00:00Z") == datetime(
            2024, 3, 5, 12, tzinfo=timezone.utc
        )

    def test_garbage_maps_to_now(self) -> None:
        before = datetime.now(timezone.utc)
        assert coerce_timestamp("not a date") >= before
        assert coerce_timestamp(None) >= before


class TestNormalizeHistoryEntry:
    """Tests for normalize_history_entry."""

    def test_answer_alias_and_follow_ups(self) -> None:
        turn = normalize_history_entry({
            "question": "Q",
            "response": "A",
            "questions": ["F1", "", "F2"],
        })

        assert turn.status == TurnStatus.ANSWERED
        assert turn.answer == "A"
        assert turn.follow_ups == ["F1", "F2"]
        assert not turn.loading

    def test_answer_preferred_over_response(self) -> None:
        turn = normalize_history_entry({"question": "Q", "answer": "A1", "response": "A2"})
        assert turn.answer == "A1"

    def test_follow_up_aliases(self) -> None:
        assert normalize_history_entry(
            {"question": "Q", "answer": "A", "followUps": ["F"]}
        ).follow_ups == ["F"]
        assert normalize_history_entry(
            {"question": "Q", "answer": "A", "follow_ups": ["G"]}
        ).follow_ups == ["G"]

    def test_missing_answer_becomes_failed_turn(self) -> None:
        turn = normalize_history_entry({"question": "Q", "answer": "  "})

        assert turn.status == TurnStatus.FAILED
        assert turn.answer is None
        assert turn.error == MISSING_ANSWER_ERROR

    def test_element_is_kept(self) -> None:
        turn = normalize_history_entry({
            "question": "Q",
            "answer": "A",
            "element": {"name": "myth", "title": None, "test": "T", "index": None},
        })

        assert turn.element.name == "myth"
        assert turn.element.test == "T"

    def test_created_at_is_coerced(self) -> None:
        turn = normalize_history_entry(
            {"question": "Q", "answer": "A", "createdAt": {"seconds": 1709640000}}
        )
        assert turn.created_at.year == 2024


# ==============================
# In-memory store
# ==============================


@pytest.fixture
def store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


def _entry(question: str, answer: str = "A") -> HistoryEntry:
    return HistoryEntry(question=question, answer=answer, follow_ups=["F"])


class TestInMemoryConversationStore:
    """Tests for InMemoryConversationStore."""

    def test_create_and_fetch_history(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            await store.append_history("s1", "u1", "gem1", _entry("Prima"))
            await store.append_history("s1", "u1", "gem1", _entry("Seconda"))
            return await store.fetch_history("s1", "u1", "gem1")

        history = asyncio.run(scenario())

        assert [t.question for t in history] == ["Prima", "Seconda"]
        assert all(t.status == TurnStatus.ANSWERED for t in history)
        assert history[0].follow_ups == ["F"]

    def test_create_is_idempotent_for_the_owner(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            return await store.create_session("s1", "gem1", "u1")

        assert asyncio.run(scenario()) == "s1"

    def test_create_rejects_foreign_id(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            await store.create_session("s1", "gem1", "u2")

        with pytest.raises(SessionPermissionError):
            asyncio.run(scenario())

    def test_touch_unknown_session(self, store: InMemoryConversationStore) -> None:
        with pytest.raises(SessionNotFoundError):
            asyncio.run(store.touch_session("missing"))

    def test_fetch_history_of_other_gem_is_empty(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            await store.append_history("s1", "u1", "gem1", _entry("Q"))
            return await store.fetch_history("s1", "u1", "gem2")

        assert asyncio.run(scenario()) == []

    def test_fetch_history_of_other_user_is_denied(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            await store.fetch_history("s1", "u2", "gem1")

        with pytest.raises(SessionPermissionError):
            asyncio.run(scenario())

    def test_delete_session(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            await store.delete_session("s1", "u1")
            return await store.list_sessions("gem1", "u1")

        assert asyncio.run(scenario()) == []

    def test_delete_by_other_user_is_denied(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            await store.delete_session("s1", "u2")

        with pytest.raises(SessionPermissionError):
            asyncio.run(scenario())

    def test_append_by_other_user_is_denied(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            with pytest.raises(SessionPermissionError):
                await store.append_history("s1", "u2", "gem1", _entry("Intrusa"))
            return await store.fetch_history("s1", "u1", "gem1")

        assert asyncio.run(scenario()) == []

    def test_append_for_other_gem_is_denied(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            await store.append_history("s1", "u1", "gem2", _entry("Q"))

        with pytest.raises(SessionPermissionError):
            asyncio.run(scenario())

    def test_touch_by_other_user_is_denied(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            before = store._sessions["s1"].modified_at
            with pytest.raises(SessionPermissionError):
                await store.touch_session("s1", "u2")
            return before, store._sessions["s1"].modified_at

        before, after = asyncio.run(scenario())

        assert after == before


class TestListSessions:
    """Tests for ConversationStore.list_sessions."""

    def test_sorted_by_modified_desc_with_titles(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            for session_id in ("old", "new", "other-gem"):
                await store.create_session(
                    session_id, "gem2" if session_id == "other-gem" else "gem1", "u1"
                )
            await store.append_history("old", "u1", "gem1", _entry("Domanda vecchia"))
            store._sessions["old"].modified_at -= timedelta(hours=1)
            return await store.list_sessions("gem1", "u1")

        sessions = asyncio.run(scenario())

        assert [s.id for s in sessions] == ["new", "old"]
        assert sessions[0].title == DEFAULT_SESSION_TITLE
        assert sessions[1].title == "Domanda vecchia"

    def test_limit(self, store: InMemoryConversationStore) -> None:
        async def scenario():
            for i in range(5):
                await store.create_session(f"s{i}", "gem1", "u1")
            return await store.list_sessions("gem1", "u1", limit=2)

        assert len(asyncio.run(scenario())) == 2

    def test_title_lookup_failure_uses_default(self) -> None:
        """A failing history read never breaks the listing."""

        class FlakyStore(InMemoryConversationStore):
            async def fetch_history(self, session_id, user_id, gem_id):
                raise RuntimeError("read failed")

        store = FlakyStore()

        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            return await store.list_sessions("gem1", "u1")

        sessions = asyncio.run(scenario())

        assert [s.title for s in sessions] == [DEFAULT_SESSION_TITLE]

    def test_stored_title_is_kept(self, store: InMemoryConversationStore) -> None:
        now = datetime.now(timezone.utc)

        async def scenario():
            await store.create_session("s1", "gem1", "u1")
            store._sessions["s1"] = ConversationSession(
                id="s1",
                gem_id="gem1",
                user_id="u1",
                created_at=now,
                modified_at=now,
                title="Titolo salvato",
            )
            return await store.list_sessions("gem1", "u1")

        assert asyncio.run(scenario())[0].title == "Titolo salvato"
