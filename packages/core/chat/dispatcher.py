"""
Question dispatcher for the Curiow deep-topic chat.

Turns a question (suggested or typed) into an answered conversation
turn: lazily creates the backing session, calls the answer endpoint
and finalizes the turn in place.
"""

import asyncio
import logging
from typing import Any, Awaitable, Protocol

from packages.core.chat.events import ChatEvent, ChatEventType, EventBus
from packages.core.chat.identity import SessionIdentityManager
from packages.core.chat.models import (
    ConversationTurn,
    ElementContext,
    QuestionOrigin,
)
from packages.core.chat.store import ConversationStore

logger = logging.getLogger(__name__)

DEEP_QUESTION_APITYPE = "deep-question"
ANSWER_KEYS = ("response", "answer", "result", "text")
FOLLOW_UP_KEYS = ("questions", "followUps")

GENERIC_ERROR = "Errore"
INVALID_ANSWER_ERROR = "Risposta non valida"
TIMEOUT_ERROR = "Tempo scaduto"
CANCELLED_ERROR = "Richiesta annullata"

DEFAULT_TIMEOUT_SECONDS = 60.0


# -----------------------------
# Errors / collaborators
# -----------------------------


class AnswerPayloadError(Exception):
    """Raised when the answer endpoint returns no usable answer."""

    pass


class AnswerClient(Protocol):
    """Anything able to call the answer-generation endpoint."""

    async def call_api(self, body: dict[str, Any]) -> Any: ...


class CancellationToken:
    """Per-turn cancellation signal."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


# -----------------------------
# Response parsing
# -----------------------------


def extract_answer(response: Any) -> str:
    """
    Pick the answer text out of an endpoint response.

    Raises:
        AnswerPayloadError: If no aliased key holds a non-empty string.
    """
    if isinstance(response, dict):
        for key in ANSWER_KEYS:
            value = response.get(key)
            if isinstance(value, str) and value.strip():
                return value
    raise AnswerPayloadError(INVALID_ANSWER_ERROR)


def extract_follow_ups(response: Any) -> list[str]:
    """Follow-up questions suggested by the endpoint, if any."""
    if not isinstance(response, dict):
        return []
    for key in FOLLOW_UP_KEYS:
        value = response.get(key)
        if isinstance(value, list):
            return [q.strip() for q in value if isinstance(q, str) and q.strip()]
    return []


# -----------------------------
# Dispatcher
# -----------------------------


class QuestionDispatcher:
    """
    Dispatches questions for one chat panel.

    Owns the panel's turn list and the "session already created" flag.
    Several questions may be in flight at once; each one finalizes the
    turn object it created, so resolution order does not matter.
    """

    def __init__(
        self,
        client: AnswerClient,
        store: ConversationStore,
        identity: SessionIdentityManager,
        bus: EventBus,
        gem_id: str,
        user_id: str | None = None,
        description: str = "",
        timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Initialize the dispatcher.

        Args:
            client: Answer-generation endpoint client.
            store: Conversation store for session documents.
            identity: Identity manager of the owning panel.
            bus: Event bus for the sessions-changed broadcast.
            gem_id: Gem the conversation is about.
            user_id: Current user. Sessions are not persisted without one.
            description: Descriptive context of the gem sent with each question.
            timeout: Seconds a question may take, session creation included.
                None waits forever.
        """
        self._client = client
        self._store = store
        self._identity = identity
        self._bus = bus
        self.gem_id = gem_id
        self.user_id = user_id
        self.description = description
        self._timeout = timeout

        self.turns: list[ConversationTurn] = []
        self.session_created = False
        self._creating: asyncio.Task | None = None
        self._tokens: dict[str, CancellationToken] = {}
        self._background: set[asyncio.Task] = set()

    # -------------------------
    # Public API
    # -------------------------

    async def ask(
        self,
        question: str,
        origin: QuestionOrigin = QuestionOrigin.CUSTOM,
        preset_suggestion_id: str | None = None,
        element: ElementContext | None = None,
    ) -> ConversationTurn:
        """
        Ask a question and wait for its turn to be finalized.

        Args:
            question: Question text.
            origin: Whether it was clicked from a list or typed.
            preset_suggestion_id: Id of the suggestion it came from.
            element: Content section the question relates to.

        Returns:
            The terminal turn (answered or failed).
        """
        session_id = self._identity.ensure_session()

        turn = ConversationTurn(question=question, origin=origin, element=element)
        self.turns.append(turn)
        token = CancellationToken()
        self._tokens[turn.id] = token

        deadline = None
        if self._timeout is not None:
            deadline = asyncio.get_running_loop().time() + self._timeout

        try:
            await self._guarded(self._ensure_session_created(session_id), token, deadline)

            payload = self.build_payload(question, session_id, element, preset_suggestion_id)
            response = await self._guarded(self._client.call_api(payload), token, deadline)
            answer = extract_answer(response)
        except _Interrupted as e:
            turn.fail(str(e))
            logger.info(f"Question on gem {self.gem_id} interrupted: {e}")
        except Exception as e:
            turn.fail(str(e) or GENERIC_ERROR)
            logger.warning(f"Question on gem {self.gem_id} failed: {e}")
        else:
            turn.resolve(answer, extract_follow_ups(response))
            self._spawn(self._after_answer(session_id))
        finally:
            self._tokens.pop(turn.id, None)

        return turn

    async def ask_follow_up(
        self,
        question: str,
        element: ElementContext | None = None,
    ) -> ConversationTurn:
        """Ask a follow-up chip; always tagged as a custom question."""
        return await self.ask(question, QuestionOrigin.CUSTOM, element=element)

    def cancel(self, turn_id: str) -> bool:
        """
        Cancel an in-flight question.

        Returns:
            True if the turn was still pending.
        """
        token = self._tokens.get(turn_id)
        if token is None:
            return False
        token.cancel()
        return True

    def build_payload(
        self,
        question: str,
        session_id: str,
        element: ElementContext | None = None,
        preset_suggestion_id: str | None = None,
    ) -> dict[str, Any]:
        """Request body for the answer endpoint."""
        element_payload = (element or ElementContext()).to_payload()
        payload: dict[str, Any] = {
            "apitype": DEEP_QUESTION_APITYPE,
            "gemId": self.gem_id,
            "description": self.description,
            "questionText": question,
            "element": element_payload,
            "sessionId": session_id,
        }
        if preset_suggestion_id:
            payload["questionId"] = preset_suggestion_id
        return payload

    def reset(self) -> None:
        """Start over with no turns and no persisted session."""
        for token in self._tokens.values():
            token.cancel()
        self.turns = []
        self.session_created = False
        self._creating = None

    def hydrate(self, turns: list[ConversationTurn]) -> None:
        """Install turns loaded from an existing, already persisted session."""
        self.reset()
        self.turns = list(turns)
        self.session_created = True

    async def drain(self) -> None:
        """Wait for background touches to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -------------------------
    # Internals
    # -------------------------

    async def _ensure_session_created(self, session_id: str) -> None:
        if self.session_created or not self.user_id:
            return

        if self._creating is None:
            self._creating = asyncio.ensure_future(
                self._store.create_session(session_id, self.gem_id, self.user_id)
            )
        creating = self._creating

        try:
            await asyncio.shield(creating)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Flag stays unset: the next question attempts creation again
            logger.error(f"Failed to create session {session_id}: {e}", exc_info=True)
            if self._creating is creating:
                self._creating = None
            return

        if self._creating is creating:
            self.session_created = True

    async def _guarded(
        self,
        coro: Awaitable[Any],
        token: CancellationToken,
        deadline: float | None,
    ) -> Any:
        """Await coro unless the turn is cancelled or its deadline passes first."""
        call = asyncio.ensure_future(coro)
        cancelled = asyncio.ensure_future(token.wait())
        timeout = None
        if deadline is not None:
            timeout = max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            done, _ = await asyncio.wait(
                {call, cancelled},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancelled.cancel()

        if call in done:
            return call.result()

        call.cancel()
        if cancelled in done:
            raise _Interrupted(CANCELLED_ERROR)
        raise _Interrupted(TIMEOUT_ERROR)

    async def _after_answer(self, session_id: str) -> None:
        try:
            await self._store.touch_session(session_id, self.user_id)
        except Exception as e:
            logger.warning(f"Failed to touch session {session_id}: {e}")
        self._bus.publish(
            ChatEvent(type=ChatEventType.SESSIONS_CHANGED, session_id=session_id)
        )

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


class _Interrupted(Exception):
    """Raised internally when a question times out or is cancelled."""

    pass
