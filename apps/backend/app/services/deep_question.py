"""Deep-question service: answers a question and records it in history."""

import logging

from app.schemas.chat import DeepQuestionRequest, DeepQuestionResponse
from packages.core.chat.models import ConversationTurn, HistoryEntry
from packages.core.chat.store import HistoryRecordingStore, SessionPermissionError
from packages.llm.answerer import HISTORY_WINDOW, DeepQuestionAnswerer

logger = logging.getLogger(__name__)


class DeepQuestionService:
    """
    Backend of the answer-generation endpoint.

    Loads the recent turns of the caller's session for context, asks
    the LLM and appends the answered question to the session history.
    Only the owner of a session, asking about its gem, writes to it.
    History reads and writes are best effort: an answer is returned
    even when the session is unknown.
    """

    def __init__(self, answerer: DeepQuestionAnswerer, store: HistoryRecordingStore):
        self._answerer = answerer
        self._store = store

    async def handle(
        self,
        request: DeepQuestionRequest,
        user_id: str,
    ) -> DeepQuestionResponse:
        """
        Answer a deep question.

        Raises:
            DeepQuestionError: If the answer cannot be generated.
        """
        history = await self._load_history(request, user_id)

        result = await self._answerer.generate(
            question=request.question_text,
            gem_description=request.description,
            element=request.element,
            history=history,
        )

        if request.session_id:
            await self._record(request, user_id, result.answer, result.questions)

        return DeepQuestionResponse(response=result.answer, questions=result.questions)

    async def _load_history(
        self,
        request: DeepQuestionRequest,
        user_id: str,
    ) -> list[ConversationTurn]:
        if not request.session_id:
            return []
        try:
            history = await self._store.fetch_history(
                request.session_id, user_id, request.gem_id
            )
        except Exception as e:
            logger.info(f"No history for session {request.session_id}: {e}")
            return []
        return history[-HISTORY_WINDOW:]

    async def _record(
        self,
        request: DeepQuestionRequest,
        user_id: str,
        answer: str,
        follow_ups: list[str],
    ) -> None:
        entry = HistoryEntry(
            question=request.question_text,
            answer=answer,
            follow_ups=follow_ups,
            element=request.element,
        )
        try:
            await self._store.append_history(
                request.session_id, user_id, request.gem_id, entry
            )
        except SessionPermissionError as e:
            logger.warning(
                f"Not recording into session {request.session_id} for user {user_id}: {e}"
            )
        except Exception as e:
            logger.warning(
                f"Failed to record history for session {request.session_id}: {e}"
            )
