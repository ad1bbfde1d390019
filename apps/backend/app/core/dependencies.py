"""FastAPI dependencies for the caller identity and chat services."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from app.core.config import get_llm_settings
from app.db.session import get_conversation_store
from app.services.deep_question import DeepQuestionService
from packages.core.chat.store import HistoryRecordingStore
from packages.llm.answerer import DeepQuestionAnswerer


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """
    Dependency returning the caller's user id.

    Authentication happens upstream; the gateway forwards the verified
    user id in the X-User-Id header.

    Raises:
        HTTPException 401: If the header is missing or blank.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity",
        )
    return x_user_id.strip()


@lru_cache
def get_answerer() -> DeepQuestionAnswerer:
    """Shared answerer built from LLM settings."""
    settings = get_llm_settings()
    return DeepQuestionAnswerer(prompt_version=settings.deep_question_prompt_version)


def get_deep_question_service(
    store: Annotated[HistoryRecordingStore, Depends(get_conversation_store)],
) -> DeepQuestionService:
    return DeepQuestionService(answerer=get_answerer(), store=store)


# Type aliases for convenience
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
ConversationStoreDep = Annotated[HistoryRecordingStore, Depends(get_conversation_store)]
DeepQuestionServiceDep = Annotated[DeepQuestionService, Depends(get_deep_question_service)]
