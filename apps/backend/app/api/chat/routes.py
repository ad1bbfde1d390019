"""Deep-topic chat API routes: answer endpoint and session management."""

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.core.config import get_settings
from app.core.dependencies import (
    ConversationStoreDep,
    CurrentUserId,
    DeepQuestionServiceDep,
)
from app.schemas.chat import (
    CreateSessionRequest,
    DeepQuestionRequest,
    HistoryEntrySchema,
    HistoryResponse,
    SessionListResponse,
    SessionSchema,
)
from packages.core.chat.dispatcher import DEEP_QUESTION_APITYPE
from packages.core.chat.store import SessionNotFoundError, SessionPermissionError
from packages.llm.answerer import DeepQuestionError

router = APIRouter()
logger = logging.getLogger(__name__)

settings = get_settings()


def _message(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message})


def _store_error(e: Exception) -> HTTPException:
    if isinstance(e, SessionPermissionError):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to access this session",
        )
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Session not found",
    )


# ──────────────────────────────────────────────
# Answer endpoint
# ──────────────────────────────────────────────


@router.post("/curiow")
async def curiow_api(
    current_user_id: CurrentUserId,
    service: DeepQuestionServiceDep,
    body: dict[str, Any] = Body(...),
):
    """
    Generic Curiow API entry point, dispatched on the "apitype" field.

    Errors are returned as {"message": ...} for the web client.
    """
    apitype = body.get("apitype")
    if apitype != DEEP_QUESTION_APITYPE:
        return _message(status.HTTP_400_BAD_REQUEST, f"apitype non supportato: {apitype}")

    try:
        request = DeepQuestionRequest.model_validate(body)
    except ValidationError as e:
        logger.info(f"Rejected deep-question body: {e.error_count()} errors")
        return _message(status.HTTP_400_BAD_REQUEST, "Richiesta non valida")

    try:
        result = await service.handle(request, current_user_id)
    except DeepQuestionError as e:
        logger.error(f"Deep question failed for gem {request.gem_id}: {e}")
        return _message(status.HTTP_502_BAD_GATEWAY, "Impossibile generare la risposta")

    return result.model_dump()


# ──────────────────────────────────────────────
# Sessions
# ──────────────────────────────────────────────


@router.post(
    "/chat/sessions",
    status_code=status.HTTP_201_CREATED,
    response_model=dict,
)
async def create_session(
    body: CreateSessionRequest,
    current_user_id: CurrentUserId,
    store: ConversationStoreDep,
) -> dict:
    """Create the session document of a conversation."""
    try:
        session_id = await store.create_session(body.session_id, body.gem_id, current_user_id)
    except SessionPermissionError as e:
        raise _store_error(e) from e
    return {"id": session_id}


@router.patch("/chat/sessions/{session_id}/touch", status_code=status.HTTP_204_NO_CONTENT)
async def touch_session(
    session_id: str,
    current_user_id: CurrentUserId,
    store: ConversationStoreDep,
) -> None:
    """Update the last-modified time of a session."""
    try:
        await store.touch_session(session_id, current_user_id)
    except (SessionNotFoundError, SessionPermissionError) as e:
        raise _store_error(e) from e


@router.get("/chat/sessions", response_model=SessionListResponse)
async def list_sessions(
    current_user_id: CurrentUserId,
    store: ConversationStoreDep,
    gem_id: str = Query(..., alias="gemId", min_length=1),
    limit: int = Query(settings.session_list_limit, ge=1, le=100),
) -> SessionListResponse:
    """List the caller's sessions for a gem, most recent first."""
    sessions = await store.list_sessions(gem_id, current_user_id, limit)
    return SessionListResponse(sessions=[SessionSchema.from_session(s) for s in sessions])


@router.get("/chat/sessions/{session_id}/history", response_model=HistoryResponse)
async def get_history(
    session_id: str,
    current_user_id: CurrentUserId,
    store: ConversationStoreDep,
    gem_id: str = Query(..., alias="gemId", min_length=1),
) -> HistoryResponse:
    """Persisted turns of a session, oldest first."""
    try:
        turns = await store.fetch_history(session_id, current_user_id, gem_id)
    except (SessionNotFoundError, SessionPermissionError) as e:
        raise _store_error(e) from e
    return HistoryResponse(
        session_id=session_id,
        entries=[HistoryEntrySchema.from_turn(t) for t in turns],
    )


@router.delete("/chat/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    current_user_id: CurrentUserId,
    store: ConversationStoreDep,
) -> None:
    """Delete a session and its history."""
    try:
        await store.delete_session(session_id, current_user_id)
    except (SessionNotFoundError, SessionPermissionError) as e:
        raise _store_error(e) from e
    logger.info(f"User {current_user_id} deleted session {session_id}")
