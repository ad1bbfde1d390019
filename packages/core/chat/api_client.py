"""
HTTP clients for the Curiow backend.

CuriowApiClient calls the answer-generation endpoint;
HttpConversationStore implements ConversationStore over the session
routes of the same service. History entries are written server side
by the answer endpoint.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from packages.core.chat.models import (
    DEFAULT_SESSION_TITLE,
    ConversationSession,
    ConversationTurn,
)
from packages.core.chat.store import (
    ConversationStore,
    ConversationStoreError,
    SessionNotFoundError,
    SessionPermissionError,
    coerce_timestamp,
    normalize_history_entry,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str | None]]

UNAUTHENTICATED_ERROR = "Utente non autenticato."
GENERIC_API_ERROR = "Errore API"


class AnswerApiError(Exception):
    """Raised when the answer endpoint cannot be reached or refuses a call."""

    pass


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
        if isinstance(message, str) and message:
            return message
    return default


class CuriowApiClient:
    """
    Client for the answer-generation endpoint.

    Every call carries the current user's bearer token and user id;
    calls without a token are refused before reaching the network.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        user_id: str,
        path: str = "/api/curiow",
        timeout: float | None = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Backend base URL.
            token_provider: Coroutine returning the user's token, or None.
            user_id: Id of the signed-in user, sent as X-User-Id.
            path: Path of the answer endpoint.
            timeout: Transport timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._token_provider = token_provider
        self._user_id = user_id
        self._path = path
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def call_api(self, body: dict[str, Any]) -> Any:
        """
        POST a JSON body to the endpoint.

        Returns:
            The decoded JSON response, or {} if the body is not JSON.

        Raises:
            AnswerApiError: If unauthenticated or the server answers non-2xx.
        """
        token = await self._token_provider()
        if not token:
            raise AnswerApiError(UNAUTHENTICATED_ERROR)

        try:
            response = await self._http.post(
                self._path,
                json=body,
                headers={
                    "Authorization": f"Bearer {token}",
                    "X-User-Id": self._user_id,
                },
            )
        except httpx.HTTPError as e:
            raise AnswerApiError(str(e) or GENERIC_API_ERROR) from e

        if response.is_error:
            raise AnswerApiError(_error_message(response, GENERIC_API_ERROR))

        try:
            return response.json()
        except ValueError:
            return {}

    async def aclose(self) -> None:
        await self._http.aclose()


class HttpConversationStore(ConversationStore):
    """ConversationStore backed by the /api/chat/sessions routes."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        prefix: str = "/api/chat/sessions",
        timeout: float | None = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._user_id = user_id
        self._prefix = prefix
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"X-User-Id": user_id},
        )

    async def create_session(self, session_id: str, gem_id: str, user_id: str) -> str:
        data = await self._request(
            "POST",
            self._prefix,
            json={"sessionId": session_id, "gemId": gem_id},
            user_id=user_id,
        )
        return data.get("id", session_id)

    async def touch_session(self, session_id: str, user_id: str | None = None) -> None:
        await self._request("PATCH", f"{self._prefix}/{session_id}/touch", user_id=user_id)

    async def fetch_history(
        self,
        session_id: str,
        user_id: str,
        gem_id: str,
    ) -> list[ConversationTurn]:
        data = await self._request(
            "GET",
            f"{self._prefix}/{session_id}/history",
            params={"gemId": gem_id},
            user_id=user_id,
        )
        return [normalize_history_entry(raw) for raw in data.get("entries", [])]

    async def delete_session(self, session_id: str, user_id: str) -> None:
        await self._request("DELETE", f"{self._prefix}/{session_id}", user_id=user_id)

    async def _query_sessions(
        self,
        gem_id: str,
        user_id: str,
        limit: int,
    ) -> list[ConversationSession]:
        data = await self._request(
            "GET",
            self._prefix,
            params={"gemId": gem_id, "limit": limit},
            user_id=user_id,
        )
        return [
            ConversationSession(
                id=item["id"],
                gem_id=item.get("gemId", gem_id),
                user_id=item.get("userId", user_id),
                created_at=coerce_timestamp(item.get("createdAt")),
                modified_at=coerce_timestamp(item.get("modifiedAt")),
                title=item.get("title") or DEFAULT_SESSION_TITLE,
            )
            for item in data.get("sessions", [])
        ]

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        user_id: str | None = None,
        **kwargs,
    ) -> dict[str, Any]:
        headers = {"X-User-Id": user_id} if user_id else None
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ConversationStoreError(str(e)) from e

        if response.status_code == 404:
            raise SessionNotFoundError(_error_message(response, "Session not found"))
        if response.status_code == 403:
            raise SessionPermissionError(_error_message(response, "Forbidden"))
        if response.is_error:
            raise ConversationStoreError(_error_message(response, GENERIC_API_ERROR))

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}
