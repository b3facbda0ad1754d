"""Async REST client for the pickup game backend.

Covers the endpoints the chat core and identity flow depend on:

    GET  /message/{gameId}      message history for a game
    POST /message               persist (and broadcast) a message
    POST /auth/login            -> {token, ...}
    POST /auth/register         -> {token, ...}
    GET  /auth/user/{id}        user profile

Non-2xx responses raise ``BackendError`` carrying the body's ``error`` field
when the backend supplies one.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from ..config import BackendSettings

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """The backend answered with a non-success status."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class BackendClient:
    """Thin wrapper over ``httpx.AsyncClient`` bound to the backend base URL."""

    def __init__(
        self,
        settings: Optional[BackendSettings] = None,
        *,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or BackendSettings()
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.request_timeout_seconds,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def get_messages(self, game_id: str) -> Any:
        return await self._request("GET", f"/message/{game_id}")

    async def post_message(
        self,
        game_id: str,
        user_id: str,
        message: str,
        message_type: str = "text",
    ) -> Any:
        return await self._request(
            "POST",
            "/message",
            json={
                "gameId": game_id,
                "userId": user_id,
                "message": message,
                "messageType": message_type,
            },
        )

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/auth/login", json={"username": username, "password": password}
        )

    async def register(self, username: str, password: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/auth/register", json={"username": username, "password": password}
        )

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/auth/user/{user_id}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        resp = await self._http.request(method, url, **kwargs)
        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.is_error:
            detail = ""
            if isinstance(data, dict):
                detail = str(data.get("error") or data.get("detail") or "")
            detail = detail or resp.reason_phrase or "request failed"
            logger.warning("%s %s failed: %s %s", method, url, resp.status_code, detail)
            raise BackendError(resp.status_code, detail)

        if data is None and resp.content:
            raise ValueError(f"{method} {url}: response body is not JSON")
        return data
