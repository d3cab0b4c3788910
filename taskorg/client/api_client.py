"""Async HTTP client for the board API."""

from __future__ import annotations

from typing import Any

import httpx

from taskorg.client.config import ClientSettings
from taskorg.client.exceptions import ApiError
from taskorg.common.logging import get_logger

logger = get_logger("client.api")

CSRF_HEADER = "X-CSRF-Token"
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class TaskOrgClient:
    """Cookie-session client that tracks the anti-forgery token for you.

    Pass ``http`` to run against an in-process app (e.g. an
    ``httpx.AsyncClient`` over ``ASGITransport``).
    """

    def __init__(self, settings: ClientSettings | None = None, http: httpx.AsyncClient | None = None):
        self.settings = settings or ClientSettings()
        self._http = http or httpx.AsyncClient(
            base_url=self.settings.BASE_URL,
            timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
        )
        self.csrf_token: str | None = None

    async def __aenter__(self) -> TaskOrgClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @property
    def base_url(self) -> str:
        return str(self._http.base_url)

    def cookie_header(self) -> str:
        return "; ".join(f"{cookie.name}={cookie.value}" for cookie in self._http.cookies.jar)

    async def request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        method = method.upper()
        headers = {}
        if method in MUTATING_METHODS and self.csrf_token:
            headers[CSRF_HEADER] = self.csrf_token
        try:
            response = await self._http.request(method, path, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ApiError(0, f"Request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if "csrfToken" in data:
            self.csrf_token = data["csrfToken"] or None
        if response.is_error:
            raise ApiError(response.status_code, data.get("detail") or f"Request failed ({response.status_code})")
        return data

    # ---------- Session ----------

    async def meta(self) -> dict[str, Any]:
        return await self.request("GET", "/api/meta")

    async def me(self) -> dict[str, Any]:
        return await self.request("GET", "/api/me")

    async def register(self, username: str, password: str, remember_me: bool = False) -> dict[str, Any]:
        return await self.request(
            "POST", "/api/register", {"username": username, "password": password, "rememberMe": remember_me}
        )

    async def login(self, username: str, password: str, remember_me: bool = False) -> dict[str, Any]:
        return await self.request(
            "POST", "/api/login", {"username": username, "password": password, "rememberMe": remember_me}
        )

    async def logout(self) -> dict[str, Any]:
        return await self.request("POST", "/api/logout")

    async def change_password(self, current_password: str, new_password: str) -> dict[str, Any]:
        return await self.request(
            "POST",
            "/api/change-password",
            {"currentPassword": current_password, "newPassword": new_password},
        )

    # ---------- Board ----------

    async def board(self) -> dict[str, Any]:
        return await self.request("GET", "/api/board")

    async def create_list(self, title: str) -> dict[str, Any]:
        return await self.request("POST", "/api/lists", {"title": title})

    async def rename_list(self, list_id: str, title: str) -> dict[str, Any]:
        return await self.request("PATCH", f"/api/lists/{list_id}", {"title": title})

    async def delete_list(self, list_id: str) -> dict[str, Any]:
        return await self.request("DELETE", f"/api/lists/{list_id}")

    async def create_card(self, list_id: str, title: str) -> dict[str, Any]:
        return await self.request("POST", "/api/cards", {"listId": list_id, "title": title})

    async def update_card(self, card_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await self.request("PATCH", f"/api/cards/{card_id}", fields)

    async def move_card(self, card_id: str, target_list_id: str, position: int | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"targetListId": target_list_id}
        if position is not None:
            body["position"] = position
        return await self.request("POST", f"/api/cards/{card_id}/move", body)

    async def archive_card(self, card_id: str) -> dict[str, Any]:
        return await self.request("POST", f"/api/cards/{card_id}/archive")

    async def unarchive_card(self, card_id: str) -> dict[str, Any]:
        return await self.request("POST", f"/api/cards/{card_id}/unarchive")

    async def delete_card(self, card_id: str) -> dict[str, Any]:
        return await self.request("DELETE", f"/api/cards/{card_id}")

    async def create_label(self, name: str, color: str | None = None) -> dict[str, Any]:
        return await self.request("POST", "/api/labels", {"name": name, "color": color})

    async def update_label(self, label_id: str, **fields: Any) -> dict[str, Any]:
        return await self.request("PATCH", f"/api/labels/{label_id}", fields)
