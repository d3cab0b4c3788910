"""Signed-in board session: ties the API client, reconciler and live channel together."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from taskorg.client.api_client import TaskOrgClient
from taskorg.client.exceptions import ApiError, ClientError
from taskorg.client.live import LiveSync, live_url
from taskorg.client.reconciler import BoardReconciler, CardDraft
from taskorg.common.logging import get_logger

logger = get_logger("client.session")

Notifier = Callable[[str], None]


class BoardSession:
    """Every failed request is passed to ``notify``; a 401 signs the user out."""

    def __init__(
        self,
        api: TaskOrgClient,
        notify: Notifier | None = None,
        live_enabled: bool = True,
    ):
        self.api = api
        self.settings = api.settings
        self.notify = notify or (lambda message: logger.warning("%s", message))
        self.live_enabled = live_enabled
        self.reconciler = BoardReconciler(self.settings.STATE_DIR)
        self.live: LiveSync | None = None

    @property
    def user(self) -> dict[str, Any] | None:
        return self.reconciler.user

    @property
    def signed_in(self) -> bool:
        return self.reconciler.user is not None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _call(self, action: Awaitable[dict[str, Any]]) -> dict[str, Any] | None:
        try:
            return await action
        except ApiError as e:
            self.notify(e.message)
            if e.unauthorized and self.signed_in:
                await self._signed_out()
            return None

    async def _apply(self, action: Awaitable[dict[str, Any]]) -> bool:
        data = await self._call(action)
        if data is None:
            return False
        self.reconciler.apply_snapshot(data)
        return True

    async def _signed_in(self, user: dict[str, Any]) -> None:
        self.reconciler.user = user
        await self.refresh()
        if self.live_enabled and self.signed_in:
            self._start_live()

    async def _signed_out(self) -> None:
        if self.live is not None:
            await self.live.stop()
            self.live = None
        self.reconciler.reset()

    def _start_live(self) -> None:
        if self.live is None:
            self.live = LiveSync(
                live_url(self.api.base_url),
                refresh=self.refresh,
                should_refresh=self.reconciler.can_refresh,
                on_active_users=self._set_active_users,
                cookie_header=self.api.cookie_header,
                reconnect_delay=self.settings.RECONNECT_DELAY_SECONDS,
                refresh_interval=self.settings.REFRESH_INTERVAL_SECONDS,
            )
        self.live.start()

    def _set_active_users(self, users: list[dict[str, Any]]) -> None:
        self.reconciler.active_users = users

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Resume an existing cookie session, if any."""
        me = await self._call(self.api.me())
        if not me or not me.get("user"):
            return False
        await self._signed_in(me["user"])
        return self.signed_in

    async def sign_in(self, username: str, password: str, remember_me: bool = False, register: bool = False) -> bool:
        action = self.api.register if register else self.api.login
        data = await self._call(action(username, password, remember_me))
        if data is None:
            return False
        await self._signed_in(data["user"])
        return self.signed_in

    async def sign_out(self) -> None:
        await self._call(self.api.logout())
        await self._signed_out()

    async def refresh(self) -> bool:
        return await self._apply(self.api.board())

    async def change_password(self, current_password: str, new_password: str) -> bool:
        return await self._call(self.api.change_password(current_password, new_password)) is not None

    # ------------------------------------------------------------------
    # Board actions
    # ------------------------------------------------------------------

    async def create_list(self, title: str) -> bool:
        return await self._apply(self.api.create_list(title))

    async def rename_list(self, list_id: str, title: str) -> bool:
        return await self._apply(self.api.rename_list(list_id, title))

    async def delete_list(self, list_id: str) -> bool:
        return await self._apply(self.api.delete_list(list_id))

    async def create_card(self, list_id: str, title: str) -> bool:
        return await self._apply(self.api.create_card(list_id, title))

    async def move_card(self, card_id: str, target_list_id: str, position: int | None = None) -> bool:
        return await self._apply(self.api.move_card(card_id, target_list_id, position))

    async def archive_card(self, card_id: str) -> bool:
        ok = await self._apply(self.api.archive_card(card_id))
        if ok and self.reconciler.ui.modal_card_id == card_id:
            self.reconciler.close_card()
        return ok

    async def unarchive_card(self, card_id: str) -> bool:
        return await self._apply(self.api.unarchive_card(card_id))

    async def delete_card(self, card_id: str) -> bool:
        ok = await self._apply(self.api.delete_card(card_id))
        if ok and self.reconciler.ui.modal_card_id == card_id:
            self.reconciler.close_card()
        return ok

    async def create_label(self, name: str, color: str | None = None) -> bool:
        return await self._apply(self.api.create_label(name, color))

    async def update_label(self, label_id: str, **fields: Any) -> bool:
        return await self._apply(self.api.update_label(label_id, **fields))

    # ------------------------------------------------------------------
    # Card detail
    # ------------------------------------------------------------------

    def open_card(self, card_id: str) -> None:
        self.reconciler.open_card(card_id)

    async def close_card(self, draft: CardDraft) -> bool:
        """Persist the detail view's edits and close it.

        Returns False, leaving the view open, when the edits were rejected.
        """
        card_id = self.reconciler.ui.modal_card_id
        if not card_id:
            return True
        try:
            plan = self.reconciler.diff_card_edits(card_id, draft)
        except ClientError as e:
            self.notify(e.message)
            return False
        if plan is not None:
            data: dict[str, Any] | None = None
            if plan.fields:
                data = await self._call(self.api.update_card(card_id, plan.fields))
                if data is None:
                    return False
            board = data.get("board") if data else self.reconciler.board
            current_list_id = self.reconciler.card_list_id(card_id, board)
            if plan.target_list_id and current_list_id and current_list_id != plan.target_list_id:
                data = await self._call(self.api.move_card(card_id, plan.target_list_id))
                if data is None:
                    return False
            if data is not None:
                self.reconciler.apply_snapshot(data)
        self.reconciler.close_card()
        return True

    async def aclose(self) -> None:
        if self.live is not None:
            await self.live.stop()
            self.live = None
