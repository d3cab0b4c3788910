"""Live channel listener with reconnect and a fallback refresh timer."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

from websockets.asyncio.client import connect
from websockets.exceptions import WebSocketException

from taskorg.common.enums import LiveEvent
from taskorg.common.logging import get_logger

logger = get_logger("client.live")


def live_url(base_url: str) -> str:
    """``http(s)://host`` -> ``ws(s)://host/ws``."""
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/ws"


class LiveSync:
    """Turns live channel signals into board refreshes.

    ``should_refresh`` is consulted for every signal and every timer tick;
    ``refresh`` is expected to report its own failures.
    """

    def __init__(
        self,
        url: str,
        *,
        refresh: Callable[[], Awaitable[None]],
        should_refresh: Callable[[], bool],
        on_active_users: Callable[[list[dict[str, Any]]], None] | None = None,
        cookie_header: Callable[[], str] | None = None,
        reconnect_delay: float = 2.0,
        refresh_interval: float = 60.0,
    ):
        self.url = url
        self.refresh = refresh
        self.should_refresh = should_refresh
        self.on_active_users = on_active_users
        self.cookie_header = cookie_header
        self.reconnect_delay = reconnect_delay
        self.refresh_interval = refresh_interval
        self.connected = False
        self._stopped = True
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return not self._stopped

    async def handle_message(self, raw: str | bytes) -> None:
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Ignoring malformed live message")
            return
        if not isinstance(msg, dict):
            return
        kind = msg.get("type")
        if kind == LiveEvent.ACTIVE_USERS.value:
            users = msg.get("users")
            if self.on_active_users is not None:
                self.on_active_users(users if isinstance(users, list) else [])
        elif kind == LiveEvent.BOARD_UPDATED.value and self.should_refresh():
            await self._refresh()

    async def _refresh(self) -> None:
        """A failed refresh is logged; the listener and timer keep running."""
        try:
            await self.refresh()
        except Exception:
            logger.exception("Live refresh failed")

    async def _listen(self) -> None:
        while not self._stopped:
            headers = {}
            cookie = self.cookie_header() if self.cookie_header else ""
            if cookie:
                headers["Cookie"] = cookie
            try:
                async with connect(self.url, additional_headers=headers) as ws:
                    self.connected = True
                    logger.info("Live channel connected: %s", self.url)
                    async for raw in ws:
                        await self.handle_message(raw)
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.info("Live channel dropped: %s", e)
            finally:
                self.connected = False
            if self._stopped:
                break
            # No cap on attempts while signed in
            await asyncio.sleep(self.reconnect_delay)

    async def _poll(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.refresh_interval)
            if self.should_refresh():
                await self._refresh()

    def start(self) -> None:
        if not self._stopped:
            return
        self._stopped = False
        self._tasks = [
            asyncio.create_task(self._listen(), name="taskorg-live-listen"),
            asyncio.create_task(self._poll(), name="taskorg-live-poll"),
        ]

    async def stop(self) -> None:
        self._stopped = True
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self.connected = False
