"""Live connection registry for board change signals and the active-user roster."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from taskorg.common.enums import LiveEvent
from taskorg.common.logging import get_logger
from taskorg.common.utils import to_iso, utcnow
from taskorg.db.models import PublicUser

logger = get_logger("ws.manager")


@dataclass
class LiveConnection:
    websocket: WebSocket
    user: PublicUser | None = None


class ConnectionManager:
    """Open WebSocket connections, each optionally tagged with its user.

    Pure in-memory state owned by the application; it starts empty and
    clients repopulate it when they reconnect.
    """

    def __init__(self) -> None:
        self._connections: dict[str, LiveConnection] = {}  # conn_id -> connection

    async def connect(self, websocket: WebSocket, user: PublicUser | None = None) -> str:
        await websocket.accept()
        conn_id = uuid.uuid4().hex[:12]
        self._connections[conn_id] = LiveConnection(websocket=websocket, user=user)
        logger.info(
            "WS connected: conn=%s user=%s (%d total)",
            conn_id,
            user.name if user else "-",
            len(self._connections),
        )
        return conn_id

    def disconnect(self, conn_id: str) -> bool:
        """Drop a connection. Returns False if it was already gone."""
        removed = self._connections.pop(conn_id, None)
        if removed is not None:
            logger.info("WS disconnected: conn=%s (%d total)", conn_id, len(self._connections))
        return removed is not None

    def active_users(self) -> list[dict[str, str]]:
        """Connected identities, one entry per user however many tabs they have open."""
        by_id: dict[str, PublicUser] = {}
        for conn in self._connections.values():
            if conn.user is not None and conn.user.id not in by_id:
                by_id[conn.user.id] = conn.user
        users = sorted(by_id.values(), key=lambda u: (u.name.lower(), u.name))
        return [u.to_json() for u in users]

    async def _send(self, conn: LiveConnection, text: str) -> bool:
        try:
            if conn.websocket.client_state != WebSocketState.CONNECTED:
                return False
            await conn.websocket.send_text(text)
            return True
        except Exception as e:
            logger.debug("WS send failed: %s", e)
            return False

    async def send_personal(self, conn_id: str, message: dict[str, Any]) -> None:
        conn = self._connections.get(conn_id)
        if conn is None:
            return
        if not await self._send(conn, json.dumps(message)):
            self.disconnect(conn_id)

    async def broadcast(self, message: dict[str, Any], exclude: str | None = None) -> None:
        """Best effort: a failed send evicts that connection and delivery goes on."""
        text = json.dumps(message)
        dead = []
        for conn_id, conn in list(self._connections.items()):
            if conn_id == exclude:
                continue
            if not await self._send(conn, text):
                dead.append(conn_id)
        roster_changed = False
        for conn_id in dead:
            conn = self._connections.get(conn_id)
            if self.disconnect(conn_id) and conn is not None and conn.user is not None:
                roster_changed = True
        if roster_changed:
            await self.broadcast_active_users()

    async def broadcast_active_users(self, exclude: str | None = None) -> None:
        await self.broadcast({
            "type": LiveEvent.ACTIVE_USERS.value,
            "users": self.active_users(),
            "at": to_iso(utcnow()),
        }, exclude=exclude)

    @property
    def active_connections(self) -> int:
        return len(self._connections)
