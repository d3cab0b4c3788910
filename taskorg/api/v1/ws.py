"""WebSocket endpoint for live board signals and the active-user roster."""

from __future__ import annotations

import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from taskorg.api.deps import SESSION_COOKIE, resolve_session
from taskorg.common.enums import LiveEvent
from taskorg.common.logging import get_logger
from taskorg.common.utils import to_iso, utcnow

router = APIRouter(tags=["WebSocket"])

logger = get_logger("ws")


@router.websocket("/ws")
async def live_channel(ws: WebSocket):
    """Identify the user from the session cookie, then stream signals.

    Connections without a valid session are still served board signals
    but do not appear in the roster.
    """
    state = ws.app.state
    ctx = resolve_session(state.store, state.sessions, ws.cookies.get(SESSION_COOKIE))
    manager = state.connections

    conn_id = await manager.connect(ws, ctx.user.public() if ctx else None)
    try:
        await manager.send_personal(conn_id, {"type": LiveEvent.CONNECTED.value, "at": to_iso(utcnow())})
        await manager.send_personal(conn_id, {
            "type": LiveEvent.ACTIVE_USERS.value,
            "users": manager.active_users(),
            "at": to_iso(utcnow()),
        })
        # The new connection already has the roster
        await manager.broadcast_active_users(exclude=conn_id)
        while True:
            data = await ws.receive_text()
            # Only ping is answered; anything else from the client is ignored
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == "ping":
                await manager.send_personal(conn_id, {"type": LiveEvent.PONG.value, "at": to_iso(utcnow())})
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning("WS connection %s failed: %s", conn_id, e)
    finally:
        manager.disconnect(conn_id)
        await manager.broadcast_active_users()
