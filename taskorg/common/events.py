"""Event helpers for signalling live clients after store writes."""

from __future__ import annotations

from typing import Any, Protocol

from taskorg.common.enums import LiveEvent
from taskorg.common.logging import get_logger
from taskorg.common.utils import to_iso, utcnow

logger = get_logger("events")


class Broadcaster(Protocol):
    async def broadcast(self, message: dict[str, Any]) -> None: ...


async def emit(broadcaster: Broadcaster | None, event: LiveEvent, data: dict[str, Any] | None = None) -> None:
    """Broadcast an event to every live connection.

    Safe to call from anywhere: silently no-ops without a broadcaster and
    never raises into the caller.
    """
    if broadcaster is None:
        return
    message = {"type": event.value, **(data or {}), "at": to_iso(utcnow())}
    try:
        await broadcaster.broadcast(message)
    except Exception as e:
        logger.warning("Event emit failed (non-critical): %s", e)


async def emit_board_updated(broadcaster: Broadcaster | None) -> None:
    await emit(broadcaster, LiveEvent.BOARD_UPDATED)
