"""Per-user record of the last card version the user has looked at."""

from __future__ import annotations

from pathlib import Path

from taskorg.common.logging import get_logger
from taskorg.db.store import JsonFileStore

logger = get_logger("client.ledger")


class SeenLedger:
    """``cardId -> updatedAt`` seen by one user, kept in the client state dir."""

    def __init__(self, state_dir: str | Path, user_id: str):
        self.user_id = user_id
        self.backend = JsonFileStore(Path(state_dir).expanduser() / f"seen-cards-{user_id}.json", dict)

    @property
    def path(self) -> Path:
        return self.backend.path

    def entries(self) -> dict[str, str]:
        """Current ledger; an unreadable file counts as empty."""
        try:
            raw = self.backend.read()
        except (OSError, ValueError) as e:
            logger.warning("Seen ledger %s unreadable, treating as empty: %s", self.path, e)
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def get(self, card_id: str) -> str:
        return self.entries().get(card_id, "")

    def mark(self, card_id: str, updated_at: str) -> None:
        entries = self.entries()
        entries[card_id] = updated_at
        self.backend.write(entries)
