"""Whole-document JSON persistence.

The board store is a single JSON document. Every mutation goes through
:meth:`BoardStore.transaction`, which serializes read -> mutate -> write
behind one lock and rewrites the entire document atomically, so the file
always holds one complete prior state.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from taskorg.common.enums import Priority
from taskorg.common.logging import get_logger
from taskorg.common.utils import to_iso, utcnow
from taskorg.db.models import StoreDocument

logger = get_logger("db.store")

DEFAULT_LABEL_COLOR = "#d9d9d9"
HEX_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")

_CARD_STRING_FIELDS = (
    "description",
    "dueDate",
    "estimate",
    "createdByName",
    "archivedAt",
    "archivedById",
    "archivedFromListId",
)


def default_store_document() -> dict[str, Any]:
    return {
        "users": [],
        "activity": [],
        "authAudit": [],
        "board": {
            "id": "board-1",
            "name": "Team Board",
            "labels": [],
            "lists": [
                {"id": "list-todo", "title": "To Do", "cardIds": []},
                {"id": "list-doing", "title": "Doing", "cardIds": []},
                {"id": "list-done", "title": "Done", "cardIds": []},
            ],
            "cards": {},
        },
    }


class DocumentStore(ABC):
    """A place that holds one JSON document, read and written whole."""

    @abstractmethod
    def read(self) -> dict[str, Any]:
        ...

    @abstractmethod
    def write(self, data: dict[str, Any]) -> None:
        ...


class JsonFileStore(DocumentStore):
    def __init__(self, path: Path, default_factory: Callable[[], dict[str, Any]]):
        self.path = Path(path)
        self._default_factory = default_factory

    def ensure(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            logger.info("Creating %s", self.path)
            self.write(self._default_factory())

    def read(self) -> dict[str, Any]:
        self.ensure()
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        text = json.dumps(data, indent=2, ensure_ascii=False)
        # Write to a temp file in the same directory, then replace
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(text)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise


def _normalize_card(card: dict[str, Any]) -> None:
    if not isinstance(card.get("checklist"), list):
        card["checklist"] = []
    if not isinstance(card.get("labelIds"), list):
        card["labelIds"] = []
    if not isinstance(card.get("assigneeIds"), list):
        legacy = card.get("assigneeId")
        card["assigneeIds"] = [str(legacy)] if legacy else []
    card.pop("assigneeId", None)
    if card.get("priority") not in {p.value for p in Priority}:
        card["priority"] = ""
    for key in _CARD_STRING_FIELDS:
        if not isinstance(card.get(key), str):
            card[key] = ""
    if not isinstance(card.get("title"), str):
        card["title"] = str(card.get("title") or "")
    if not isinstance(card.get("createdAt"), str):
        card["createdAt"] = card.get("updatedAt") if isinstance(card.get("updatedAt"), str) else to_iso(utcnow())
    if not isinstance(card.get("updatedAt"), str):
        card["updatedAt"] = card["createdAt"]
    if not isinstance(card.get("createdById"), str):
        card["createdById"] = ""
    if not isinstance(card.get("updatedById"), str):
        card["updatedById"] = card["createdById"]
    if not isinstance(card.get("listEnteredAt"), str):
        card["listEnteredAt"] = card["createdAt"]
    times = card.get("timeByListMs")
    if not isinstance(times, dict):
        times = {}
    normalized_times = {}
    for list_id, value in times.items():
        try:
            normalized_times[str(list_id)] = max(0, int(float(value)))
        except (TypeError, ValueError):
            normalized_times[str(list_id)] = 0
    card["timeByListMs"] = normalized_times
    if not isinstance(card.get("archived"), bool):
        card["archived"] = False


def normalize_document(raw: dict[str, Any]) -> dict[str, Any]:
    """Fill defaults and repair legacy shapes before model validation."""
    data = dict(raw)
    users = data.get("users")
    data["users"] = users if isinstance(users, list) else []
    for user in data["users"]:
        for key in ("passwordHash", "passwordSalt"):
            if not isinstance(user.get(key), str):
                user[key] = ""
        if not isinstance(user.get("passwordAlgo"), str):
            user["passwordAlgo"] = "scrypt" if user["passwordHash"] else ""
    if not isinstance(data.get("activity"), list):
        data["activity"] = []
    if not isinstance(data.get("authAudit"), list):
        data["authAudit"] = []

    board = data.get("board")
    if not isinstance(board, dict):
        board = {"id": "board-1", "name": "Team Board", "labels": [], "lists": [], "cards": {}}
    if not isinstance(board.get("labels"), list):
        board["labels"] = []
    for label in board["labels"]:
        if not isinstance(label.get("color"), str) or not HEX_COLOR_RE.match(label["color"]):
            label["color"] = DEFAULT_LABEL_COLOR
    if not isinstance(board.get("lists"), list):
        board["lists"] = []
    if not isinstance(board.get("cards"), dict):
        board["cards"] = {}
    for card_id, card in board["cards"].items():
        card.setdefault("id", card_id)
        _normalize_card(card)
    data["board"] = board
    return data


class BoardStore:
    """Transaction boundary around the board document."""

    def __init__(self, backend: DocumentStore):
        self.backend = backend
        self._lock = asyncio.Lock()

    @classmethod
    def from_data_dir(cls, data_dir: str | Path) -> BoardStore:
        return cls(JsonFileStore(Path(data_dir) / "store.json", default_store_document))

    def load(self) -> StoreDocument:
        return StoreDocument.model_validate(normalize_document(self.backend.read()))

    def save(self, document: StoreDocument) -> None:
        self.backend.write(document.to_json())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreDocument]:
        """Yield a fresh snapshot; persist it only if the block exits cleanly."""
        async with self._lock:
            document = self.load()
            yield document
            self.save(document)
