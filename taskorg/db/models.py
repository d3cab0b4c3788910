"""Pydantic models for the JSON store document.

Field names are snake_case in Python and camelCase on disk and on the wire.
Unknown keys are kept so documents written by newer versions survive a
round trip through this one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from taskorg.common.utils import parse_iso


class StoreModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class PublicUser(StoreModel):
    id: str
    name: str


class User(StoreModel):
    id: str
    name: str
    password_hash: str = ""
    password_salt: str = ""
    password_algo: str = ""

    def public(self) -> PublicUser:
        return PublicUser(id=self.id, name=self.name)


class Label(StoreModel):
    id: str
    name: str
    color: str = "#d9d9d9"


class ChecklistItem(StoreModel):
    id: str
    text: str
    done: bool = False


class Card(StoreModel):
    id: str
    title: str
    description: str = ""
    checklist: list[ChecklistItem] = Field(default_factory=list)
    label_ids: list[str] = Field(default_factory=list)
    assignee_ids: list[str] = Field(default_factory=list)
    priority: str = ""
    due_date: str = ""
    estimate: str = ""
    created_by_id: str = ""
    created_by_name: str = ""
    created_at: str = ""
    updated_by_id: str = ""
    updated_at: str = ""
    list_entered_at: str = ""
    time_by_list_ms: dict[str, int] = Field(default_factory=dict)
    archived: bool = False
    archived_at: str = ""
    archived_by_id: str = ""
    archived_from_list_id: str = ""

    def current_list_elapsed_ms(self, now: datetime) -> int:
        """Length of the open interval in the current list (never persisted)."""
        entered = parse_iso(self.list_entered_at) or parse_iso(self.created_at)
        if entered is None:
            return 0
        return max(0, int((now - entered).total_seconds() * 1000))


class BoardList(StoreModel):
    id: str
    title: str
    card_ids: list[str] = Field(default_factory=list)


class Board(StoreModel):
    id: str = "board-1"
    name: str = "Team Board"
    labels: list[Label] = Field(default_factory=list)
    lists: list[BoardList] = Field(default_factory=list)
    cards: dict[str, Card] = Field(default_factory=dict)

    def find_list(self, list_id: str) -> BoardList | None:
        return next((lst for lst in self.lists if lst.id == list_id), None)

    def list_containing(self, card_id: str) -> BoardList | None:
        return next((lst for lst in self.lists if card_id in lst.card_ids), None)

    def find_label(self, label_id: str) -> Label | None:
        return next((label for label in self.labels if label.id == label_id), None)


class ActivityEntry(StoreModel):
    id: str
    actor_id: str | None = None
    actor_name: str = "System"
    message: str
    created_at: str


class AuthAuditEntry(StoreModel):
    id: str
    at: str
    ip: str = ""
    type: str
    user_id: str | None = None
    username: str | None = None
    reason: str | None = None
    remember_me: bool | None = None


class StoreDocument(StoreModel):
    users: list[User] = Field(default_factory=list)
    activity: list[ActivityEntry] = Field(default_factory=list)
    auth_audit: list[AuthAuditEntry] = Field(default_factory=list)
    board: Board = Field(default_factory=Board)

    def find_user(self, user_id: str) -> User | None:
        return next((u for u in self.users if u.id == user_id), None)

    def find_user_by_name(self, name: str) -> User | None:
        lowered = name.lower()
        return next((u for u in self.users if u.name.lower() == lowered), None)

    def snapshot(self) -> dict[str, Any]:
        """Board, public users and activity: the payload every client re-fetches."""
        return {
            "board": self.board.to_json(),
            "users": [u.public().to_json() for u in self.users],
            "activity": [entry.to_json() for entry in self.activity],
        }
