"""Client-side board state and the rules for reconciling it with the server.

Nothing in here does I/O besides the seen ledger; the session drives it
with snapshots and UI events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from taskorg.client.exceptions import ClientError
from taskorg.client.ledger import SeenLedger
from taskorg.common.utils import to_iso, utcnow

TEXT_CONTROLS = frozenset({"input", "textarea", "select"})


@dataclass
class UIState:
    focused_control: str | None = None  # tag name of the focused element
    modal_card_id: str | None = None
    prompt_open: bool = False
    labels_dialog_open: bool = False


@dataclass
class CardDraft:
    """What the card detail view holds when it is closed."""

    title: str
    description: str = ""
    assignee_id: str = ""
    list_id: str = ""
    priority: str = ""
    due_date: str = ""
    estimate: str = ""
    checklist: list[dict[str, Any]] = field(default_factory=list)
    label_ids: list[str] = field(default_factory=list)


@dataclass
class CardEditPlan:
    fields: dict[str, Any]
    target_list_id: str | None = None


class BoardReconciler:
    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir).expanduser()
        self.reset()

    def reset(self) -> None:
        """Forget everything; used on sign-out."""
        self.user: dict[str, Any] | None = None
        self.board: dict[str, Any] | None = None
        self.users: list[dict[str, Any]] = []
        self.activity: list[dict[str, Any]] = []
        self.active_users: list[dict[str, Any]] = []
        self.unseen: set[str] = set()
        self.ui = UIState()
        self._ledger: SeenLedger | None = None

    @property
    def ledger(self) -> SeenLedger | None:
        if self.user is None:
            return None
        if self._ledger is None or self._ledger.user_id != self.user["id"]:
            self._ledger = SeenLedger(self.state_dir, self.user["id"])
        return self._ledger

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def apply_snapshot(self, data: dict[str, Any]) -> None:
        """Take in a fresh board payload from an action response or a refresh."""
        if data.get("user"):
            self.user = data["user"]
        if "board" not in data:
            return
        self.mark_unseen_remote_updates(data["board"])
        self.board = data["board"]
        self.users = data.get("users") or []
        self.activity = data.get("activity") or []

    def mark_unseen_remote_updates(self, next_board: dict[str, Any]) -> None:
        ledger = self.ledger
        if ledger is None or not next_board:
            return
        seen = ledger.entries()
        next_cards = next_board.get("cards") or {}
        for card_id, card in next_cards.items():
            updated_by = card.get("updatedById") or ""
            if updated_by and updated_by != self.user["id"] and seen.get(card_id, "") != (card.get("updatedAt") or ""):
                self.unseen.add(card_id)
            else:
                self.unseen.discard(card_id)
        self.unseen.intersection_update(next_cards.keys())

    def is_unseen(self, card_id: str) -> bool:
        return card_id in self.unseen

    def mark_card_seen(self, card_id: str) -> None:
        card = self.card(card_id)
        ledger = self.ledger
        if card is None or ledger is None:
            return
        ledger.mark(card_id, card.get("updatedAt") or to_iso(utcnow()))
        self.unseen.discard(card_id)

    def open_card(self, card_id: str) -> None:
        self.ui.modal_card_id = card_id
        self.mark_card_seen(card_id)

    def close_card(self) -> None:
        self.ui.modal_card_id = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def card(self, card_id: str) -> dict[str, Any] | None:
        if not self.board:
            return None
        return (self.board.get("cards") or {}).get(card_id)

    def card_list_id(self, card_id: str, board: dict[str, Any] | None = None) -> str:
        board = board if board is not None else self.board
        for lst in (board or {}).get("lists") or []:
            if card_id in lst.get("cardIds", []):
                return lst["id"]
        return ""

    def refresh_suppressed(self) -> bool:
        """A background refresh would clobber what the user is doing."""
        ui = self.ui
        if ui.focused_control and ui.focused_control.lower() in TEXT_CONTROLS:
            return True
        return bool(ui.modal_card_id or ui.prompt_open or ui.labels_dialog_open)

    def can_refresh(self) -> bool:
        return self.user is not None and self.board is not None and not self.refresh_suppressed()

    # ------------------------------------------------------------------
    # Card detail edits
    # ------------------------------------------------------------------

    def diff_card_edits(self, card_id: str, draft: CardDraft) -> CardEditPlan | None:
        """What closing the detail view must send, or None if nothing changed.

        Only fields that differ from the last-known server values are sent.
        The view edits the first assignee; any further assignees are kept.
        """
        current = self.card(card_id)
        if current is None or current.get("archived"):
            return None
        title = draft.title.strip()
        estimate = draft.estimate.strip()
        if not title:
            raise ClientError("Card title is required")

        edited = {
            "title": title,
            "description": draft.description,
            "priority": draft.priority,
            "dueDate": draft.due_date,
            "estimate": estimate,
            "checklist": draft.checklist,
            "labelIds": draft.label_ids,
        }
        fields: dict[str, Any] = {}
        for key, value in edited.items():
            known = current.get(key) or ([] if isinstance(value, list) else "")
            if value != known:
                fields[key] = value

        assignee_ids = current_assignees(current)
        primary = assignee_ids[0] if assignee_ids else ""
        if draft.assignee_id != primary:
            rest = [uid for uid in assignee_ids[1:] if uid != draft.assignee_id]
            fields["assigneeIds"] = ([draft.assignee_id] if draft.assignee_id else []) + rest

        target_list_id = draft.list_id if draft.list_id and draft.list_id != self.card_list_id(card_id) else None
        if not fields and target_list_id is None:
            return None
        return CardEditPlan(fields=fields, target_list_id=target_list_id)


def current_assignees(card: dict[str, Any]) -> list[str]:
    """Assignee ids of a card snapshot, honouring the single-assignee form."""
    assignees = card.get("assigneeIds")
    if isinstance(assignees, list):
        return [str(uid) for uid in assignees if uid]
    legacy = card.get("assigneeId")
    return [str(legacy)] if legacy else []
