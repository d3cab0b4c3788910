"""Pure board rules: validation, ordering and time accounting.

Nothing here touches the disk or the network. The service layer wraps
these helpers in a store transaction.
"""

from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any

from taskorg.common.enums import Priority
from taskorg.common.exceptions import BadRequestError
from taskorg.common.utils import make_id, parse_iso, to_iso
from taskorg.db.models import ActivityEntry, Board, BoardList, Card, ChecklistItem, StoreDocument, User
from taskorg.db.store import DEFAULT_LABEL_COLOR, HEX_COLOR_RE

LIST_TITLE_MAX = 60
CARD_TITLE_MAX = 100
DESCRIPTION_MAX = 500
CHECKLIST_MAX_ITEMS = 30
CHECKLIST_TEXT_MAX = 120
LABEL_NAME_MAX = 30
CARD_LABELS_MAX = 12
DONE_LIST_TITLE = "done"

DUE_DATE_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
PRIORITIES = tuple(p.value for p in Priority)


def clean_text(raw: Any, max_length: int) -> str:
    return str(raw if raw is not None else "").strip()[:max_length]


def log_activity(doc: StoreDocument, user: User | None, message: str, now: datetime, limit: int) -> None:
    doc.activity.append(
        ActivityEntry(
            id=make_id("activity"),
            actor_id=user.id if user else None,
            actor_name=user.name if user else "System",
            message=message,
            created_at=to_iso(now),
        )
    )
    if len(doc.activity) > limit:
        doc.activity = doc.activity[-limit:]


# ----------------------------------------------------------------------
# Ordering and time accounting
# ----------------------------------------------------------------------


def accumulate_list_time(card: Card, list_id: str, now: datetime) -> int:
    """Close the open interval in ``list_id`` and add it to the card's total."""
    entered = parse_iso(card.list_entered_at) or parse_iso(card.created_at) or now
    delta = max(0, int((now - entered).total_seconds() * 1000))
    card.time_by_list_ms[list_id] = max(0, card.time_by_list_ms.get(list_id, 0)) + delta
    return delta


def detach_card(board: Board, card_id: str) -> BoardList | None:
    """Remove the card from whichever list holds it and return that list."""
    lst = board.list_containing(card_id)
    if lst is not None:
        lst.card_ids.remove(card_id)
    return lst


def clamp_position(position: Any, length: int) -> int:
    """Insertion index for a move. Anything but an integer means append."""
    if isinstance(position, bool):
        return length
    if isinstance(position, float) and position.is_integer():
        position = int(position)
    if not isinstance(position, int):
        return length
    return max(0, min(position, length))


def resolve_restore_list(board: Board, card: Card) -> BoardList | None:
    """Where an unarchived card goes: its source list, else the first non-Done list, else the first list."""
    preferred = board.find_list(card.archived_from_list_id) if card.archived_from_list_id else None
    if preferred is not None:
        return preferred
    fallback = next((lst for lst in board.lists if lst.title.lower() != DONE_LIST_TITLE), None)
    if fallback is not None:
        return fallback
    return board.lists[0] if board.lists else None


# ----------------------------------------------------------------------
# Field validation
# ----------------------------------------------------------------------


def normalize_checklist(raw: Any) -> list[ChecklistItem]:
    if not isinstance(raw, list):
        raise BadRequestError("Checklist must be an array")
    items = []
    for entry in raw[:CHECKLIST_MAX_ITEMS]:
        entry = entry if isinstance(entry, dict) else {}
        text = clean_text(entry.get("text"), CHECKLIST_TEXT_MAX)
        if not text:
            continue
        items.append(
            ChecklistItem(
                id=str(entry.get("id") or make_id("chk")),
                text=text,
                done=bool(entry.get("done")),
            )
        )
    return items


def normalize_label_ids(raw: Any, board: Board) -> list[str]:
    """Keep known label ids only, deduplicated, in request order."""
    if not isinstance(raw, list):
        raise BadRequestError("labelIds must be an array")
    valid = {label.id for label in board.labels}
    seen: list[str] = []
    for value in raw:
        label_id = str(value)
        if label_id in valid and label_id not in seen:
            seen.append(label_id)
    return seen[:CARD_LABELS_MAX]


def normalize_priority(raw: Any) -> str:
    priority = str(raw or "")
    if priority not in PRIORITIES:
        raise BadRequestError("Invalid priority")
    return priority


def normalize_due_date(raw: Any) -> str:
    due_date = str(raw or "")
    if due_date and not DUE_DATE_RE.match(due_date):
        raise BadRequestError("Invalid due date")
    return due_date


def _format_number(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


def normalize_estimate(raw: Any) -> str:
    text = str(raw if raw is not None else "").strip()
    if text == "":
        return ""
    try:
        value = float(text)
    except ValueError:
        raise BadRequestError("Estimate effort must be hours (number)")
    if not math.isfinite(value) or value < 0:
        raise BadRequestError("Estimate effort must be hours (number)")
    return _format_number(math.floor(value * 100 + 0.5) / 100)


def normalize_assignees(fields: dict[str, Any], doc: StoreDocument) -> list[str]:
    if "assigneeIds" in fields:
        raw = fields["assigneeIds"]
        if not isinstance(raw, list):
            raise BadRequestError("assigneeIds must be an array")
        assignee_ids: list[str] = []
        for value in raw:
            if value is None or value == "":
                continue
            user_id = str(value)
            if user_id not in assignee_ids:
                assignee_ids.append(user_id)
    else:
        legacy = fields.get("assigneeId")
        assignee_ids = [str(legacy)] if legacy else []
    known = {u.id for u in doc.users}
    if any(user_id not in known for user_id in assignee_ids):
        raise BadRequestError("Invalid assignee")
    return assignee_ids


def plan_card_edit(doc: StoreDocument, card: Card, fields: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Validate an edit and describe it without mutating anything.

    ``fields`` uses the wire (camelCase) names and only holds keys the
    client actually sent. Returns the attribute updates to apply and the
    human readable changes; a value equal to the current one is applied
    but not described.
    """
    updates: dict[str, Any] = {}
    changes: list[str] = []

    if "title" in fields:
        title = clean_text(fields["title"], CARD_TITLE_MAX)
        if not title:
            raise BadRequestError("Card title cannot be empty")
        if title != card.title:
            changes.append(f'renamed card to "{title}"')
        updates["title"] = title

    if "description" in fields:
        description = str(fields["description"] if fields["description"] is not None else "")[:DESCRIPTION_MAX]
        if description != card.description:
            changes.append("updated card description")
        updates["description"] = description

    if "checklist" in fields:
        checklist = normalize_checklist(fields["checklist"])
        if [item.to_json() for item in checklist] != [item.to_json() for item in card.checklist]:
            changes.append("updated checklist")
        updates["checklist"] = checklist

    if "labelIds" in fields:
        label_ids = normalize_label_ids(fields["labelIds"], doc.board)
        if label_ids != card.label_ids:
            changes.append("updated labels")
        updates["label_ids"] = label_ids

    if "priority" in fields:
        priority = normalize_priority(fields["priority"])
        if priority != card.priority:
            changes.append(f"set priority to {priority}" if priority else "cleared priority")
        updates["priority"] = priority

    if "dueDate" in fields:
        due_date = normalize_due_date(fields["dueDate"])
        if due_date != card.due_date:
            changes.append("updated due date" if due_date else "cleared due date")
        updates["due_date"] = due_date

    if "estimate" in fields:
        estimate = normalize_estimate(fields["estimate"])
        if estimate != card.estimate:
            changes.append("updated estimate effort" if estimate else "cleared estimate effort")
        updates["estimate"] = estimate

    if "assigneeIds" in fields or "assigneeId" in fields:
        assignee_ids = normalize_assignees(fields, doc)
        if assignee_ids != card.assignee_ids:
            changes.append("updated assignees" if assignee_ids else "cleared assignees")
        updates["assignee_ids"] = assignee_ids

    return updates, changes


def normalize_label_color(raw: Any) -> str:
    color = str(raw or "")
    return color if HEX_COLOR_RE.match(color) else DEFAULT_LABEL_COLOR


def label_name_taken(board: Board, name: str, exclude_id: str | None = None) -> bool:
    lowered = name.lower()
    return any(label.id != exclude_id and label.name.lower() == lowered for label in board.labels)
