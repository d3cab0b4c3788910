"""Board mutation engine.

Each public coroutine applies exactly one operation: validate, mutate the
snapshot held by the store transaction, append an activity entry, persist
the whole document, then signal live clients. A failure raised inside the
transaction leaves the stored document untouched.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from taskorg.common.events import Broadcaster, emit_board_updated
from taskorg.common.exceptions import BadRequestError, ConflictError, InvalidStateError, NotFoundError
from taskorg.common.logging import get_logger
from taskorg.common.utils import make_id, to_iso, utcnow
from taskorg.config import Settings
from taskorg.core.board.workflow import (
    CARD_TITLE_MAX,
    LABEL_NAME_MAX,
    LIST_TITLE_MAX,
    accumulate_list_time,
    clamp_position,
    clean_text,
    detach_card,
    label_name_taken,
    log_activity,
    normalize_label_color,
    plan_card_edit,
    resolve_restore_list,
)
from taskorg.db.models import BoardList, Card, Label, StoreDocument, User
from taskorg.db.store import HEX_COLOR_RE, BoardStore

logger = get_logger("board.service")

Snapshot = dict[str, Any]


class BoardService:
    def __init__(
        self,
        store: BoardStore,
        settings: Settings,
        broadcaster: Broadcaster | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.clock = clock
        self.activity_limit = settings.ACTIVITY_LIMIT

    def _log(self, doc: StoreDocument, actor: User, message: str, now: datetime) -> None:
        log_activity(doc, actor, message, now, self.activity_limit)

    async def _notify(self) -> None:
        await emit_board_updated(self.broadcaster)

    def snapshot(self) -> Snapshot:
        return self.store.load().snapshot()

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    async def create_list(self, actor: User, title: Any) -> Snapshot:
        title = clean_text(title, LIST_TITLE_MAX)
        if not title:
            raise BadRequestError("List title is required")
        async with self.store.transaction() as doc:
            doc.board.lists.append(BoardList(id=make_id("list"), title=title))
            self._log(doc, actor, f'created list "{title}"', self.clock())
            snapshot = doc.snapshot()
        await self._notify()
        logger.info("List created: %s by %s", title, actor.name)
        return snapshot

    async def rename_list(self, actor: User, list_id: str, title: Any) -> Snapshot:
        async with self.store.transaction() as doc:
            lst = doc.board.find_list(list_id)
            if lst is None:
                raise NotFoundError("List", list_id)
            title = clean_text(title, LIST_TITLE_MAX)
            if not title:
                raise BadRequestError("List title is required")
            old_title = lst.title
            lst.title = title
            self._log(doc, actor, f'renamed list "{old_title}" to "{title}"', self.clock())
            snapshot = doc.snapshot()
        await self._notify()
        return snapshot

    async def delete_list(self, actor: User, list_id: str) -> Snapshot:
        async with self.store.transaction() as doc:
            lst = doc.board.find_list(list_id)
            if lst is None:
                raise NotFoundError("List", list_id)
            doc.board.lists.remove(lst)
            # Member cards are removed outright, not archived
            for card_id in lst.card_ids:
                doc.board.cards.pop(card_id, None)
            self._log(doc, actor, f'deleted list "{lst.title}"', self.clock())
            snapshot = doc.snapshot()
        await self._notify()
        logger.info("List deleted: %s (%d cards) by %s", lst.title, len(lst.card_ids), actor.name)
        return snapshot

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    async def create_card(self, actor: User, list_id: Any, title: Any) -> Snapshot:
        list_id = str(list_id or "")
        title = clean_text(title, CARD_TITLE_MAX)
        if not list_id or not title:
            raise BadRequestError("listId and title are required")
        async with self.store.transaction() as doc:
            lst = doc.board.find_list(list_id)
            if lst is None:
                raise NotFoundError("List", list_id)
            now = to_iso(self.clock())
            card = Card(
                id=make_id("card"),
                title=title,
                assignee_ids=[actor.id],
                created_by_id=actor.id,
                created_by_name=actor.name,
                created_at=now,
                updated_by_id=actor.id,
                updated_at=now,
                list_entered_at=now,
            )
            doc.board.cards[card.id] = card
            lst.card_ids.insert(0, card.id)
            self._log(doc, actor, f'added card "{title}" to "{lst.title}"', self.clock())
            snapshot = doc.snapshot()
        await self._notify()
        return snapshot

    async def update_card(self, actor: User, card_id: str, fields: dict[str, Any]) -> Snapshot:
        async with self.store.transaction() as doc:
            card = doc.board.cards.get(card_id)
            if card is None:
                raise NotFoundError("Card", card_id)
            if card.archived:
                raise ConflictError("Cannot edit archived card")
            updates, changes = plan_card_edit(doc, card, fields)
            for attr, value in updates.items():
                setattr(card, attr, value)
            if changes:
                now = self.clock()
                card.updated_by_id = actor.id
                card.updated_at = to_iso(now)
                self._log(doc, actor, f"{'; '.join(changes)} ({card.title})", now)
            snapshot = doc.snapshot()
        if changes:
            await self._notify()
        return snapshot

    async def move_card(self, actor: User, card_id: str, target_list_id: Any, position: Any = None) -> Snapshot:
        async with self.store.transaction() as doc:
            card = doc.board.cards.get(card_id)
            if card is None:
                raise NotFoundError("Card", card_id)
            if card.archived:
                raise InvalidStateError("Cannot move archived card")
            target = doc.board.find_list(str(target_list_id or ""))
            if target is None:
                raise NotFoundError("Target list", str(target_list_id or "") or None)
            source = detach_card(doc.board, card_id)
            if source is None:
                raise NotFoundError("Card", card_id)
            now = self.clock()
            accumulate_list_time(card, source.id, now)
            # Index into the list as it is now, after the card left its source
            target.card_ids.insert(clamp_position(position, len(target.card_ids)), card_id)
            card.list_entered_at = to_iso(now)
            card.updated_by_id = actor.id
            card.updated_at = to_iso(now)
            self._log(doc, actor, f'moved "{card.title}" to "{target.title}"', now)
            snapshot = doc.snapshot()
        await self._notify()
        return snapshot

    async def archive_card(self, actor: User, card_id: str) -> Snapshot:
        async with self.store.transaction() as doc:
            card = doc.board.cards.get(card_id)
            if card is None:
                raise NotFoundError("Card", card_id)
            if card.archived:
                raise InvalidStateError("Card already archived")
            now = self.clock()
            source = detach_card(doc.board, card_id)
            if source is not None:
                accumulate_list_time(card, source.id, now)
            card.archived = True
            card.archived_at = to_iso(now)
            card.archived_by_id = actor.id
            card.archived_from_list_id = source.id if source else card.archived_from_list_id
            card.list_entered_at = to_iso(now)
            card.updated_by_id = actor.id
            card.updated_at = to_iso(now)
            self._log(doc, actor, f'archived card "{card.title}"', now)
            snapshot = doc.snapshot()
        await self._notify()
        return snapshot

    async def unarchive_card(self, actor: User, card_id: str) -> Snapshot:
        async with self.store.transaction() as doc:
            card = doc.board.cards.get(card_id)
            if card is None:
                raise NotFoundError("Card", card_id)
            if not card.archived:
                raise InvalidStateError("Card is not archived")
            target = resolve_restore_list(doc.board, card)
            if target is None:
                raise InvalidStateError("No list available to restore card")
            now = self.clock()
            target.card_ids.insert(0, card_id)
            card.archived = False
            card.archived_at = ""
            card.archived_by_id = ""
            card.archived_from_list_id = ""
            card.list_entered_at = to_iso(now)
            card.updated_by_id = actor.id
            card.updated_at = to_iso(now)
            self._log(doc, actor, f'restored archived card "{card.title}" to "{target.title}"', now)
            snapshot = doc.snapshot()
        await self._notify()
        return snapshot

    async def delete_card(self, actor: User, card_id: str) -> Snapshot:
        async with self.store.transaction() as doc:
            card = doc.board.cards.pop(card_id, None)
            if card is None:
                raise NotFoundError("Card", card_id)
            for lst in doc.board.lists:
                lst.card_ids = [cid for cid in lst.card_ids if cid != card_id]
            self._log(doc, actor, f'deleted card "{card.title}"', self.clock())
            snapshot = doc.snapshot()
        await self._notify()
        return snapshot

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    async def create_label(self, actor: User, name: Any, color: Any = None) -> Snapshot:
        name = clean_text(name, LABEL_NAME_MAX)
        if not name:
            raise BadRequestError("Label name is required")
        color = normalize_label_color(color)
        async with self.store.transaction() as doc:
            if label_name_taken(doc.board, name):
                raise BadRequestError("Label already exists")
            doc.board.labels.append(Label(id=make_id("label"), name=name, color=color))
            self._log(doc, actor, f'created label "{name}"', self.clock())
            snapshot = doc.snapshot()
        await self._notify()
        return snapshot

    async def update_label(self, actor: User, label_id: str, fields: dict[str, Any]) -> Snapshot:
        async with self.store.transaction() as doc:
            label = doc.board.find_label(label_id)
            if label is None:
                raise NotFoundError("Label", label_id)
            name = clean_text(fields["name"], LABEL_NAME_MAX) if "name" in fields else label.name
            color = str(fields["color"] or "") if "color" in fields else label.color
            if not name:
                raise BadRequestError("Label name is required")
            if not HEX_COLOR_RE.match(color):
                raise BadRequestError("Invalid label color")
            if label_name_taken(doc.board, name, exclude_id=label_id):
                raise BadRequestError("Label already exists")
            old_name = label.name
            label.name = name
            label.color = color
            self._log(doc, actor, f'updated label "{old_name}"', self.clock())
            snapshot = doc.snapshot()
        await self._notify()
        return snapshot
