"""
Seed script for the task organizer.

Creates a few demo users, labels and cards on the board in DATA_DIR so a
fresh install has something to look at. Every demo user's password is
``password123``.

Usage:
    python -m taskorg.scripts.seed
"""

import asyncio
from typing import Any

from taskorg.common.logging import setup_logging
from taskorg.common.security import get_password_hash
from taskorg.common.utils import make_id
from taskorg.config import settings
from taskorg.core.board.service import BoardService
from taskorg.db.models import User
from taskorg.db.store import BoardStore

DEMO_PASSWORD = "password123"
DEMO_USERS = ("alice", "bob", "carol")

DEMO_LABELS = (
    ("Bug", "#e5484d"),
    ("Feature", "#30a46c"),
    ("Chore", "#8e8c99"),
)

# (list title, card title, edits)
DEMO_CARDS: tuple[tuple[str, str, dict[str, Any]], ...] = (
    ("To Do", "Write onboarding guide", {"priority": "low", "estimate": "3"}),
    ("To Do", "Fix login redirect loop", {"priority": "high", "labels": ["Bug"]}),
    ("Doing", "Weekly metrics export", {"priority": "medium", "labels": ["Feature"], "estimate": "5.5"}),
    ("Done", "Rotate staging credentials", {"labels": ["Chore"]}),
)


def _newest_card_id(snapshot: dict[str, Any], list_id: str) -> str:
    lst = next(lst for lst in snapshot["board"]["lists"] if lst["id"] == list_id)
    return lst["cardIds"][0]


async def main() -> None:
    setup_logging()
    store = BoardStore.from_data_dir(settings.DATA_DIR)

    # ------------------------------------------------------------------
    # Guard: skip if already seeded
    # ------------------------------------------------------------------
    if store.load().find_user_by_name(DEMO_USERS[0]) is not None:
        print("Store already seeded -- skipping.")
        return

    # ==================================================================
    # USERS
    # ==================================================================
    async with store.transaction() as doc:
        users = []
        for name in DEMO_USERS:
            password_hash, salt, algo = get_password_hash(DEMO_PASSWORD)
            user = User(
                id=make_id("user"),
                name=name,
                password_hash=password_hash,
                password_salt=salt,
                password_algo=algo,
            )
            doc.users.append(user)
            users.append(user)
        lists_by_title = {lst.title: lst.id for lst in doc.board.lists}

    service = BoardService(store, settings)
    owner = users[0]

    # ==================================================================
    # LABELS
    # ==================================================================
    snapshot: dict[str, Any] = {}
    for name, color in DEMO_LABELS:
        snapshot = await service.create_label(owner, name, color)
    label_ids = {label["name"]: label["id"] for label in snapshot["board"]["labels"]}

    # ==================================================================
    # CARDS
    # ==================================================================
    created = 0
    for i, (list_title, title, edits) in enumerate(DEMO_CARDS):
        list_id = lists_by_title.get(list_title)
        if list_id is None:
            print(f"List {list_title!r} missing -- skipping card {title!r}")
            continue
        actor = users[i % len(users)]
        snapshot = await service.create_card(actor, list_id, title)
        card_id = _newest_card_id(snapshot, list_id)
        fields: dict[str, Any] = {k: v for k, v in edits.items() if k != "labels"}
        fields["labelIds"] = [label_ids[name] for name in edits.get("labels", [])]
        fields["assigneeIds"] = [actor.id, users[(i + 1) % len(users)].id]
        await service.update_card(actor, card_id, fields)
        created += 1

    print(f"Seeded {len(users)} users, {len(label_ids)} labels and {created} cards into {settings.DATA_DIR}")
    print(f"Sign in as any of {', '.join(DEMO_USERS)} with password {DEMO_PASSWORD!r}")


if __name__ == "__main__":
    asyncio.run(main())
