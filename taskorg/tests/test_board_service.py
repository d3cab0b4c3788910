import pytest
from conftest import find_list

from taskorg.common.exceptions import BadRequestError, ConflictError, InvalidStateError, NotFoundError
from taskorg.config import Settings
from taskorg.core.board.service import BoardService


async def _new_card(service, actor, list_title="To Do", title="Fix bug"):
    snapshot = service.snapshot()
    list_id = find_list(snapshot, list_title)["id"]
    snapshot = await service.create_card(actor, list_id, title)
    return snapshot, find_list(snapshot, list_title)["cardIds"][0]


# ---------- Lists ----------


async def test_create_list_appends_and_logs(board_service, users, broadcaster):
    alice, _ = users
    snapshot = await board_service.create_list(alice, "  Backlog  ")
    assert [lst["title"] for lst in snapshot["board"]["lists"]] == ["To Do", "Doing", "Done", "Backlog"]
    assert snapshot["activity"][-1]["message"] == 'created list "Backlog"'
    assert snapshot["activity"][-1]["actorName"] == "alice"
    assert broadcaster.types() == ["board_updated"]


async def test_create_list_requires_title(board_service, users, broadcaster):
    alice, _ = users
    with pytest.raises(BadRequestError):
        await board_service.create_list(alice, "   ")
    assert broadcaster.messages == []


async def test_delete_list_removes_its_cards(board_service, users):
    alice, _ = users
    _, card_id = await _new_card(board_service, alice, "Doing")
    doing = find_list(board_service.snapshot(), "Doing")
    snapshot = await board_service.delete_list(alice, doing["id"])
    assert card_id not in snapshot["board"]["cards"]
    assert "Doing" not in [lst["title"] for lst in snapshot["board"]["lists"]]


async def test_rename_missing_list(board_service, users):
    alice, _ = users
    with pytest.raises(NotFoundError) as exc:
        await board_service.rename_list(alice, "list-nope", "X")
    assert exc.value.status_code == 404


# ---------- Cards ----------


async def test_create_card_goes_to_top_assigned_to_creator(board_service, users, clock):
    alice, _ = users
    await _new_card(board_service, alice, title="First")
    snapshot, card_id = await _new_card(board_service, alice, title="Second")
    card = snapshot["board"]["cards"][card_id]
    assert find_list(snapshot, "To Do")["cardIds"][0] == card_id
    assert card["assigneeIds"] == [alice.id]
    assert card["createdById"] == alice.id
    assert card["updatedById"] == alice.id
    assert card["createdAt"] == card["listEnteredAt"] == "2024-05-01T09:00:00.000Z"
    assert card["timeByListMs"] == {}


async def test_move_accumulates_time_in_source_list(board_service, users, clock):
    alice, _ = users
    snapshot, card_id = await _new_card(board_service, alice)
    todo_id = find_list(snapshot, "To Do")["id"]
    done_id = find_list(snapshot, "Done")["id"]

    clock.advance(minutes=5)
    snapshot = await board_service.move_card(alice, card_id, done_id, 0)
    card = snapshot["board"]["cards"][card_id]
    assert card["timeByListMs"][todo_id] == 5 * 60 * 1000
    assert card["listEnteredAt"] == "2024-05-01T09:05:00.000Z"
    assert find_list(snapshot, "Done")["cardIds"] == [card_id]
    assert card_id not in find_list(snapshot, "To Do")["cardIds"]
    assert snapshot["activity"][-1]["message"] == 'moved "Fix bug" to "Done"'


async def test_move_within_list_uses_index_after_removal(board_service, users):
    alice, _ = users
    await _new_card(board_service, alice, title="c")
    await _new_card(board_service, alice, title="b")
    snapshot, first = await _new_card(board_service, alice, title="a")
    todo = find_list(snapshot, "To Do")
    snapshot = await board_service.move_card(alice, first, todo["id"], 99)
    titles = [snapshot["board"]["cards"][cid]["title"] for cid in find_list(snapshot, "To Do")["cardIds"]]
    assert titles == ["b", "c", "a"]


async def test_move_to_missing_list(board_service, users, broadcaster):
    alice, _ = users
    _, card_id = await _new_card(board_service, alice)
    broadcaster.messages.clear()
    with pytest.raises(NotFoundError):
        await board_service.move_card(alice, card_id, "list-nope")
    assert broadcaster.messages == []


async def test_noop_edit_logs_nothing(board_service, users, broadcaster, clock):
    alice, _ = users
    snapshot, card_id = await _new_card(board_service, alice)
    before = snapshot["board"]["cards"][card_id]
    activity_count = len(snapshot["activity"])
    broadcaster.messages.clear()

    clock.advance(minutes=1)
    snapshot = await board_service.update_card(alice, card_id, {"title": "Fix bug", "description": ""})
    assert len(snapshot["activity"]) == activity_count
    assert snapshot["board"]["cards"][card_id]["updatedAt"] == before["updatedAt"]
    assert broadcaster.messages == []


async def test_edit_records_changes_and_editor(board_service, users, clock):
    alice, bob = users
    _, card_id = await _new_card(board_service, alice)
    clock.advance(minutes=1)
    snapshot = await board_service.update_card(bob, card_id, {"priority": "high", "estimate": "2.50"})
    card = snapshot["board"]["cards"][card_id]
    assert card["priority"] == "high"
    assert card["estimate"] == "2.5"
    assert card["updatedById"] == bob.id
    assert card["updatedAt"] == "2024-05-01T09:01:00.000Z"
    assert snapshot["activity"][-1]["message"] == "set priority to high; updated estimate effort (Fix bug)"


async def test_invalid_priority_leaves_card_untouched(board_service, users, store):
    alice, _ = users
    _, card_id = await _new_card(board_service, alice)
    with pytest.raises(BadRequestError) as exc:
        await board_service.update_card(alice, card_id, {"title": "Renamed", "priority": "urgent"})
    assert exc.value.detail == "Invalid priority"
    assert store.load().board.cards[card_id].title == "Fix bug"


# ---------- Archive ----------


async def test_archived_card_is_in_no_list(board_service, users):
    alice, _ = users
    _, card_id = await _new_card(board_service, alice)
    snapshot = await board_service.archive_card(alice, card_id)
    card = snapshot["board"]["cards"][card_id]
    assert card["archived"] is True
    assert card["archivedById"] == alice.id
    assert all(card_id not in lst["cardIds"] for lst in snapshot["board"]["lists"])

    with pytest.raises(ConflictError):
        await board_service.update_card(alice, card_id, {"title": "x"})
    with pytest.raises(InvalidStateError):
        await board_service.move_card(alice, card_id, find_list(snapshot, "Doing")["id"])
    with pytest.raises(InvalidStateError):
        await board_service.archive_card(alice, card_id)


async def test_unarchive_falls_back_when_source_list_is_gone(board_service, users):
    alice, _ = users
    snapshot, card_id = await _new_card(board_service, alice, "Doing")
    await board_service.archive_card(alice, card_id)
    await board_service.delete_list(alice, find_list(snapshot, "Doing")["id"])

    snapshot = await board_service.unarchive_card(alice, card_id)
    assert find_list(snapshot, "To Do")["cardIds"][0] == card_id
    card = snapshot["board"]["cards"][card_id]
    assert card["archived"] is False
    assert card["archivedFromListId"] == ""


async def test_unarchive_lands_in_done_when_it_is_the_only_list(board_service, users):
    alice, _ = users
    snapshot, card_id = await _new_card(board_service, alice, "Doing")
    await board_service.archive_card(alice, card_id)
    for title in ("To Do", "Doing"):
        await board_service.delete_list(alice, find_list(snapshot, title)["id"])
    snapshot = await board_service.unarchive_card(alice, card_id)
    assert find_list(snapshot, "Done")["cardIds"] == [card_id]


async def test_unarchive_with_no_lists_fails(board_service, users):
    alice, _ = users
    snapshot, card_id = await _new_card(board_service, alice)
    await board_service.archive_card(alice, card_id)
    for lst in snapshot["board"]["lists"]:
        await board_service.delete_list(alice, lst["id"])
    with pytest.raises(InvalidStateError) as exc:
        await board_service.unarchive_card(alice, card_id)
    assert exc.value.detail == "No list available to restore card"


async def test_card_lifecycle_keeps_done_as_restore_target(board_service, users, clock):
    alice, _ = users
    snapshot = await board_service.create_list(alice, "Todo")
    todo_id = find_list(snapshot, "Todo")["id"]
    done_id = find_list(snapshot, "Done")["id"]
    snapshot = await board_service.create_card(alice, todo_id, "Fix bug")
    card_id = find_list(snapshot, "Todo")["cardIds"][0]
    assert snapshot["board"]["cards"][card_id]["assigneeIds"] == [alice.id]

    clock.advance(seconds=30)
    snapshot = await board_service.move_card(alice, card_id, done_id, 0)
    assert snapshot["board"]["cards"][card_id]["timeByListMs"][todo_id] > 0

    clock.advance(seconds=5)
    await board_service.archive_card(alice, card_id)
    snapshot = await board_service.unarchive_card(alice, card_id)
    assert find_list(snapshot, "Done")["cardIds"][0] == card_id
    assert snapshot["board"]["cards"][card_id]["timeByListMs"][done_id] == 5000


async def test_delete_card(board_service, users):
    alice, _ = users
    _, card_id = await _new_card(board_service, alice)
    snapshot = await board_service.delete_card(alice, card_id)
    assert card_id not in snapshot["board"]["cards"]
    assert snapshot["activity"][-1]["message"] == 'deleted card "Fix bug"'
    with pytest.raises(NotFoundError):
        await board_service.delete_card(alice, card_id)


# ---------- Labels ----------


async def test_labels_are_unique_case_insensitively(board_service, users):
    alice, _ = users
    snapshot = await board_service.create_label(alice, "Bug", "not-a-color")
    assert snapshot["board"]["labels"][0]["color"] == "#d9d9d9"
    with pytest.raises(BadRequestError) as exc:
        await board_service.create_label(alice, "bug", "#ff0000")
    assert exc.value.detail == "Label already exists"


async def test_update_label_validates_color(board_service, users):
    alice, _ = users
    snapshot = await board_service.create_label(alice, "Bug")
    label_id = snapshot["board"]["labels"][0]["id"]
    with pytest.raises(BadRequestError) as exc:
        await board_service.update_label(alice, label_id, {"color": "red"})
    assert exc.value.detail == "Invalid label color"
    snapshot = await board_service.update_label(alice, label_id, {"name": "Defect", "color": "#123abc"})
    assert snapshot["board"]["labels"][0] == {"id": label_id, "name": "Defect", "color": "#123abc"}
    assert snapshot["activity"][-1]["message"] == 'updated label "Bug"'


# ---------- Activity ----------


async def test_activity_log_is_capped(store, users, clock):
    alice, _ = users
    service = BoardService(store, Settings(ACTIVITY_LIMIT=3, _env_file=None), clock=clock)
    for i in range(5):
        snapshot = await service.create_list(alice, f"L{i}")
    assert [a["message"] for a in snapshot["activity"]] == [
        'created list "L2"',
        'created list "L3"',
        'created list "L4"',
    ]
