import json
import os

import pytest

from taskorg.db.store import BoardStore, JsonFileStore, default_store_document


def test_fresh_store_has_default_lists(store):
    doc = store.load()
    assert [lst.title for lst in doc.board.lists] == ["To Do", "Doing", "Done"]
    assert [lst.id for lst in doc.board.lists] == ["list-todo", "list-doing", "list-done"]
    assert doc.users == []
    assert store.backend.path.exists()


def test_legacy_document_is_normalized(tmp_path):
    legacy = {
        "users": [{"id": "u1", "name": "ann", "passwordHash": "abcd", "passwordSalt": "salt"}],
        "board": {
            "labels": [{"id": "l1", "name": "Bug", "color": "red"}],
            "lists": [{"id": "a", "title": "Todo", "cardIds": ["c1"]}],
            "cards": {
                "c1": {
                    "title": "Old card",
                    "assigneeId": "u1",
                    "priority": "urgent",
                    "updatedAt": "2023-01-01T00:00:00.000Z",
                    "timeByListMs": {"a": "1500", "b": -3, "c": "junk"},
                }
            },
        },
    }
    path = tmp_path / "store.json"
    path.write_text(json.dumps(legacy))

    doc = BoardStore(JsonFileStore(path, default_store_document)).load()
    card = doc.board.cards["c1"]
    assert card.id == "c1"
    assert card.assignee_ids == ["u1"]
    assert card.priority == ""
    assert card.created_at == card.list_entered_at == "2023-01-01T00:00:00.000Z"
    assert card.time_by_list_ms == {"a": 1500, "b": 0, "c": 0}
    assert card.archived is False
    assert doc.board.labels[0].color == "#d9d9d9"
    assert doc.users[0].password_algo == "scrypt"
    assert "assigneeId" not in card.to_json()
    assert doc.activity == [] and doc.auth_audit == []


def test_unknown_keys_survive_round_trip(store):
    doc = store.load()
    raw = doc.to_json()
    raw["board"]["theme"] = "dark"
    store.backend.write(raw)
    store.save(store.load())
    assert json.loads(store.backend.path.read_text())["board"]["theme"] == "dark"


def test_write_is_atomic_and_leaves_no_temp_files(tmp_path):
    backend = JsonFileStore(tmp_path / "doc.json", dict)
    backend.write({"a": 1})
    backend.write({"a": 2})
    assert json.loads((tmp_path / "doc.json").read_text()) == {"a": 2}
    assert os.listdir(tmp_path) == ["doc.json"]


def test_failed_write_keeps_previous_document(tmp_path):
    backend = JsonFileStore(tmp_path / "doc.json", dict)
    backend.write({"a": 1})
    with pytest.raises(TypeError):
        backend.write({"a": object()})
    assert json.loads((tmp_path / "doc.json").read_text()) == {"a": 1}
    assert os.listdir(tmp_path) == ["doc.json"]


def test_non_object_document_is_rejected(tmp_path):
    path = tmp_path / "doc.json"
    path.write_text("[1, 2]")
    with pytest.raises(ValueError):
        JsonFileStore(path, dict).read()


async def test_transaction_discards_on_error(store):
    with pytest.raises(RuntimeError):
        async with store.transaction() as doc:
            doc.board.name = "Renamed"
            raise RuntimeError("boom")
    assert store.load().board.name == "Team Board"


async def test_transaction_persists_on_success(store):
    async with store.transaction() as doc:
        doc.board.name = "Renamed"
    assert store.load().board.name == "Renamed"
