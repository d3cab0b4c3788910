import json

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from taskorg.api.ws import ConnectionManager
from taskorg.db.models import PublicUser


def _register(tc: TestClient, username: str) -> dict[str, str]:
    response = tc.post("/api/register", json={"username": username, "password": "testpass123"})
    assert response.status_code == 201
    headers = {"Cookie": f"sid={response.cookies['sid']}", "X-CSRF-Token": response.json()["csrfToken"]}
    # Each caller passes its own session explicitly
    tc.cookies.clear()
    return headers


def _names(message: dict) -> list[str]:
    assert message["type"] == "active_users"
    return [u["name"] for u in message["users"]]


def _open(tc: TestClient, headers: dict | None = None):
    if headers is None:
        return tc.websocket_connect("/ws")
    return tc.websocket_connect("/ws", headers={"Cookie": headers["Cookie"]})


def test_connect_sends_greeting_and_roster(app):
    with TestClient(app) as tc:
        alice = _register(tc, "alice")
        with _open(tc, alice) as ws:
            connected = ws.receive_json()
            assert connected["type"] == "connected"
            assert connected["at"].endswith("Z")
            assert _names(ws.receive_json()) == ["alice"]
            # No second roster follows the greeting
            ws.send_text(json.dumps({"type": "ping"}))
            assert ws.receive_json()["type"] == "pong"


def test_anonymous_connection_is_not_in_roster(app):
    with TestClient(app) as tc:
        with _open(tc) as ws:
            assert ws.receive_json()["type"] == "connected"
            assert _names(ws.receive_json()) == []


def test_roster_deduplicates_users_and_sorts_by_name(app):
    with TestClient(app) as tc:
        bob = _register(tc, "bob")
        alice = _register(tc, "Alice")
        with _open(tc, bob) as first:
            for _ in range(2):
                first.receive_json()
            with _open(tc, bob) as second:
                for _ in range(2):
                    second.receive_json()
                assert _names(first.receive_json()) == ["bob"]
                with _open(tc, alice) as third:
                    assert third.receive_json()["type"] == "connected"
                    assert _names(third.receive_json()) == ["Alice", "bob"]
                    assert _names(first.receive_json()) == ["Alice", "bob"]
                    assert _names(second.receive_json()) == ["Alice", "bob"]
                # Alice's only tab closed
                assert _names(first.receive_json()) == ["bob"]


def test_mutation_signals_board_updated(app):
    with TestClient(app) as tc:
        alice = _register(tc, "alice")
        with _open(tc, alice) as ws:
            for _ in range(2):
                ws.receive_json()
            response = tc.post("/api/lists", json={"title": "Backlog"}, headers=alice)
            assert response.status_code == 201
            message = ws.receive_json()
            assert message["type"] == "board_updated"
            assert "at" in message


def test_ping_is_answered(app):
    with TestClient(app) as tc:
        with _open(tc) as ws:
            ws.receive_json()
            ws.receive_json()
            ws.send_text("not json")
            ws.send_text(json.dumps({"type": "hello"}))
            ws.send_text(json.dumps({"type": "ping"}))
            assert ws.receive_json()["type"] == "pong"


# ---------- ConnectionManager ----------


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict] = []
        self.client_state = WebSocketState.CONNECTED

    async def accept(self) -> None:
        pass

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(json.loads(text))


@pytest.mark.asyncio
async def test_broadcast_evicts_failed_connection_only():
    manager = ConnectionManager()
    healthy = FakeSocket()
    broken = FakeSocket(fail=True)
    await manager.connect(healthy, PublicUser(id="u1", name="ann"))
    await manager.connect(broken, PublicUser(id="u2", name="ben"))
    assert [u["name"] for u in manager.active_users()] == ["ann", "ben"]

    await manager.broadcast({"type": "board_updated"})

    assert manager.active_connections == 1
    assert healthy.sent[0] == {"type": "board_updated"}
    # The roster change is announced to whoever is left
    assert healthy.sent[-1]["type"] == "active_users"
    assert [u["name"] for u in healthy.sent[-1]["users"]] == ["ann"]


@pytest.mark.asyncio
async def test_closed_socket_is_skipped():
    manager = ConnectionManager()
    closed = FakeSocket()
    closed.client_state = WebSocketState.DISCONNECTED
    await manager.connect(closed)
    await manager.broadcast({"type": "board_updated"})
    assert closed.sent == []
    assert manager.active_connections == 0


@pytest.mark.asyncio
async def test_disconnect_is_idempotent():
    manager = ConnectionManager()
    conn_id = await manager.connect(FakeSocket())
    assert manager.disconnect(conn_id) is True
    assert manager.disconnect(conn_id) is False


@pytest.mark.asyncio
async def test_roster_broadcast_can_skip_one_connection():
    manager = ConnectionManager()
    old, new = FakeSocket(), FakeSocket()
    await manager.connect(old, PublicUser(id="u1", name="ann"))
    conn_id = await manager.connect(new, PublicUser(id="u2", name="ben"))

    await manager.broadcast_active_users(exclude=conn_id)

    assert new.sent == []
    assert [u["name"] for u in old.sent[0]["users"]] == ["ann", "ben"]
