from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from taskorg.config import Settings
from taskorg.core.board.service import BoardService
from taskorg.db.models import User
from taskorg.db.store import BoardStore
from taskorg.main import create_app

TEST_PASSWORD = "testpass123"


class FakeClock:
    """Manually advanced UTC clock for time accounting tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingBroadcaster:
    def __init__(self):
        self.messages: list[dict] = []

    async def broadcast(self, message: dict) -> None:
        self.messages.append(message)

    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(DATA_DIR=str(tmp_path / "data"), LOG_LEVEL="WARNING", _env_file=None)


@pytest.fixture
def store(test_settings) -> BoardStore:
    return BoardStore.from_data_dir(test_settings.DATA_DIR)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
async def users(store):
    alice = User(id="user-alice", name="alice")
    bob = User(id="user-bob", name="bob")
    async with store.transaction() as doc:
        doc.users.extend([alice, bob])
    return alice, bob


@pytest.fixture
def board_service(store, test_settings, broadcaster, clock) -> BoardService:
    return BoardService(store, test_settings, broadcaster=broadcaster, clock=clock)


@pytest.fixture
def app(test_settings):
    return create_app(test_settings)


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def second_client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def register(client: AsyncClient, username: str, password: str = TEST_PASSWORD) -> dict:
    """Register and return ``{user, csrfToken}``; the client keeps the session cookie."""
    response = await client.post("/api/register", json={"username": username, "password": password})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
async def alice_client(client):
    data = await register(client, "alice")
    client.headers["X-CSRF-Token"] = data["csrfToken"]
    return client


@pytest.fixture
async def bob_client(second_client):
    data = await register(second_client, "bob")
    second_client.headers["X-CSRF-Token"] = data["csrfToken"]
    return second_client


def find_list(payload: dict, title: str) -> dict:
    return next(lst for lst in payload["board"]["lists"] if lst["title"] == title)
