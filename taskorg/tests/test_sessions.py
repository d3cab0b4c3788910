import hashlib

from taskorg.common.security import get_password_hash, verify_password
from taskorg.config import Settings
from taskorg.core.auth.sessions import SessionManager
from taskorg.db.store import JsonFileStore

MINUTE_MS = 60 * 1000


class Clock:
    def __init__(self):
        self.now = 1_700_000_000_000

    def __call__(self) -> int:
        return self.now


def _manager(tmp_path, clock) -> SessionManager:
    backend = JsonFileStore(tmp_path / "security.json", lambda: {"sessions": [], "loginAttempts": []})
    return SessionManager(backend, Settings(_env_file=None), clock=clock)


def test_session_expires(tmp_path):
    clock = Clock()
    manager = _manager(tmp_path, clock)
    sid, session = manager.create("user-1")
    assert manager.get(sid) is session
    assert manager.max_age_seconds(session) == 12 * 60 * 60

    clock.now += 12 * 60 * MINUTE_MS + 1
    assert manager.get(sid) is None


def test_sessions_survive_restart(tmp_path):
    clock = Clock()
    sid, session = _manager(tmp_path, clock).create("user-1", remember_me=True)

    restored = _manager(tmp_path, clock)
    restored.load()
    assert restored.get(sid) == session
    assert restored.max_age_seconds(session) == 30 * 24 * 60 * 60


def test_login_block_outlasts_failure_window(tmp_path):
    clock = Clock()
    manager = _manager(tmp_path, clock)
    key = SessionManager.login_key("10.0.0.1", "Alice")
    assert key == "10.0.0.1|alice"

    for _ in range(7):
        manager.record_failure(key)
        clock.now += MINUTE_MS
    assert not manager.is_blocked(key)
    manager.record_failure(key)
    assert manager.is_blocked(key)

    # Still blocked after the 10 minute window, free after 15 minutes of block
    clock.now += 11 * MINUTE_MS
    assert manager.is_blocked(key)
    clock.now += 5 * MINUTE_MS
    assert not manager.is_blocked(key)
    assert manager.attempts(key).count == 0


def test_failures_outside_window_start_over(tmp_path):
    clock = Clock()
    manager = _manager(tmp_path, clock)
    manager.record_failure("k")
    clock.now += 11 * MINUTE_MS
    assert manager.record_failure("k").count == 1


def test_clear_failures(tmp_path):
    manager = _manager(tmp_path, Clock())
    manager.record_failure("k")
    manager.clear_failures("k")
    assert manager.attempts("k").count == 0


def test_bcrypt_password_round_trip():
    password_hash, salt, algo = get_password_hash("correct horse")
    assert algo == "bcrypt"
    assert verify_password("correct horse", password_hash, salt, algo)
    assert not verify_password("wrong horse", password_hash, salt, algo)


def test_legacy_scrypt_password():
    salt = "abcdef0123456789"
    derived = hashlib.scrypt(b"old secret", salt=salt.encode(), n=16384, r=8, p=1, dklen=64).hex()
    assert verify_password("old secret", derived, salt, "scrypt")
    assert not verify_password("new secret", derived, salt, "scrypt")
    assert not verify_password("old secret", "", salt, "scrypt")
