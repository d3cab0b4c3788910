"""Session registry and login rate limiter.

Both live in memory and are mirrored to ``security.json`` after every
change so that sessions survive a restart. Times are epoch milliseconds.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from taskorg.common.logging import get_logger
from taskorg.common.security import generate_csrf_token, generate_session_id
from taskorg.config import Settings
from taskorg.db.store import DocumentStore, JsonFileStore

logger = get_logger("auth.sessions")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class Session:
    user_id: str
    csrf_token: str
    remember_me: bool
    expires_at: int


@dataclass
class LoginAttempts:
    count: int = 0
    first_at: int = 0
    blocked_until: int = 0


class SessionManager:
    def __init__(
        self,
        backend: DocumentStore,
        settings: Settings,
        clock: Callable[[], int] = _now_ms,
    ):
        self.backend = backend
        self.clock = clock
        self.session_ttl_ms = settings.SESSION_TTL_HOURS * 60 * 60 * 1000
        self.remember_ttl_ms = settings.SESSION_REMEMBER_TTL_DAYS * 24 * 60 * 60 * 1000
        self.login_window_ms = settings.LOGIN_WINDOW_MINUTES * 60 * 1000
        self.login_max_attempts = settings.LOGIN_MAX_ATTEMPTS
        self.login_block_ms = settings.LOGIN_BLOCK_MINUTES * 60 * 1000
        self.sessions: dict[str, Session] = {}
        self.login_attempts: dict[str, LoginAttempts] = {}

    @classmethod
    def from_data_dir(cls, data_dir: str | Path, settings: Settings) -> SessionManager:
        backend = JsonFileStore(
            Path(data_dir) / "security.json",
            lambda: {"sessions": [], "loginAttempts": []},
        )
        manager = cls(backend, settings)
        manager.load()
        return manager

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Rebuild in-memory state, dropping expired sessions and stale attempts."""
        self.sessions.clear()
        self.login_attempts.clear()
        try:
            raw = self.backend.read()
        except ValueError as e:
            logger.warning("Security state unreadable, starting empty: %s", e)
            return
        now = self.clock()
        for item in raw.get("sessions") or []:
            if not isinstance(item, dict) or not item.get("sid") or not item.get("userId"):
                continue
            expires_at = int(item.get("expiresAt") or 0)
            if expires_at and now > expires_at:
                continue
            self.sessions[str(item["sid"])] = Session(
                user_id=str(item["userId"]),
                csrf_token=str(item.get("csrfToken") or ""),
                remember_me=bool(item.get("rememberMe")),
                expires_at=expires_at,
            )
        for item in raw.get("loginAttempts") or []:
            if not isinstance(item, dict) or not item.get("key"):
                continue
            blocked_until = int(item.get("blockedUntil") or 0)
            first_at = int(item.get("firstAt") or 0)
            if blocked_until and now > blocked_until:
                continue
            if first_at and now - first_at > self.login_window_ms and not blocked_until:
                continue
            self.login_attempts[str(item["key"])] = LoginAttempts(
                count=int(item.get("count") or 0),
                first_at=first_at,
                blocked_until=blocked_until,
            )
        logger.info("Loaded %d sessions, %d rate-limit entries", len(self.sessions), len(self.login_attempts))

    def save(self) -> None:
        data: dict[str, Any] = {
            "sessions": [
                {
                    "sid": sid,
                    "userId": s.user_id,
                    "csrfToken": s.csrf_token,
                    "rememberMe": s.remember_me,
                    "expiresAt": s.expires_at,
                }
                for sid, s in self.sessions.items()
            ],
            "loginAttempts": [
                {"key": key, "count": a.count, "firstAt": a.first_at, "blockedUntil": a.blocked_until}
                for key, a in self.login_attempts.items()
            ],
        }
        self.backend.write(data)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create(self, user_id: str, remember_me: bool = False) -> tuple[str, Session]:
        sid = generate_session_id()
        ttl = self.remember_ttl_ms if remember_me else self.session_ttl_ms
        session = Session(
            user_id=user_id,
            csrf_token=generate_csrf_token(),
            remember_me=remember_me,
            expires_at=self.clock() + ttl,
        )
        self.sessions[sid] = session
        self.save()
        return sid, session

    def get(self, sid: str | None) -> Session | None:
        if not sid:
            return None
        session = self.sessions.get(sid)
        if session is None:
            return None
        if session.expires_at and self.clock() > session.expires_at:
            del self.sessions[sid]
            self.save()
            return None
        return session

    def destroy(self, sid: str | None) -> None:
        if sid:
            self.sessions.pop(sid, None)
        self.save()

    def max_age_seconds(self, session: Session) -> int:
        return (self.remember_ttl_ms if session.remember_me else self.session_ttl_ms) // 1000

    # ------------------------------------------------------------------
    # Login rate limiting
    # ------------------------------------------------------------------

    @staticmethod
    def login_key(ip: str, username: str) -> str:
        return f"{ip}|{username.lower()}"

    def attempts(self, key: str) -> LoginAttempts:
        state = self.login_attempts.get(key)
        if state is None:
            return LoginAttempts()
        now = self.clock()
        if state.blocked_until and now > state.blocked_until:
            del self.login_attempts[key]
            return LoginAttempts()
        if not state.blocked_until and state.first_at and now - state.first_at > self.login_window_ms:
            del self.login_attempts[key]
            return LoginAttempts()
        return LoginAttempts(**asdict(state))

    def is_blocked(self, key: str) -> bool:
        state = self.attempts(key)
        return bool(state.blocked_until) and self.clock() < state.blocked_until

    def record_failure(self, key: str) -> LoginAttempts:
        prev = self.attempts(key)
        now = self.clock()
        count = prev.count + 1
        state = LoginAttempts(
            count=count,
            first_at=prev.first_at if prev.count > 0 else now,
            blocked_until=now + self.login_block_ms if count >= self.login_max_attempts else 0,
        )
        self.login_attempts[key] = state
        self.save()
        if state.blocked_until:
            logger.warning("Login blocked for %s after %d failures", key, count)
        return state

    def clear_failures(self, key: str) -> None:
        self.login_attempts.pop(key, None)
        self.save()
