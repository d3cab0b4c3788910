"""Registration, login and password management with an audit trail."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from starlette.concurrency import run_in_threadpool

from taskorg.common.enums import AuthEventType
from taskorg.common.events import Broadcaster, emit_board_updated
from taskorg.common.exceptions import (
    BadRequestError,
    RateLimitedError,
    TaskOrgException,
    UnauthorizedError,
)
from taskorg.common.logging import get_logger
from taskorg.common.security import get_password_hash, verify_password
from taskorg.common.utils import make_id, to_iso, utcnow
from taskorg.config import Settings
from taskorg.core.auth.sessions import Session, SessionManager
from taskorg.core.board.workflow import log_activity
from taskorg.db.models import AuthAuditEntry, PublicUser, StoreDocument, User
from taskorg.db.store import BoardStore

logger = get_logger("auth.service")

USERNAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 8


@dataclass
class AuthResult:
    user: PublicUser
    sid: str
    session: Session


class AuthService:
    def __init__(
        self,
        store: BoardStore,
        sessions: SessionManager,
        settings: Settings,
        broadcaster: Broadcaster | None = None,
    ):
        self.store = store
        self.sessions = sessions
        self.broadcaster = broadcaster
        self.audit_limit = settings.AUTH_AUDIT_LIMIT
        self.activity_limit = settings.ACTIVITY_LIMIT

    def _audit(self, doc: StoreDocument, ip: str, event: AuthEventType, **fields: Any) -> None:
        doc.auth_audit.append(
            AuthAuditEntry(id=make_id("auth"), at=to_iso(utcnow()), ip=ip, type=event.value, **fields)
        )
        if len(doc.auth_audit) > self.audit_limit:
            doc.auth_audit = doc.auth_audit[-self.audit_limit:]

    async def _committed(self, error: TaskOrgException | None = None) -> None:
        """Every store write signals live clients; a recorded failure is raised afterwards."""
        await emit_board_updated(self.broadcaster)
        if error is not None:
            raise error

    @staticmethod
    def clean_username(raw: Any) -> str:
        return str(raw or "").strip()[:USERNAME_MAX_LENGTH]

    async def register(self, username: Any, password: Any, remember_me: bool, ip: str) -> AuthResult:
        username = self.clean_username(username)
        password = str(password or "")
        if not username:
            raise BadRequestError("Username is required")

        password_hash = salt = algo = ""
        if len(password) >= PASSWORD_MIN_LENGTH and self.store.load().find_user_by_name(username) is None:
            # Hashed before taking the store lock
            password_hash, salt, algo = await run_in_threadpool(get_password_hash, password)

        error: TaskOrgException | None = None
        async with self.store.transaction() as doc:
            if len(password) < PASSWORD_MIN_LENGTH:
                self._audit(doc, ip, AuthEventType.REGISTER_FAILED, username=username, reason="password_too_short")
                error = BadRequestError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
            elif not password_hash or doc.find_user_by_name(username):
                self._audit(doc, ip, AuthEventType.REGISTER_FAILED, username=username, reason="username_exists")
                error = BadRequestError("Username already exists")
            else:
                user = User(
                    id=make_id("user"),
                    name=username,
                    password_hash=password_hash,
                    password_salt=salt,
                    password_algo=algo,
                )
                doc.users.append(user)
                log_activity(doc, user, "joined the workspace", utcnow(), self.activity_limit)
                self._audit(doc, ip, AuthEventType.REGISTER_SUCCESS, user_id=user.id, username=user.name)
        await self._committed(error)

        logger.info("Registered user %s (%s)", user.name, user.id)
        sid, session = self.sessions.create(user.id, remember_me)
        return AuthResult(user=user.public(), sid=sid, session=session)

    async def login(self, username: Any, password: Any, remember_me: bool, ip: str) -> AuthResult:
        username = self.clean_username(username)
        password = str(password or "")
        if not username or not password:
            raise BadRequestError("Username and password are required")

        key = self.sessions.login_key(ip, username)
        blocked = self.sessions.is_blocked(key)
        user = None if blocked else self.store.load().find_user_by_name(username)
        valid = user is not None and await run_in_threadpool(
            verify_password, password, user.password_hash, user.password_salt, user.password_algo
        )

        error: TaskOrgException | None = None
        async with self.store.transaction() as doc:
            if blocked:
                self._audit(doc, ip, AuthEventType.LOGIN_BLOCKED, username=username, reason="rate_limited")
                error = RateLimitedError()
            elif not valid:
                self.sessions.record_failure(key)
                self._audit(
                    doc,
                    ip,
                    AuthEventType.LOGIN_FAILED,
                    user_id=user.id if user else None,
                    username=username,
                    reason="invalid_credentials",
                )
                error = UnauthorizedError("Invalid credentials")
            else:
                self.sessions.clear_failures(key)
                self._audit(
                    doc,
                    ip,
                    AuthEventType.LOGIN_SUCCESS,
                    user_id=user.id,
                    username=user.name,
                    remember_me=remember_me,
                )
        await self._committed(error)

        sid, session = self.sessions.create(user.id, remember_me)
        logger.info("Login: %s", user.name)
        return AuthResult(user=user.public(), sid=sid, session=session)

    async def logout(self, sid: str | None, user: User | None, ip: str) -> None:
        if user is not None:
            async with self.store.transaction() as doc:
                self._audit(doc, ip, AuthEventType.LOGOUT, user_id=user.id, username=user.name)
            await self._committed()
        self.sessions.destroy(sid)

    async def change_password(self, user: User, current_password: Any, new_password: Any, ip: str) -> None:
        current_password = str(current_password or "")
        new_password = str(new_password or "")
        if not current_password or not new_password:
            raise BadRequestError("Current and new password are required")
        if len(new_password) < PASSWORD_MIN_LENGTH:
            raise BadRequestError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")

        known = self.store.load().find_user(user.id)
        if known is None:
            raise UnauthorizedError()
        valid = await run_in_threadpool(
            verify_password, current_password, known.password_hash, known.password_salt, known.password_algo
        )
        if valid:
            password_hash, salt, algo = await run_in_threadpool(get_password_hash, new_password)

        error: TaskOrgException | None = None
        async with self.store.transaction() as doc:
            stored = doc.find_user(user.id)
            if stored is None:
                raise UnauthorizedError()
            # The hash that was verified must still be the stored one
            if not valid or stored.password_hash != known.password_hash:
                self._audit(
                    doc,
                    ip,
                    AuthEventType.PASSWORD_CHANGE_FAILED,
                    user_id=stored.id,
                    username=stored.name,
                    reason="invalid_current_password",
                )
                error = UnauthorizedError("Invalid current password")
            else:
                stored.password_hash = password_hash
                stored.password_salt = salt
                stored.password_algo = algo
                self._audit(doc, ip, AuthEventType.PASSWORD_CHANGED, user_id=stored.id, username=stored.name)
        await self._committed(error)
        logger.info("Password changed for %s", user.name)
