import hmac
from dataclasses import dataclass

from fastapi import Depends, Request

from taskorg.common.exceptions import PermissionDeniedError, UnauthorizedError
from taskorg.config import Settings
from taskorg.core.auth.service import AuthService
from taskorg.core.auth.sessions import Session, SessionManager
from taskorg.core.board.service import BoardService
from taskorg.db.models import User
from taskorg.db.store import BoardStore

SESSION_COOKIE = "sid"
CSRF_HEADER = "X-CSRF-Token"
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class SessionContext:
    sid: str
    session: Session
    user: User


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> BoardStore:
    return request.app.state.store


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_board_service(request: Request) -> BoardService:
    return request.app.state.board_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def resolve_session(store: BoardStore, sessions: SessionManager, sid: str | None) -> SessionContext | None:
    """Map a session cookie to its live session and user, or None."""
    session = sessions.get(sid)
    if session is None:
        return None
    user = store.load().find_user(session.user_id)
    if user is None:
        sessions.destroy(sid)
        return None
    return SessionContext(sid=sid, session=session, user=user)


async def get_session_context(
    request: Request,
    store: BoardStore = Depends(get_store),
    sessions: SessionManager = Depends(get_sessions),
) -> SessionContext | None:
    return resolve_session(store, sessions, request.cookies.get(SESSION_COOKIE))


async def get_current_user(ctx: SessionContext | None = Depends(get_session_context)) -> User:
    if ctx is None:
        raise UnauthorizedError()
    return ctx.user


async def verify_csrf(request: Request, ctx: SessionContext | None = Depends(get_session_context)) -> None:
    """Mutating requests need a session and its anti-forgery token."""
    if request.method not in MUTATING_METHODS:
        return
    if ctx is None:
        raise UnauthorizedError()
    token = request.headers.get(CSRF_HEADER, "")
    if not token or not hmac.compare_digest(token, ctx.session.csrf_token):
        raise PermissionDeniedError("Invalid CSRF token")
