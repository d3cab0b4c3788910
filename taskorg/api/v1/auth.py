from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from taskorg.api.deps import (
    SESSION_COOKIE,
    SessionContext,
    client_ip,
    get_auth_service,
    get_session_context,
    get_sessions,
    get_settings,
    verify_csrf,
)
from taskorg.common.exceptions import UnauthorizedError
from taskorg.config import Settings
from taskorg.core.auth.service import AuthResult, AuthService
from taskorg.core.auth.sessions import SessionManager

router = APIRouter(tags=["Authentication"])


# ---------- Schemas ----------


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CredentialsRequest(WireModel):
    username: Any = None
    password: Any = None
    remember_me: bool = False


class ChangePasswordRequest(WireModel):
    current_password: Any = None
    new_password: Any = None


# ---------- Helpers ----------


def _set_session_cookie(response: Response, result: AuthResult, sessions: SessionManager, settings: Settings) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        result.sid,
        max_age=sessions.max_age_seconds(result.session) if result.session.remember_me else None,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.COOKIE_SECURE,
    )


def _auth_payload(result: AuthResult) -> dict:
    return {"user": result.user.to_json(), "csrfToken": result.session.csrf_token}


# ---------- Endpoints ----------


@router.post("/register", status_code=201)
async def register(
    request: Request,
    response: Response,
    body: CredentialsRequest | None = None,
    auth: AuthService = Depends(get_auth_service),
    sessions: SessionManager = Depends(get_sessions),
    settings: Settings = Depends(get_settings),
):
    body = body or CredentialsRequest()
    result = await auth.register(body.username, body.password, body.remember_me, client_ip(request))
    _set_session_cookie(response, result, sessions, settings)
    return _auth_payload(result)


@router.post("/login")
async def login(
    request: Request,
    response: Response,
    body: CredentialsRequest | None = None,
    auth: AuthService = Depends(get_auth_service),
    sessions: SessionManager = Depends(get_sessions),
    settings: Settings = Depends(get_settings),
):
    body = body or CredentialsRequest()
    result = await auth.login(body.username, body.password, body.remember_me, client_ip(request))
    _set_session_cookie(response, result, sessions, settings)
    return _auth_payload(result)


@router.post("/logout", dependencies=[Depends(verify_csrf)])
async def logout(
    request: Request,
    response: Response,
    ctx: SessionContext | None = Depends(get_session_context),
    auth: AuthService = Depends(get_auth_service),
):
    await auth.logout(ctx.sid if ctx else None, ctx.user if ctx else None, client_ip(request))
    response.delete_cookie(SESSION_COOKIE, path="/", httponly=True, samesite="lax")
    return {"ok": True, "csrfToken": None}


@router.get("/me")
async def me(ctx: SessionContext | None = Depends(get_session_context)):
    if ctx is None:
        return {"user": None, "csrfToken": None}
    return {"user": ctx.user.public().to_json(), "csrfToken": ctx.session.csrf_token}


@router.post("/change-password", dependencies=[Depends(verify_csrf)])
async def change_password(
    request: Request,
    body: ChangePasswordRequest | None = None,
    ctx: SessionContext | None = Depends(get_session_context),
    auth: AuthService = Depends(get_auth_service),
):
    if ctx is None:
        raise UnauthorizedError()
    body = body or ChangePasswordRequest()
    await auth.change_password(ctx.user, body.current_password, body.new_password, client_ip(request))
    return {"ok": True, "csrfToken": ctx.session.csrf_token}


@router.get("/meta")
async def meta(settings: Settings = Depends(get_settings)):
    return {"name": settings.APP_NAME, "version": settings.APP_VERSION}
