from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from taskorg.api.deps import SessionContext, get_board_service, get_current_user, get_session_context, verify_csrf
from taskorg.common.exceptions import UnauthorizedError
from taskorg.core.board.service import BoardService
from taskorg.db.models import User

router = APIRouter(tags=["Board"], dependencies=[Depends(verify_csrf)])


# ---------- Schemas ----------
# Values stay loosely typed; the mutation engine owns validation and its messages.


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ListRequest(WireModel):
    title: Any = None


class CardCreateRequest(WireModel):
    list_id: Any = None
    title: Any = None


class CardUpdateRequest(WireModel):
    title: Any = None
    description: Any = None
    checklist: Any = None
    label_ids: Any = None
    priority: Any = None
    due_date: Any = None
    estimate: Any = None
    assignee_ids: Any = None
    assignee_id: Any = None


class CardMoveRequest(WireModel):
    target_list_id: Any = None
    position: Any = None


class LabelRequest(WireModel):
    name: Any = None
    color: Any = None


def _ok(snapshot: dict) -> dict:
    return {"ok": True, **snapshot}


# ---------- Board ----------


@router.get("/board")
async def get_board(
    ctx: SessionContext | None = Depends(get_session_context),
    service: BoardService = Depends(get_board_service),
):
    if ctx is None:
        raise UnauthorizedError()
    return {"user": ctx.user.public().to_json(), **service.snapshot(), "csrfToken": ctx.session.csrf_token}


# ---------- Lists ----------


@router.post("/lists", status_code=201)
async def create_list(
    body: ListRequest | None = None,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    body = body or ListRequest()
    return _ok(await service.create_list(user, body.title))


@router.patch("/lists/{list_id}")
async def rename_list(
    list_id: str,
    body: ListRequest | None = None,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    body = body or ListRequest()
    return _ok(await service.rename_list(user, list_id, body.title))


@router.delete("/lists/{list_id}")
async def delete_list(
    list_id: str,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    return _ok(await service.delete_list(user, list_id))


# ---------- Cards ----------


@router.post("/cards", status_code=201)
async def create_card(
    body: CardCreateRequest | None = None,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    body = body or CardCreateRequest()
    return _ok(await service.create_card(user, body.list_id, body.title))


@router.patch("/cards/{card_id}")
async def update_card(
    card_id: str,
    body: CardUpdateRequest | None = None,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    # Only the fields the client sent take part in the edit
    fields = body.model_dump(by_alias=True, exclude_unset=True) if body else {}
    return _ok(await service.update_card(user, card_id, fields))


@router.post("/cards/{card_id}/move")
async def move_card(
    card_id: str,
    body: CardMoveRequest | None = None,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    body = body or CardMoveRequest()
    return _ok(await service.move_card(user, card_id, body.target_list_id, body.position))


@router.post("/cards/{card_id}/archive")
async def archive_card(
    card_id: str,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    return _ok(await service.archive_card(user, card_id))


@router.post("/cards/{card_id}/unarchive")
async def unarchive_card(
    card_id: str,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    return _ok(await service.unarchive_card(user, card_id))


@router.delete("/cards/{card_id}")
async def delete_card(
    card_id: str,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    return _ok(await service.delete_card(user, card_id))


# ---------- Labels ----------


@router.post("/labels", status_code=201)
async def create_label(
    body: LabelRequest | None = None,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    body = body or LabelRequest()
    return _ok(await service.create_label(user, body.name, body.color))


@router.patch("/labels/{label_id}")
async def update_label(
    label_id: str,
    body: LabelRequest | None = None,
    user: User = Depends(get_current_user),
    service: BoardService = Depends(get_board_service),
):
    fields = body.model_dump(exclude_unset=True) if body else {}
    return _ok(await service.update_label(user, label_id, fields))
