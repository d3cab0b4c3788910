from fastapi import APIRouter

from taskorg.api.v1.auth import router as auth_router
from taskorg.api.v1.board import router as board_router

v1_router = APIRouter()

v1_router.include_router(auth_router)
v1_router.include_router(board_router)
