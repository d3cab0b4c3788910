from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskorg.api.middleware import AuditMiddleware
from taskorg.api.v1.router import v1_router
from taskorg.api.v1.ws import router as ws_router
from taskorg.api.ws import ConnectionManager
from taskorg.common.logging import get_logger, setup_logging
from taskorg.config import Settings, settings
from taskorg.core.auth.service import AuthService
from taskorg.core.auth.sessions import SessionManager
from taskorg.core.board.service import BoardService
from taskorg.db.store import BoardStore

logger = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(app.state.settings.LOG_LEVEL)
    logger.info("Serving board from %s", app.state.settings.DATA_DIR)
    yield


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors):
        detail = "Invalid JSON"
    else:
        detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"detail": detail})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build the application with its store, session registry and live channel."""
    cfg = app_settings or settings

    app = FastAPI(
        title=f"{cfg.APP_NAME} API",
        description="Collaborative kanban board with live updates",
        version=cfg.APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    store = BoardStore.from_data_dir(cfg.DATA_DIR)
    sessions = SessionManager.from_data_dir(cfg.DATA_DIR, cfg)
    connections = ConnectionManager()
    app.state.settings = cfg
    app.state.store = store
    app.state.sessions = sessions
    app.state.connections = connections
    app.state.board_service = BoardService(store, cfg, broadcaster=connections)
    app.state.auth_service = AuthService(store, sessions, cfg, broadcaster=connections)

    # CORS
    origins = cfg.ALLOWED_ORIGINS.split(",") if cfg.ALLOWED_ORIGINS != "*" else ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AuditMiddleware)

    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(v1_router, prefix="/api")
    app.include_router(ws_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "service": "taskorg",
            "version": cfg.APP_VERSION,
            "env": cfg.APP_ENV,
            "connections": connections.active_connections,
        }

    return app


def run() -> None:
    import uvicorn

    uvicorn.run("taskorg.main:create_app", factory=True, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
