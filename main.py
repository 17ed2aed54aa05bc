import os
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

import realtime
from auth import AuthService, ensure_owner_access, get_current_user, require_roles
from broadcaster import TEST_EVENT, EventBroadcaster
from config import Settings, get_settings
from database import PortfolioStore, UserStore, database_status, get_database
from errors import PortfolioAPIError, UpstreamFailure
from logging_config import configure_logging, get_logger
from mirror import ShadowMirror
from schemas import LoginRequest, RegisterRequest
from seed import seed_portfolios, seed_users
from service import PortfolioService, write_through
from sync import SyncCoordinator
from uploads import FileStore

logger = get_logger(__name__)

# ======================
# Dependency accessors
# ======================

def get_portfolio_service(request: Request) -> PortfolioService:
    return request.app.state.portfolio_service


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


# ======
# Routes
# ======
root_router = APIRouter()
auth_router = APIRouter(prefix="/auth", tags=["Auth"])
portfolio_router = APIRouter(prefix="/portfolio", tags=["Portfolio"])


@root_router.get("/")
def root():
    return {"status": "ok", "service": "portfolio-api"}


@root_router.get("/test")
def test_database(request: Request):
    state = request.app.state
    return {
        "backend": "running",
        **database_status(state.db),
        "mirror_documents": len(state.mirror),
        "live_connections": state.broadcaster.subscriber_count,
    }


@root_router.post("/test-websocket")
def test_websocket(request: Request):
    request.app.state.broadcaster.emit(TEST_EVENT, {"message": "Test WebSocket event"})
    return {"message": "Test event sent"}


# Auth
@auth_router.post("/login")
def login(data: LoginRequest, auth_service: AuthService = Depends(get_auth_service)):
    return auth_service.login(data.email, data.password)


@auth_router.post("/register", status_code=201)
def register(data: RegisterRequest, auth_service: AuthService = Depends(get_auth_service)):
    return auth_service.register(data.username, data.email, data.password, data.role)


@auth_router.get("/profile")
def profile(user: dict = Depends(get_current_user), auth_service: AuthService = Depends(get_auth_service)):
    return auth_service.profile(user["email"])


@auth_router.post("/logout")
def logout(_: dict = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy.
    return {"message": "Logged out successfully"}


# Portfolio
@portfolio_router.post("", status_code=201)
async def create_portfolio(
    payload: Any = Body(...),
    user: dict = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
):
    document = service.parse_create(payload)
    ensure_owner_access(user, document["ownerId"])
    return await service.create(document)


@portfolio_router.get("/pdf-preview/{filename}")
def pdf_preview(filename: str, service: PortfolioService = Depends(get_portfolio_service)):
    return FileResponse(service.open_upload(filename))


@portfolio_router.get("/{owner_id}")
def get_portfolio(owner_id: str, service: PortfolioService = Depends(get_portfolio_service)):
    return service.get(owner_id)


@portfolio_router.put("/{owner_id}")
async def update_portfolio(
    owner_id: str,
    payload: Any = Body(...),
    user: dict = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
):
    ensure_owner_access(user, owner_id)
    return await service.update(owner_id, payload)


@portfolio_router.delete("/{owner_id}")
async def delete_portfolio(
    owner_id: str,
    _: dict = Depends(require_roles("admin")),
    service: PortfolioService = Depends(get_portfolio_service),
):
    return await service.delete(owner_id)


async def _read_upload(upload: Optional[UploadFile], limit: int):
    """Read at most one byte past ``limit``, enough for the store to reject an oversized file."""
    if upload is None:
        return None, None, None
    return upload.filename, upload.content_type, await upload.read(limit + 1)


@portfolio_router.post("/{owner_id}/photo")
async def upload_photo(
    owner_id: str,
    avatar: Optional[UploadFile] = File(None),
    user: dict = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
):
    ensure_owner_access(user, owner_id)
    return await service.upload_avatar(owner_id, *await _read_upload(avatar, service.file_store.max_bytes))


@portfolio_router.post("/{owner_id}/project-image")
async def upload_project_image(
    owner_id: str,
    projectImage: Optional[UploadFile] = File(None),
    index: Optional[int] = Form(None),
    user: dict = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
):
    ensure_owner_access(user, owner_id)
    return await service.upload_project_image(owner_id, *await _read_upload(projectImage, service.file_store.max_bytes), index=index)


@portfolio_router.post("/{owner_id}/certificate-image")
async def upload_certificate_image(
    owner_id: str,
    certificateImage: Optional[UploadFile] = File(None),
    index: Optional[int] = Form(None),
    user: dict = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
):
    ensure_owner_access(user, owner_id)
    return await service.upload_certificate(owner_id, *await _read_upload(certificateImage, service.file_store.max_bytes), index=index)


# =========
# Errors
# =========

async def api_error_handler(request: Request, exc: PortfolioAPIError):
    if isinstance(exc, UpstreamFailure):
        logger.error("upstream failure", path=request.url.path, method=request.method, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    messages: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        messages.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"error": "; ".join(messages) or "Invalid request"})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled API exception", path=request.url.path, method=request.method, error=str(exc), exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ==================
# Application setup
# ==================

def bootstrap(state) -> None:
    """Create indexes, load the mirror from the durable store and seed development data."""
    settings: Settings = state.settings
    os.makedirs(settings.uploads_dir, exist_ok=True)
    try:
        state.portfolio_store.ensure_indexes()
        state.user_store.ensure_indexes()
        loaded = state.mirror.load(state.portfolio_store.list_all())
        logger.info("mirror loaded", count=loaded)
        if settings.seed_on_startup:
            seed_users(state.auth_service, settings)
            seed_portfolios(state.mirror, state.portfolio_store, settings)
    except UpstreamFailure as e:
        logger.error("database not available at startup", error=e.message)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(app.state.settings)
    await run_in_threadpool(bootstrap, app.state)
    logger.info("portfolio api started", admin=app.state.settings.admin_id, customer=app.state.settings.customer_id)
    yield


def create_app(
    settings: Optional[Settings] = None,
    portfolio_store: Optional[PortfolioStore] = None,
    user_store: Optional[UserStore] = None,
) -> FastAPI:
    settings = settings or get_settings()

    db = None
    if portfolio_store is None or user_store is None:
        db = get_database(settings)
        if portfolio_store is None:
            portfolio_store = PortfolioStore(db)
        if user_store is None:
            user_store = UserStore(db)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    mirror = ShadowMirror()
    broadcaster = EventBroadcaster(queue_size=settings.subscriber_queue_size)
    file_store = FileStore(settings.uploads_dir, max_bytes=settings.max_upload_bytes)

    sync = SyncCoordinator(mirror, settings.projection_targets(), persist=write_through(portfolio_store, settings))

    app.state.settings = settings
    app.state.db = db
    app.state.portfolio_store = portfolio_store
    app.state.user_store = user_store
    app.state.mirror = mirror
    app.state.broadcaster = broadcaster
    app.state.auth_service = AuthService(user_store, settings)
    app.state.portfolio_service = PortfolioService(portfolio_store, mirror, sync, broadcaster, file_store, settings)

    app.add_exception_handler(PortfolioAPIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(root_router)
    app.include_router(auth_router)
    app.include_router(portfolio_router)
    app.include_router(realtime.router)

    app.mount("/uploads", StaticFiles(directory=settings.uploads_dir, check_dir=False), name="uploads")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
