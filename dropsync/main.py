"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import TYPE_CHECKING

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from dropsync import __version__
from dropsync.api.connections import router as connections_router
from dropsync.api.files import router as files_router
from dropsync.api.folders import router as folders_router
from dropsync.api.health import router as health_router
from dropsync.api.sync import router as sync_router
from dropsync.config import Settings
from dropsync.database import create_engine, create_schema
from dropsync.dropbox.client import DropboxClient
from dropsync.dropbox.oauth_state import OAuthStateStore
from dropsync.exceptions import InternalServerError, StorageSyncError
from dropsync.services.lease_service import SyncLeaseManager

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)


def init_state(app: FastAPI, http: httpx.AsyncClient) -> None:
    """Attach the per-process Dropbox client, sync leases and OAuth state store."""
    settings: Settings = app.state.settings
    app.state.http_client = http
    app.state.dropbox_client = DropboxClient(http)
    app.state.sync_leases = SyncLeaseManager(ttl_seconds=settings.sync_lease_seconds)
    app.state.dropbox_oauth_state = OAuthStateStore(ttl_seconds=settings.oauth_state_ttl_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Open the database and the shared Dropbox HTTP client; close both on exit."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Dropsync %s starting (root %s)", __version__, settings.dropbox_root_path)

    engine, session_factory = create_engine(settings)
    try:
        await create_schema(engine)
    except Exception:
        logger.critical("Could not prepare database at %s", settings.database_url, exc_info=True)
        await engine.dispose()
        raise
    app.state.engine = engine
    app.state.session_factory = session_factory

    async with httpx.AsyncClient(timeout=settings.dropbox_timeout_seconds) as http:
        init_state(app, http)
        try:
            yield
        finally:
            await engine.dispose()
            logger.info("Dropsync stopped")


def _error_response(status_code: int, message: str, code: str, **extra: object) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code, **extra})


def _status_code_name(exc: StarletteHTTPException) -> str:
    try:
        return HTTPStatus(exc.status_code).name
    except ValueError:
        return f"HTTP_{exc.status_code}"


def _register_error_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error", "code"}``."""

    @app.exception_handler(StorageSyncError)
    async def on_storage_error(request: Request, exc: StorageSyncError) -> JSONResponse:
        where = f"{request.method} {request.url.path}"
        if exc.status_code >= 500:
            logger.error("%s during %s: %s", exc.code, where, exc, exc_info=exc)
        else:
            logger.info("%s during %s: %s", exc.code, where, exc)
        return _error_response(exc.status_code, str(exc), exc.code)

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        logger.info(
            "HTTP %d for %s %s: %s", exc.status_code, request.method, request.url.path, exc.detail
        )
        response = _error_response(exc.status_code, str(exc.detail), _status_code_name(exc))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def on_invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [
            {
                "field": str(err["loc"][-1]) if err.get("loc") else "unknown",
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, fields)
        return _error_response(422, "Invalid request", "INVALID_REQUEST", fields=fields)

    @app.exception_handler(ValueError)
    async def on_value_error(request: Request, exc: ValueError) -> JSONResponse:
        logger.info("Invalid input to %s %s: %s", request.method, request.url.path, exc)
        return _error_response(422, str(exc) or "Invalid value", "INVALID_REQUEST")

    @app.exception_handler(InternalServerError)
    async def on_internal_error(request: Request, exc: InternalServerError) -> JSONResponse:
        logger.error(
            "Internal error in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return _error_response(500, "Internal server error", "INTERNAL_ERROR")

    @app.exception_handler(OperationalError)
    async def on_database_unavailable(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "Database unavailable in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return _error_response(503, "Database temporarily unavailable", "DATABASE_UNAVAILABLE")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application; ``settings`` defaults to the environment."""
    settings = settings or Settings()
    show_docs = settings.debug or settings.expose_docs

    app = FastAPI(
        title="Dropsync",
        description="Dropbox folder sync and provisioning",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
        openapi_url="/openapi.json" if show_docs else None,
    )
    app.state.settings = settings

    for router in (health_router, sync_router, folders_router, connections_router, files_router):
        app.include_router(router)
    _register_error_handlers(app)
    return app


app = create_app()


def cli_entry() -> None:
    """Serve ``dropsync.main:app`` with uvicorn."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run("dropsync.main:app", host=settings.host, port=settings.port, reload=settings.debug)
