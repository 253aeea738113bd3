"""
FastAPI application entry point for the weatherio backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from weatherio.config import Settings, get_settings, mask_url
from weatherio.dependencies import get_connection
from weatherio.exceptions import DatabaseConnectionError
from weatherio.routes import router

logger = logging.getLogger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        # Unmatched methods answer like unmatched paths.
        if exc.status_code in (404, 405):
            return JSONResponse(
                status_code=404,
                content={"error": "not-found", "path": request.url.path},
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "invalid-request", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(DatabaseConnectionError)
    async def database_unavailable(request: Request, exc: DatabaseConnectionError):
        logger.error("Database unavailable for %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"error": "database-unavailable"})

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.error("Unhandled error: %s", exc, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "internal-error"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    connection = get_connection()
    if connection.connected:
        logger.info("Closing database connection")
        connection.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    if not settings.database_url and not settings.use_in_memory_backends:
        logger.warning("DATABASE_URL is not set")
    logger.info("[startup] DATABASE_URL: %s", mask_url(settings.database_url))

    app = FastAPI(title="weatherio", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    _register_error_handlers(app)

    static_dir = Path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir), name="static")
    return app


app = create_app()
