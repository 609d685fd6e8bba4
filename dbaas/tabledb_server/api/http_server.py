"""
FastAPI application factory for the TableDB HTTP gateway.

This module creates the FastAPI app with:
- TableDB service lifecycle management (blob store connect/close)
- CORS configuration for the frontend
- Versioned API routes under /api/v1
- Mapping of TableDB errors to HTTP status codes

Invariants:
    - Every TableDbError response body is the error's to_dict()
    - ValidationError -> 400, NotFoundError -> 404, ConflictError -> 409,
      TransientStoreError -> 503
    - Unexpected exceptions are logged and returned as 500 without details

How to change safely:
    - New error types need an entry in ERROR_STATUS
    - Version the API prefix if breaking changes are needed
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .._version import __version__
from ..config import ServerConfig
from ..errors import (
    ConflictError,
    NotFoundError,
    TableDbError,
    TransientStoreError,
    ValidationError,
)
from ..service import TableDB
from .routes import router
from .settings import Settings

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[TableDbError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    TransientStoreError: 503,
}


def status_for(error: TableDbError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


def create_app(db: TableDB | None = None, settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        db: Service to serve; built from ServerConfig.from_env() if omitted
        settings: Gateway settings; loaded from the environment if omitted
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage the TableDB service lifecycle."""
        service = db
        if service is None:
            config = ServerConfig.from_env()
            config.log_config()
            service = TableDB.from_config(config)

        await service.connect()
        app.state.db = service
        app.state.settings = settings

        yield

        await service.close()

    app = FastAPI(
        title="TableDB",
        description="Relational tables with enforced foreign keys on a flat blob store.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Hub-ID", "X-Actor"],
    )

    @app.exception_handler(TableDbError)
    async def tabledb_error_handler(request: Request, exc: TableDbError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.warning(
                f"{request.method} {request.url.path} failed: {exc.message}",
                extra={"error_code": exc.code},
            )
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"HTTP handler error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "error_code": "INTERNAL"},
        )

    app.include_router(router, prefix="/api/v1")

    return app
