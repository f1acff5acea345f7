"""
FastAPI application factory.

``create_app()`` assembles the application with CORS, error handlers,
routers, and the health endpoint. The module-level ``app`` instance
allows ``uvicorn plainly.api.app:app --reload``.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from plainly import __version__
from plainly.api import websocket
from plainly.api.middleware.error_handler import register_error_handlers
from plainly.api.routes import recordings, session
from plainly.core.config import get_settings
from plainly.core.models import HealthResponse
from plainly.services.coordinator import reset_coordinator
from plainly.services.storage.database import close_db, init_db, ping_db


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown lifecycle.

    Startup: initialize the async SQLite database (create tables if needed).
    Shutdown: discard any unfinished capture, stop the pipeline, dispose the DB engine.
    """
    await init_db()
    yield
    await reset_coordinator()
    await close_db()


def create_app() -> FastAPI:
    """Build and return a fully configured FastAPI application."""

    app = FastAPI(
        title="Plainly",
        description="Voice capture session and processing pipeline coordinator.",
        version=__version__,
        lifespan=lifespan,
    )

    # -- CORS --
    settings = get_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -- Error handlers --
    register_error_handlers(app)

    # -- Health check (root-level, not under /api/v1) --
    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health() -> HealthResponse:
        database = "ok" if await ping_db() else "unavailable"
        return HealthResponse(version=__version__, database=database, timestamp=datetime.now(UTC))

    # -- REST routes --
    app.include_router(session.router, prefix="/api/v1")
    app.include_router(recordings.router, prefix="/api/v1")

    # -- WebSocket --
    app.include_router(websocket.router)

    return app


app = create_app()
