"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.booking_controller import router as booking_router
from backend.controllers.health_controller import router as health_router
from backend.controllers.resource_controller import router as resource_router
from backend.repository.data_repository import DataRepository
from backend.services.booking_service import BookingService
from backend.services.conflict_detector import ConflictDetector
from backend.services.resource_service import ResourceDirectoryService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Services are attached to app.state and resolved per request by the
    providers in backend.controllers.dependencies.
    """
    settings = settings or get_settings()

    # --- Repository (SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- Services ---
    resource_service = ResourceDirectoryService(repository=repository, settings=settings)
    booking_service = BookingService(
        repository=repository,
        settings=settings,
        conflict_detector=ConflictDetector(repository),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Room booking with scope, capacity, open-hours and overlap checks",
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(resource_router)
    app.include_router(booking_router)
    app.include_router(health_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.resource_service = resource_service
    app.state.booking_service = booking_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema (tables, indexes, overlap trigger) must exist before seeding.
    """
    repository: DataRepository = app.state.repository
    settings: Settings = app.state.settings

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_resources:
        logger.info("Startup: seeding demo resources (skipped if Resources not empty)")
        repository.seed_demo_resources_if_empty()

    logger.info("Startup complete: system ready")


# Module-level app object for uvicorn
app = create_app()
