"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from backend.repository.data_repository import DataRepository
from backend.services.booking_service import BookingService
from backend.services.resource_service import ResourceDirectoryService


def _require_state(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_repository(request: Request) -> DataRepository:
    return _require_state(request, "repository", "Repository")


def get_booking_service(request: Request) -> BookingService:
    return _require_state(request, "booking_service", "Booking service")


def get_resource_service(request: Request) -> ResourceDirectoryService:
    return _require_state(request, "resource_service", "Resource service")
