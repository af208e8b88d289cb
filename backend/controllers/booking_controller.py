"""HTTP controller layer for reservations."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from backend.controllers.dependencies import get_booking_service
from backend.domain.models import Reservation, UnknownScope
from backend.services.booking_service import (
    BookingRejectedError,
    BookingService,
    PaginationError,
    ReservationNotFoundError,
)
from backend.utils.config import get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/reservations", tags=["reservations"])


class CreateReservationRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    resource_number: str = Field(
        min_length=1,
        pattern=settings.resource_number_regex,
        examples=["A-01-01"],
    )
    department: str = Field(
        min_length=1,
        max_length=settings.department_max_length,
        examples=["EFM"],
    )
    attendee_count: int = Field(ge=1, examples=[8])
    start_at: datetime = Field(examples=["2026-03-09T09:00:00Z"])
    end_at: datetime = Field(examples=["2026-03-09T11:00:00Z"])


class ReservationResponse(BaseModel):
    id: int
    resource_number: str
    department: str
    attendee_count: int
    start_at: datetime
    end_at: datetime
    created_at: datetime

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationResponse":
        return cls(
            id=reservation.reservation_id,
            resource_number=reservation.resource_number,
            department=reservation.department,
            attendee_count=reservation.attendee_count,
            start_at=reservation.start_at,
            end_at=reservation.end_at,
            created_at=reservation.created_at,
        )


class ReservationPageResponse(BaseModel):
    data: list[ReservationResponse]
    total: int = Field(ge=0)
    page: int = Field(ge=1)
    limit: int = Field(ge=1)


def _rejection_status(exc: BookingRejectedError) -> int:
    failure = exc.failure
    if isinstance(failure, UnknownScope) and not failure.resource_exists:
        return status.HTTP_404_NOT_FOUND
    if exc.retryable:
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


@router.post(
    "",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_reservation(
    payload: CreateReservationRequest,
    service: BookingService = Depends(get_booking_service),
) -> ReservationResponse:
    """Validate scope, capacity and open hours, then book the slot."""
    try:
        reservation = service.submit(
            resource_number=payload.resource_number,
            department=payload.department,
            attendee_count=payload.attendee_count,
            start_at=payload.start_at,
            end_at=payload.end_at,
        )
        return ReservationResponse.from_domain(reservation)
    except BookingRejectedError as exc:
        raise HTTPException(
            status_code=_rejection_status(exc),
            detail=exc.failure.to_dict(),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected reservation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create reservation",
        ) from exc


@router.get("", response_model=ReservationPageResponse)
def list_reservations(
    resource_number: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=settings.reservation_page_size, ge=1),
    service: BookingService = Depends(get_booking_service),
) -> ReservationPageResponse:
    """Newest reservations first."""
    try:
        result = service.list_reservations(
            resource_number=resource_number,
            page=page,
            limit=limit,
        )
    except PaginationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    return ReservationPageResponse(
        data=[ReservationResponse.from_domain(item) for item in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
    )


@router.get("/{reservation_id}", response_model=ReservationResponse)
def get_reservation(
    reservation_id: int,
    service: BookingService = Depends(get_booking_service),
) -> ReservationResponse:
    try:
        return ReservationResponse.from_domain(service.get_reservation(reservation_id))
    except ReservationNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.delete("/{reservation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_reservation(
    reservation_id: int,
    service: BookingService = Depends(get_booking_service),
) -> Response:
    try:
        service.remove_reservation(reservation_id)
    except ReservationNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
