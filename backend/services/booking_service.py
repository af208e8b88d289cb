"""Reservation submission and read-side queries."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import NoReturn, Optional

from backend.domain.constraints import evaluate_booking
from backend.domain.models import (
    BookingRequest,
    Reservation,
    ReservationPage,
    SlotConflict,
    ValidationFailure,
)
from backend.repository.data_repository import DataRepository
from backend.services.conflict_detector import ConflictDetector
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class BookingError(Exception):
    """Base exception for reservation workflow failures."""


class BookingRejectedError(BookingError):
    """Raised when a reservation is refused; carries the single reason."""

    def __init__(self, failure: ValidationFailure) -> None:
        super().__init__(failure.message)
        self.failure = failure

    @property
    def kind(self) -> str:
        return self.failure.kind

    @property
    def retryable(self) -> bool:
        return isinstance(self.failure, SlotConflict)


class ReservationNotFoundError(BookingError):
    """Raised when a reservation id does not exist."""


class PaginationError(BookingError):
    """Raised when page/limit are out of range."""


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BookingService:
    """Runs the booking rules, then hands candidates to the conflict detector."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        conflict_detector: Optional[ConflictDetector] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._conflict_detector = conflict_detector or ConflictDetector(self._repository)

    def submit(
        self,
        resource_number: str,
        department: str,
        attendee_count: int,
        start_at: datetime,
        end_at: datetime,
    ) -> Reservation:
        logger.info(
            "Booking request: resource=%s department=%s attendees=%s",
            resource_number,
            department,
            attendee_count,
        )
        request = BookingRequest(
            resource_number=resource_number,
            department=department,
            attendee_count=attendee_count,
            start_at=_as_utc(start_at),
            end_at=_as_utc(end_at),
        )

        config = self._repository.resolve_config(resource_number, department)
        resource_exists = (
            config is not None or self._repository.resource_exists(resource_number)
        )
        outcome = evaluate_booking(request, config, resource_exists)
        if isinstance(outcome, ValidationFailure):
            self._reject(request, outcome)

        committed = self._conflict_detector.commit(outcome)
        if isinstance(committed, SlotConflict):
            self._reject(request, committed)
        return committed

    def _reject(self, request: BookingRequest, failure: ValidationFailure) -> NoReturn:
        logger.info(
            "Booking rejected: resource=%s department=%s kind=%s",
            request.resource_number,
            request.department,
            failure.kind,
        )
        raise BookingRejectedError(failure)

    def list_reservations(
        self,
        resource_number: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> ReservationPage:
        resolved_limit = limit if limit is not None else self._settings.reservation_page_size
        if page < 1:
            raise PaginationError("page must be >= 1")
        if not 1 <= resolved_limit <= self._settings.reservation_max_page_size:
            raise PaginationError(
                f"limit must be between 1 and {self._settings.reservation_max_page_size}"
            )
        items = self._repository.list_reservations(
            resource_number=resource_number,
            limit=resolved_limit,
            offset=(page - 1) * resolved_limit,
        )
        total = self._repository.count_reservations(resource_number)
        return ReservationPage(items=items, total=total, page=page, limit=resolved_limit)

    def get_reservation(self, reservation_id: int) -> Reservation:
        reservation = self._repository.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(f"Reservation with id {reservation_id} not found")
        return reservation

    def remove_reservation(self, reservation_id: int) -> None:
        if not self._repository.delete_reservation(reservation_id):
            raise ReservationNotFoundError(f"Reservation with id {reservation_id} not found")
        logger.info("Reservation removed: id=%s", reservation_id)
