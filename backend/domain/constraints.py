"""Ordered booking rules.

Each rule is a pure function of the request and the resolved scope. It
returns ``None`` when the request passes and a ``ValidationFailure`` variant
otherwise. Rules run in ``BOOKING_RULES`` order and the first failure wins, so
a given request is always rejected for the same single reason.
"""

from __future__ import annotations

from typing import Callable, Optional, Union

from backend.domain.models import (
    BookingRequest,
    CapacityExceeded,
    InvalidInterval,
    OutsideWindow,
    ReservationCandidate,
    ResourceConfig,
    UnknownScope,
    ValidationFailure,
)
from backend.domain.open_hours import is_within, parse_window


BookingRule = Callable[
    [BookingRequest, Optional[ResourceConfig], bool],
    Optional[ValidationFailure],
]


def check_interval(
    request: BookingRequest,
    config: Optional[ResourceConfig],
    resource_exists: bool,
) -> Optional[ValidationFailure]:
    if request.start_at >= request.end_at:
        return InvalidInterval(
            message=(
                "start_at must be before end_at "
                f"(got start_at={request.start_at.isoformat()}, "
                f"end_at={request.end_at.isoformat()})"
            )
        )
    return None


def check_scope(
    request: BookingRequest,
    config: Optional[ResourceConfig],
    resource_exists: bool,
) -> Optional[ValidationFailure]:
    if config is not None:
        return None
    if not resource_exists:
        return UnknownScope(
            message=f"Resource '{request.resource_number}' not found",
            resource_exists=False,
        )
    return UnknownScope(
        message=(
            f"Resource '{request.resource_number}' is not bookable by "
            f"department '{request.department}'"
        ),
        resource_exists=True,
    )


def check_capacity(
    request: BookingRequest,
    config: Optional[ResourceConfig],
    resource_exists: bool,
) -> Optional[ValidationFailure]:
    if config is None:
        return None
    if request.attendee_count > config.capacity:
        return CapacityExceeded(
            message=(
                f"Capacity exceeded: resource '{request.resource_number}' holds "
                f"{config.capacity} people for '{config.department}', "
                f"requested {request.attendee_count}"
            ),
            capacity=config.capacity,
            requested=request.attendee_count,
        )
    return None


def check_availability_window(
    request: BookingRequest,
    config: Optional[ResourceConfig],
    resource_exists: bool,
) -> Optional[ValidationFailure]:
    if config is None or config.availability_window is None:
        return None

    window = parse_window(config.availability_window)
    for endpoint, instant in (("start", request.start_at), ("end", request.end_at)):
        if not is_within(window, instant):
            return OutsideWindow(
                message=(
                    f"Booking {endpoint} time is outside open hours for "
                    f"'{request.resource_number}' ({config.availability_window})"
                ),
                endpoint=endpoint,
                availability_window=config.availability_window,
            )
    return None


BOOKING_RULES: tuple[BookingRule, ...] = (
    check_interval,
    check_scope,
    check_capacity,
    check_availability_window,
)


def first_failure(
    request: BookingRequest,
    config: Optional[ResourceConfig],
    resource_exists: bool = True,
) -> Optional[ValidationFailure]:
    for rule in BOOKING_RULES:
        failure = rule(request, config, resource_exists)
        if failure is not None:
            return failure
    return None


def evaluate_booking(
    request: BookingRequest,
    config: Optional[ResourceConfig],
    resource_exists: bool = True,
) -> Union[ReservationCandidate, ValidationFailure]:
    """Run every rule and build the candidate the conflict check will insert."""
    failure = first_failure(request, config, resource_exists)
    if failure is not None:
        return failure
    if config is None:
        raise ValueError("booking rules passed without a resolved scope")
    return ReservationCandidate(
        resource_id=config.resource_id,
        resource_number=config.resource_number,
        department=config.department,
        attendee_count=request.attendee_count,
        start_at=request.start_at,
        end_at=request.end_at,
    )
