"""Domain models for resource scopes, reservations and booking outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class ResourceConfig:
    """Department-scoped booking configuration of one resource."""

    resource_id: int
    resource_number: str
    department: str
    capacity: int
    availability_window: Optional[str] = None


@dataclass(frozen=True)
class BookingRequest:
    resource_number: str
    department: str
    attendee_count: int
    start_at: datetime
    end_at: datetime


@dataclass(frozen=True)
class ReservationCandidate:
    """Validated reservation that has not been persisted yet."""

    resource_id: int
    resource_number: str
    department: str
    attendee_count: int
    start_at: datetime
    end_at: datetime


@dataclass(frozen=True)
class Reservation:
    reservation_id: int
    resource_id: int
    resource_number: str
    department: str
    attendee_count: int
    start_at: datetime
    end_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class ReservationPage:
    items: list[Reservation]
    total: int
    page: int
    limit: int


@dataclass(frozen=True)
class TimeInterval:
    start_at: datetime
    end_at: datetime


@dataclass(frozen=True)
class Resource:
    resource_id: int
    resource_number: str
    name: str
    building: str
    parent_id: Optional[int]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ResourceNode:
    """Materialized subtree; children never point back at their parent."""

    resource: Resource
    scopes: tuple[ResourceConfig, ...] = ()
    children: tuple["ResourceNode", ...] = ()


# --- Booking rejections ---


@dataclass(frozen=True)
class ValidationFailure:
    """Base of the tagged rejection variants returned by booking rules."""

    kind = "validation_failure"
    message: str

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "message": self.message}


@dataclass(frozen=True)
class InvalidInterval(ValidationFailure):
    kind = "invalid_interval"


@dataclass(frozen=True)
class UnknownScope(ValidationFailure):
    kind = "unknown_scope"
    resource_exists: bool = True

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["resource_exists"] = self.resource_exists
        return payload


@dataclass(frozen=True)
class CapacityExceeded(ValidationFailure):
    kind = "capacity_exceeded"
    capacity: int = 0
    requested: int = 0

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload.update(capacity=self.capacity, requested=self.requested)
        return payload


@dataclass(frozen=True)
class OutsideWindow(ValidationFailure):
    kind = "outside_window"
    endpoint: str = "start"
    availability_window: str = ""

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload.update(
            endpoint=self.endpoint,
            availability_window=self.availability_window,
        )
        return payload


@dataclass(frozen=True)
class SlotConflict(ValidationFailure):
    """Overlap with a committed reservation, or a lost write race."""

    kind = "slot_conflict"
    colliding_interval: Optional[TimeInterval] = field(default=None)

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        if self.colliding_interval is None:
            payload["colliding_interval"] = None
        else:
            payload["colliding_interval"] = {
                "start_at": self.colliding_interval.start_at.isoformat(),
                "end_at": self.colliding_interval.end_at.isoformat(),
            }
        return payload
