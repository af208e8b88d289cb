"""Transactional overlap check and insert for validated reservations."""

from __future__ import annotations

import sqlite3
from typing import Optional, Union

from backend.domain.models import (
    Reservation,
    ReservationCandidate,
    SlotConflict,
    TimeInterval,
)
from backend.repository.data_repository import (
    DataRepository,
    is_overlap_guard_violation,
    is_serialization_failure,
)
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _conflict(
    candidate: ReservationCandidate,
    colliding: Optional[TimeInterval],
    lock_contention: bool = False,
) -> SlotConflict:
    if lock_contention:
        return SlotConflict(
            message=(
                f"Resource '{candidate.resource_number}' could not be checked for "
                "overlaps: the booking store was busy with another write; "
                "resubmit to retry"
            ),
        )
    if colliding is None:
        return SlotConflict(
            message=(
                f"Resource '{candidate.resource_number}' was booked concurrently "
                "for an overlapping slot; resubmit to retry"
            ),
        )
    return SlotConflict(
        message=(
            f"Resource '{candidate.resource_number}' is already booked from "
            f"{colliding.start_at.isoformat()} to {colliding.end_at.isoformat()}"
        ),
        colliding_interval=colliding,
    )


class ConflictDetector:
    """Commits a candidate only if no reservation for its resource overlaps.

    The overlap read and the insert share one serializable transaction.
    Losing the write lock race, or tripping the storage overlap guard, is
    reported as the same ``SlotConflict`` as a plain collision so callers
    have a single retry path. Nothing is retried here.
    """

    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def commit(
        self,
        candidate: ReservationCandidate,
    ) -> Union[Reservation, SlotConflict]:
        try:
            with self._repository.serializable_transaction() as conn:
                colliding = self._repository.find_overlapping_reservation(
                    conn,
                    resource_id=candidate.resource_id,
                    start_at=candidate.start_at,
                    end_at=candidate.end_at,
                )
                if colliding is not None:
                    # Leaving the block by return commits an empty transaction.
                    return _conflict(candidate, colliding)
                reservation = self._repository.insert_reservation(conn, candidate)
        except sqlite3.OperationalError as exc:
            if not is_serialization_failure(exc):
                raise
            logger.warning(
                "Serialization failure for resource %s: %s",
                candidate.resource_number,
                exc,
            )
            return _conflict(candidate, None, lock_contention=True)
        except sqlite3.IntegrityError as exc:
            if not is_overlap_guard_violation(exc):
                raise
            logger.warning(
                "Overlap guard rejected insert for resource %s",
                candidate.resource_number,
            )
            return _conflict(candidate, None)

        logger.info(
            "Reservation committed: id=%s resource=%s %s..%s",
            reservation.reservation_id,
            reservation.resource_number,
            reservation.start_at.isoformat(),
            reservation.end_at.isoformat(),
        )
        return reservation
