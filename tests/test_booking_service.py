from __future__ import annotations

import sqlite3
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from backend.domain.models import ReservationCandidate, SlotConflict, TimeInterval
from backend.repository.data_repository import DataRepository, to_db_timestamp
from backend.services.booking_service import (
    BookingRejectedError,
    BookingService,
    PaginationError,
    ReservationNotFoundError,
)
from backend.services.conflict_detector import ConflictDetector
from backend.services.resource_service import ResourceDirectoryService
from backend.utils.config import get_settings


def _utc(day: int, hour: int, minute: int = 0) -> datetime:
    # March 2026: the 9th is a Monday, the 14th a Saturday.
    return datetime(2026, 3, day, hour, minute, tzinfo=timezone.utc)


def _build_test_settings(tmp_path, filename: str, **overrides):
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, **overrides)


def _build_service(tmp_path, filename: str, **overrides) -> tuple[BookingService, DataRepository]:
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_resources_if_empty()
    return BookingService(repository=repository, settings=settings), repository


def _submit_scenario_a(service: BookingService):
    return service.submit("A-01-01", "EFM", 8, _utc(9, 9), _utc(9, 11))


def _rejection(callable_, *args) -> BookingRejectedError:
    with pytest.raises(BookingRejectedError) as exc_info:
        callable_(*args)
    return exc_info.value


# --- End-to-end scenarios ---

def test_scenario_a_valid_booking_succeeds(tmp_path):
    service, repository = _build_service(tmp_path, "scenario_a.db")

    reservation = _submit_scenario_a(service)

    assert reservation.reservation_id > 0
    assert reservation.resource_number == "A-01-01"
    assert reservation.department == "EFM"
    assert reservation.attendee_count == 8
    assert reservation.start_at == _utc(9, 9)
    assert reservation.end_at == _utc(9, 11)
    assert repository.count_reservations("A-01-01") == 1


def test_scenario_b_over_capacity(tmp_path):
    service, repository = _build_service(tmp_path, "scenario_b.db")

    exc = _rejection(service.submit, "A-01-01", "EFM", 11, _utc(9, 9), _utc(9, 11))

    assert exc.kind == "capacity_exceeded"
    assert exc.failure.capacity == 10
    assert exc.failure.requested == 11
    assert repository.count_reservations() == 0


def test_scenario_c_wrong_department(tmp_path):
    service, _ = _build_service(tmp_path, "scenario_c.db")

    exc = _rejection(service.submit, "A-01-01", "FSS", 8, _utc(9, 9), _utc(9, 11))

    assert exc.kind == "unknown_scope"
    assert exc.failure.resource_exists is True


def test_scenario_d_weekend_outside_window(tmp_path):
    service, _ = _build_service(tmp_path, "scenario_d.db")

    exc = _rejection(service.submit, "A-01-01", "EFM", 8, _utc(14, 10), _utc(14, 11))

    assert exc.kind == "outside_window"
    assert exc.failure.endpoint == "start"


def test_scenario_e_overlap_after_commit(tmp_path):
    service, repository = _build_service(tmp_path, "scenario_e.db")
    _submit_scenario_a(service)

    exc = _rejection(service.submit, "A-01-01", "EFM", 4, _utc(9, 10), _utc(9, 10, 30))

    assert exc.kind == "slot_conflict"
    assert exc.retryable
    assert exc.failure.colliding_interval == TimeInterval(_utc(9, 9), _utc(9, 11))
    assert repository.count_reservations("A-01-01") == 1


# --- Other rule outcomes through the service ---

def test_capacity_boundary_is_accepted(tmp_path):
    service, _ = _build_service(tmp_path, "capacity_boundary.db")
    reservation = service.submit("A-01-01", "EFM", 10, _utc(9, 9), _utc(9, 10))
    assert reservation.attendee_count == 10


def test_unknown_resource_reports_missing_resource(tmp_path):
    service, _ = _build_service(tmp_path, "unknown_resource.db")
    exc = _rejection(service.submit, "Z-99", "EFM", 1, _utc(9, 9), _utc(9, 10))
    assert exc.kind == "unknown_scope"
    assert exc.failure.resource_exists is False


def test_non_bookable_resource_is_unknown_scope(tmp_path):
    service, _ = _build_service(tmp_path, "not_bookable.db")
    exc = _rejection(service.submit, "A-01-Lobby", "EFM", 1, _utc(9, 9), _utc(9, 10))
    assert exc.kind == "unknown_scope"
    assert exc.failure.resource_exists is True


def test_inverted_interval_rejected_before_lookup_result(tmp_path):
    service, _ = _build_service(tmp_path, "inverted.db")
    exc = _rejection(service.submit, "Z-99", "EFM", 1, _utc(9, 11), _utc(9, 9))
    assert exc.kind == "invalid_interval"


def test_rejection_is_idempotent(tmp_path):
    service, repository = _build_service(tmp_path, "idempotent.db")
    kinds = {
        _rejection(service.submit, "A-01-01", "EFM", 11, _utc(9, 9), _utc(9, 11)).kind
        for _ in range(3)
    }
    assert kinds == {"capacity_exceeded"}
    assert repository.count_reservations() == 0


def test_adjacent_reservations_do_not_conflict(tmp_path):
    service, repository = _build_service(tmp_path, "adjacent.db")
    _submit_scenario_a(service)
    service.submit("A-01-01", "EFM", 2, _utc(9, 11), _utc(9, 12))
    service.submit("A-01-01", "EFM", 2, _utc(10, 9), _utc(10, 10))
    assert repository.count_reservations("A-01-01") == 3


def test_same_slot_on_other_resource_does_not_conflict(tmp_path):
    service, repository = _build_service(tmp_path, "other_resource.db")
    _submit_scenario_a(service)
    service.submit("B-05-12", "EFM", 8, _utc(9, 9), _utc(9, 11))
    assert repository.count_reservations() == 2


def test_non_utc_input_is_stored_as_utc(tmp_path):
    service, _ = _build_service(tmp_path, "non_utc.db")
    plus_one = timezone(timedelta(hours=1))
    reservation = service.submit(
        "A-01-01",
        "EFM",
        3,
        datetime(2026, 3, 9, 10, 0, tzinfo=plus_one),
        datetime(2026, 3, 9, 12, 0, tzinfo=plus_one),
    )
    assert reservation.start_at == _utc(9, 9)
    assert reservation.start_at.utcoffset() == timedelta(0)


# --- Concurrency ---

def test_concurrent_overlapping_submissions_admit_exactly_one(tmp_path):
    service, repository = _build_service(tmp_path, "concurrent.db")
    workers = 6
    barrier = threading.Barrier(workers)
    successes: list[int] = []
    conflicts: list[str] = []
    unexpected: list[BaseException] = []
    lock = threading.Lock()

    def _worker(offset: int) -> None:
        barrier.wait()
        try:
            reservation = service.submit(
                "A-01-01",
                "EFM",
                2,
                _utc(9, 9, offset),
                _utc(9, 11, offset),
            )
        except BookingRejectedError as exc:
            with lock:
                conflicts.append(exc.kind)
        except BaseException as exc:  # pragma: no cover - surfaced by assert below
            with lock:
                unexpected.append(exc)
        else:
            with lock:
                successes.append(reservation.reservation_id)

    threads = [threading.Thread(target=_worker, args=(index * 5,)) for index in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert unexpected == []
    assert len(successes) == 1
    assert conflicts == ["slot_conflict"] * (workers - 1)
    assert repository.count_reservations("A-01-01") == 1


def test_held_write_lock_is_reported_as_slot_conflict(tmp_path):
    service, repository = _build_service(
        tmp_path,
        "held_lock.db",
        database_busy_timeout_seconds=0.1,
    )
    blocker = sqlite3.connect(repository.database_path, isolation_level=None)
    try:
        blocker.execute("BEGIN IMMEDIATE;")
        exc = _rejection(service.submit, "A-01-01", "EFM", 8, _utc(9, 9), _utc(9, 11))
    finally:
        blocker.execute("ROLLBACK;")
        blocker.close()

    assert exc.kind == "slot_conflict"
    assert exc.failure.colliding_interval is None
    assert "busy" in exc.failure.message

    # Once the lock is released the same request goes through.
    assert _submit_scenario_a(service).attendee_count == 8


# --- Conflict detector ---

def _candidate(repository: DataRepository, start_at: datetime, end_at: datetime):
    config = repository.resolve_config("A-01-01", "EFM")
    assert config is not None
    return ReservationCandidate(
        resource_id=config.resource_id,
        resource_number=config.resource_number,
        department=config.department,
        attendee_count=2,
        start_at=start_at,
        end_at=end_at,
    )


def test_storage_overlap_guard_is_translated(tmp_path, monkeypatch):
    service, repository = _build_service(tmp_path, "overlap_guard.db")
    _submit_scenario_a(service)
    monkeypatch.setattr(repository, "find_overlapping_reservation", lambda *args, **kwargs: None)

    outcome = ConflictDetector(repository).commit(_candidate(repository, _utc(9, 10), _utc(9, 12)))

    assert isinstance(outcome, SlotConflict)
    assert outcome.colliding_interval is None
    assert repository.count_reservations() == 1


def test_unrelated_storage_error_propagates_and_rolls_back(tmp_path, monkeypatch):
    _, repository = _build_service(tmp_path, "io_error.db")
    real_insert = DataRepository.insert_reservation

    def _insert_then_fail(conn, candidate):
        real_insert(conn, candidate)
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(repository, "insert_reservation", _insert_then_fail)

    with pytest.raises(sqlite3.OperationalError, match="disk I/O error"):
        ConflictDetector(repository).commit(_candidate(repository, _utc(9, 9), _utc(9, 10)))
    assert repository.count_reservations() == 0


def test_abandoned_request_leaves_no_partial_effect(tmp_path, monkeypatch):
    class Abandoned(BaseException):
        pass

    _, repository = _build_service(tmp_path, "abandoned.db")
    real_insert = DataRepository.insert_reservation

    def _insert_then_abandon(conn, candidate):
        real_insert(conn, candidate)
        raise Abandoned()

    monkeypatch.setattr(repository, "insert_reservation", _insert_then_abandon)

    with pytest.raises(Abandoned):
        ConflictDetector(repository).commit(_candidate(repository, _utc(9, 9), _utc(9, 10)))
    assert repository.count_reservations() == 0


def test_lock_wait_on_unrelated_resource_says_store_was_busy(tmp_path):
    service, repository = _build_service(
        tmp_path,
        "busy_other_resource.db",
        database_busy_timeout_seconds=0.1,
    )
    blocker = sqlite3.connect(repository.database_path, isolation_level=None)
    try:
        blocker.execute("BEGIN IMMEDIATE;")
        exc = _rejection(service.submit, "B-05-12", "EFM", 2, _utc(9, 9), _utc(9, 10))
    finally:
        blocker.execute("ROLLBACK;")
        blocker.close()

    assert exc.kind == "slot_conflict"
    assert exc.retryable is True
    assert "busy with another write" in exc.failure.message
    assert "already booked" not in exc.failure.message
    assert repository.count_reservations() == 0


# --- Timestamp storage ---

def test_early_year_timestamps_are_zero_padded():
    stamp = to_db_timestamp(datetime(999, 1, 1, 9, 0, tzinfo=timezone.utc))
    assert stamp == "0999-01-01T09:00:00.000000+00:00"
    assert to_db_timestamp(datetime(2026, 3, 9, 9, 0)) == "2026-03-09T09:00:00.000000+00:00"


def test_year_999_booking_round_trips_and_detects_overlap(tmp_path):
    service, repository = _build_service(tmp_path, "year_999.db")
    start_at = datetime(999, 1, 1, 9, 0, tzinfo=timezone.utc)
    end_at = datetime(999, 1, 1, 10, 0, tzinfo=timezone.utc)

    reservation = service.submit("B-05-11", "ASS", 1, start_at, end_at)

    assert reservation.start_at == start_at
    assert reservation.end_at == end_at
    assert service.get_reservation(reservation.reservation_id).start_at == start_at

    exc = _rejection(
        service.submit,
        "B-05-11",
        "ASS",
        1,
        datetime(999, 1, 1, 9, 30, tzinfo=timezone.utc),
        datetime(999, 1, 1, 11, 0, tzinfo=timezone.utc),
    )
    assert exc.kind == "slot_conflict"
    assert exc.failure.colliding_interval == TimeInterval(start_at=start_at, end_at=end_at)

    # A modern booking on the same resource sorts after it and does not collide.
    service.submit("B-05-11", "ASS", 1, _utc(9, 9), _utc(9, 10))
    assert repository.count_reservations("B-05-11") == 2

# --- Read side ---

def test_list_reservations_newest_first_with_pagination(tmp_path):
    service, _ = _build_service(tmp_path, "listing.db")
    first = service.submit("A-01-01", "EFM", 1, _utc(9, 9), _utc(9, 10))
    second = service.submit("A-01-01", "EFM", 1, _utc(9, 10), _utc(9, 11))
    third = service.submit("B-05-12", "EFM", 1, _utc(9, 9), _utc(9, 10))

    page_one = service.list_reservations(page=1, limit=2)
    page_two = service.list_reservations(page=2, limit=2)
    filtered = service.list_reservations(resource_number="A-01-01")

    assert [item.reservation_id for item in page_one.items] == [
        third.reservation_id,
        second.reservation_id,
    ]
    assert [item.reservation_id for item in page_two.items] == [first.reservation_id]
    assert page_one.total == 3
    assert filtered.total == 2
    assert [item.reservation_id for item in filtered.items] == [
        second.reservation_id,
        first.reservation_id,
    ]


@pytest.mark.parametrize(("page", "limit"), [(0, 10), (1, 0), (1, 101)])
def test_list_reservations_rejects_bad_pagination(tmp_path, page, limit):
    service, _ = _build_service(tmp_path, "bad_pagination.db")
    with pytest.raises(PaginationError):
        service.list_reservations(page=page, limit=limit)


def test_get_and_remove_reservation(tmp_path):
    service, repository = _build_service(tmp_path, "remove.db")
    reservation = _submit_scenario_a(service)

    assert service.get_reservation(reservation.reservation_id) == reservation
    service.remove_reservation(reservation.reservation_id)

    with pytest.raises(ReservationNotFoundError):
        service.get_reservation(reservation.reservation_id)
    with pytest.raises(ReservationNotFoundError):
        service.remove_reservation(reservation.reservation_id)
    # The freed slot can be booked again.
    assert _submit_scenario_a(service).reservation_id != reservation.reservation_id


def test_deleting_resource_cascades_to_reservations(tmp_path):
    service, repository = _build_service(tmp_path, "cascade.db")
    _submit_scenario_a(service)

    ResourceDirectoryService(repository=repository).remove_resource("A-01")

    assert repository.count_reservations() == 0
    assert not repository.resource_exists("A-01-01")
