#!/usr/bin/env python3
"""Validate local booking service environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.repository.data_repository import DEMO_RESOURCES, DataRepository
from backend.services.booking_service import BookingRejectedError, BookingService
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="booking-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    from importlib.metadata import PackageNotFoundError, version

    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "booking_validation.db",
        )
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except RuntimeError as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo resource seeding
        try:
            seeded = repository.seed_demo_resources_if_empty()
            if seeded != len(DEMO_RESOURCES):
                raise RuntimeError(f"expected {len(DEMO_RESOURCES)} resources, got {seeded}")
            ok, line = _print_result("Demo resources", True, f": {seeded} nodes")
        except RuntimeError as exc:
            ok, line = _print_result("Demo resources", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Booking round-trip with overlap rejection
        service = BookingService(repository=repository, settings=validation_settings)
        start_at = datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc)
        end_at = datetime(2026, 3, 9, 11, 0, tzinfo=timezone.utc)
        try:
            reservation = service.submit("A-01-01", "EFM", 8, start_at, end_at)
            try:
                service.submit("A-01-01", "EFM", 2, start_at, end_at)
                raise RuntimeError("overlapping reservation was accepted")
            except BookingRejectedError as exc:
                if exc.kind != "slot_conflict":
                    raise RuntimeError(f"expected slot_conflict, got {exc.kind}") from exc
            ok, line = _print_result(
                "Booking round-trip",
                True,
                f": reservation id={reservation.reservation_id}",
            )
        except (BookingRejectedError, RuntimeError) as exc:
            ok, line = _print_result("Booking round-trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Service Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
