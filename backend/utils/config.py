"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    database_busy_timeout_seconds: float
    reservation_page_size: int
    reservation_max_page_size: int
    seed_demo_resources: bool
    resource_number_regex: str
    department_max_length: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read settings from the environment once per process."""
    return Settings(
        app_name=os.getenv("BOOKING_APP_NAME", "Room Booking API"),
        app_version=os.getenv("BOOKING_APP_VERSION", "1.0.0"),
        log_level=os.getenv("BOOKING_LOG_LEVEL", "INFO"),
        database_path=Path(
            os.getenv("BOOKING_DATABASE_PATH", "data/room_booking.db")
        ),
        database_busy_timeout_seconds=float(
            os.getenv("BOOKING_DB_BUSY_TIMEOUT_SECONDS", "5.0")
        ),
        reservation_page_size=int(os.getenv("BOOKING_PAGE_SIZE", "20")),
        reservation_max_page_size=int(os.getenv("BOOKING_MAX_PAGE_SIZE", "100")),
        seed_demo_resources=_env_bool("BOOKING_SEED_DEMO", True),
        resource_number_regex=r"^[A-Z0-9][A-Z0-9-]*$",
        department_max_length=50,
    )
