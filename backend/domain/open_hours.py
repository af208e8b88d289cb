"""Weekly availability windows such as ``"Mon to Fri (9AM to 6PM)"``.

A window is either the ``"Always open"`` sentinel (``"Always available"`` is
accepted as an alias) or a day range plus an hour range. Day ranges walk
forward from the start day to the end day and wrap across the weekend, so
``"Fri to Mon"`` covers Fri, Sat, Sun and Mon.

Instants are evaluated on their UTC wall clock. No timezone conversion is
applied: callers submit instants whose UTC value already equals the local
time at the resource.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Union


ALWAYS_OPEN_TEXT = "always open"
ALWAYS_AVAILABLE_TEXT = "always available"
_ALWAYS_TEXTS = frozenset({ALWAYS_OPEN_TEXT, ALWAYS_AVAILABLE_TEXT})

DAY_NUMBERS = {
    "sun": 0,
    "mon": 1,
    "tue": 2,
    "wed": 3,
    "thu": 4,
    "fri": 5,
    "sat": 6,
}

_WINDOW_PATTERN = re.compile(
    r"^(\w{3})\s+to\s+(\w{3})\s+\((\d+(?:AM|PM))\s+to\s+(\d+(?:AM|PM))\)$",
    re.IGNORECASE,
)
_HOUR_PATTERN = re.compile(r"^(\d+)(AM|PM)$", re.IGNORECASE)


class MalformedWindowError(ValueError):
    """Raised when an availability window string cannot be parsed."""


class ClosingBoundary(str, Enum):
    INCLUSIVE = "inclusive"
    EXCLUSIVE = "exclusive"


# "9AM to 6PM" accepts 18:00 itself, so a booking may end at closing time.
CLOSING_BOUNDARY = ClosingBoundary.INCLUSIVE


@dataclass(frozen=True)
class AlwaysAvailable:
    pass


ALWAYS_AVAILABLE = AlwaysAvailable()


@dataclass(frozen=True)
class WeeklyWindow:
    start_day: int
    end_day: int
    start_hour: int
    end_hour: int

    def days(self) -> frozenset[int]:
        """Days covered by the forward walk from start_day to end_day."""
        covered = {self.start_day}
        day = self.start_day
        while day != self.end_day and len(covered) < 7:
            day = (day + 1) % 7
            covered.add(day)
        return frozenset(covered)


ParsedWindow = Union[WeeklyWindow, AlwaysAvailable]


def parse_hour(raw: str) -> int:
    """Convert a 12-hour token (``9AM``, ``12PM``) to an hour of day."""
    match = _HOUR_PATTERN.match(raw.strip())
    if match is None:
        raise MalformedWindowError(f"Invalid hour format: '{raw}'")
    hour = int(match.group(1))
    if not 1 <= hour <= 12:
        raise MalformedWindowError(f"Hour out of range for 12-hour clock: '{raw}'")
    period = match.group(2).upper()
    if period == "PM" and hour != 12:
        hour += 12
    if period == "AM" and hour == 12:
        hour = 0
    return hour


@lru_cache(maxsize=256)
def parse_window(text: str) -> ParsedWindow:
    normalized = text.strip()
    if normalized.lower() in _ALWAYS_TEXTS:
        return ALWAYS_AVAILABLE

    match = _WINDOW_PATTERN.match(normalized)
    if match is None:
        raise MalformedWindowError(f"Unrecognized availability window: '{text}'")

    start_day_text, end_day_text, start_hour_text, end_hour_text = match.groups()
    start_day = DAY_NUMBERS.get(start_day_text.lower())
    end_day = DAY_NUMBERS.get(end_day_text.lower())
    if start_day is None or end_day is None:
        raise MalformedWindowError(
            f"Unknown day abbreviation in availability window: '{text}'"
        )

    return WeeklyWindow(
        start_day=start_day,
        end_day=end_day,
        start_hour=parse_hour(start_hour_text),
        end_hour=parse_hour(end_hour_text),
    )


def is_valid_window(text: str) -> bool:
    try:
        parse_window(text)
    except MalformedWindowError:
        return False
    return True


def _utc_wall_clock(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(timezone.utc)


def is_within(
    window: ParsedWindow,
    instant: datetime,
    closing: ClosingBoundary = CLOSING_BOUNDARY,
) -> bool:
    """Return True if ``instant`` falls inside ``window``.

    Resolution is one minute: seconds are ignored, so with the inclusive
    closing boundary 18:00:59 still counts as 18:00.
    """
    if isinstance(window, AlwaysAvailable):
        return True

    wall_clock = _utc_wall_clock(instant)
    # isoweekday(): Mon=1 .. Sun=7, so modulo 7 gives Sun=0.
    if wall_clock.isoweekday() % 7 not in window.days():
        return False

    minute_of_day = wall_clock.hour * 60 + wall_clock.minute
    start_minute = window.start_hour * 60
    end_minute = window.end_hour * 60
    if minute_of_day < start_minute:
        return False
    if closing is ClosingBoundary.INCLUSIVE:
        return minute_of_day <= end_minute
    return minute_of_day < end_minute
