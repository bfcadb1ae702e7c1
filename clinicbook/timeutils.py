"""
Wall-clock time parsing and booking-horizon helpers.

All time strings that enter the system (availability responses, push
messages, appointment records) go through ``normalize_time`` so that
comparisons and display always use the canonical 24-hour ``HH:MM`` form.

Accepted input formats:

- ``HH:MM`` and ``H:MM`` (24-hour)
- ``HH:MM:SS`` and ``HH:MM:SS.ffffff`` (24-hour, seconds discarded)
- ``H:MM AM`` / ``H:MM PM`` (12-hour, case-insensitive, optional space)
- ``HHMM`` (24-hour, no separator)
"""

import re
from datetime import date, datetime, timedelta
from typing import List

_CLOCK_PATTERN = re.compile(
    r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::\d{2}(?:\.\d+)?)?\s*(?P<period>[AaPp][Mm])?$"
)
_COMPACT_PATTERN = re.compile(r"^(?P<hour>\d{2})(?P<minute>\d{2})$")

MINUTES_PER_DAY = 24 * 60


class TimeFormatError(ValueError):
    """Raised when a string is not a recognised wall-clock time."""


def parse_wall_clock_time(value: str) -> int:
    """
    Parse a wall-clock time string into minutes since midnight.

    Args:
        value: Time string in one of the module's accepted formats

    Returns:
        Minutes since midnight (0-1439)

    Raises:
        TimeFormatError: If the string is empty, malformed or out of range
    """
    if not isinstance(value, str):
        raise TimeFormatError(f"Expected a time string, got {type(value).__name__}")

    text = value.strip()
    match = _CLOCK_PATTERN.match(text) or _COMPACT_PATTERN.match(text)
    if not match:
        raise TimeFormatError(f"Unrecognised time format: {value!r}")

    hour = int(match.group("hour"))
    minute = int(match.group("minute"))
    period = match.groupdict().get("period")

    if minute > 59:
        raise TimeFormatError(f"Minute out of range in {value!r}")

    if period:
        if hour < 1 or hour > 12:
            raise TimeFormatError(f"Hour out of range for 12-hour time {value!r}")
        period = period.upper()
        if period == "PM" and hour < 12:
            hour += 12
        elif period == "AM" and hour == 12:
            hour = 0
    elif hour > 23:
        raise TimeFormatError(f"Hour out of range in {value!r}")

    return hour * 60 + minute


def format_minutes(minutes: int) -> str:
    """Format minutes since midnight as ``HH:MM``."""
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise TimeFormatError(f"Minutes out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def normalize_time(value: str) -> str:
    """Normalize any accepted time string to canonical ``HH:MM``."""
    return format_minutes(parse_wall_clock_time(value))


def minutes_of_day(moment: datetime) -> int:
    """Minutes since midnight for a datetime, ignoring seconds."""
    return moment.hour * 60 + moment.minute


def booking_horizon(today: date, days: int = 56) -> List[date]:
    """Every calendar date from ``today`` through ``today + days`` inclusive."""
    return [today + timedelta(days=offset) for offset in range(days + 1)]
