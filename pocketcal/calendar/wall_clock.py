"""Wall-clock normalization for recurrence arithmetic.

Two arithmetic spaces are kept apart here:

- *wall-clock space*: naive ``datetime`` values whose fields are exactly what
  the user wrote ("17:45" stays 17:45 whatever offset the string carried);
- *synthetic space*: UTC-aware ``datetime`` values whose numeric fields equal
  the wall-clock fields. The repeat-rule library computes in this space, which
  has no DST transitions, so a daily 09:00 event stays at 09:00.

``to_synthetic_instant`` and ``from_synthetic_instant`` are the only crossings
between the two. Neither performs a real zone conversion.
"""

import logging
from datetime import UTC, datetime, time, timedelta
from typing import Union

from dateutil import parser as date_parser

from ..exceptions import WallClockParseError

logger = logging.getLogger(__name__)

WallClockInput = Union[str, datetime]

WALL_CLOCK_FORMAT = "%Y-%m-%dT%H:%M:%S"
UNTIL_FORMAT = "%Y%m%dT%H%M%SZ"


def parse_wall_clock(value: WallClockInput) -> datetime:
    """Read an ISO-8601 timestamp as a naive wall-clock datetime.

    Any offset or zone suffix is dropped without conversion.

    Args:
        value: ISO-8601 string (with or without offset) or a datetime

    Returns:
        Naive datetime with microseconds cleared

    Raises:
        WallClockParseError: If the value is empty or not a valid timestamp
    """
    if isinstance(value, datetime):
        return value.replace(tzinfo=None, microsecond=0)

    if not isinstance(value, str) or not value.strip():
        raise WallClockParseError(f"Not a wall-clock timestamp: {value!r}")

    try:
        parsed = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError) as exc:
        raise WallClockParseError(f"Invalid ISO-8601 timestamp: {value!r}") from exc

    return parsed.replace(tzinfo=None, microsecond=0)


def wall_clock_fields(wall: datetime) -> tuple[int, int, int, int, int, int]:
    """Return the (year, month, day, hour, minute, second) tuple of a wall-clock value."""
    return (wall.year, wall.month, wall.day, wall.hour, wall.minute, wall.second)


def to_synthetic_instant(wall: datetime) -> datetime:
    """Encode a wall-clock value into synthetic space.

    The result is UTC-aware with numeric fields equal to the wall-clock fields.
    """
    return datetime(*wall_clock_fields(wall), tzinfo=UTC)


def from_synthetic_instant(instant: datetime) -> datetime:
    """Decode a synthetic instant back into wall-clock space.

    The numeric fields are read back as written. An instant carrying a non-UTC
    tzinfo is first brought to UTC, which is the frame synthetic fields live in.
    """
    if instant.tzinfo is not None and instant.utcoffset() != timedelta(0):
        instant = instant.astimezone(UTC)
    return instant.replace(tzinfo=None, microsecond=0)


def format_wall_clock(wall: datetime) -> str:
    """Format a wall-clock value as ``YYYY-MM-DDTHH:MM:SS`` (no offset)."""
    return wall.strftime(WALL_CLOCK_FORMAT)


def normalize_wall_clock(value: WallClockInput) -> str:
    """Parse and re-format a timestamp into the canonical wall-clock string.

    Raises:
        WallClockParseError: If the value cannot be parsed
    """
    return format_wall_clock(parse_wall_clock(value))


def format_until(wall: datetime) -> str:
    """Format a wall-clock value as an RRULE ``UNTIL`` bound in synthetic UTC.

    The fields are written as-is with a ``Z`` suffix; they are not converted
    from local time to real UTC.
    """
    return to_synthetic_instant(wall).strftime(UNTIL_FORMAT)


def time_of_day(wall: datetime) -> time:
    """Return the (hour, minute, second) part of a wall-clock value."""
    return time(wall.hour, wall.minute, wall.second)


def replace_time_of_day(value: WallClockInput, new_time: time) -> str:
    """Rewrite a stored wall-clock timestamp with a new time of day, keeping its date.

    Raises:
        WallClockParseError: If the value cannot be parsed
    """
    wall = parse_wall_clock(value)
    return format_wall_clock(datetime.combine(wall.date(), new_time))


def shift_time_of_day(wall: datetime, delta: timedelta) -> datetime:
    """Shift a wall-clock value's time of day by ``delta`` while keeping its date.

    The time of day wraps around midnight instead of moving to another day.
    """
    seconds = wall.hour * 3600 + wall.minute * 60 + wall.second
    seconds = int(seconds + delta.total_seconds()) % 86400
    new_time = time(seconds // 3600, (seconds % 3600) // 60, seconds % 60)
    return datetime.combine(wall.date(), new_time)
