"""Clock and timezone helpers for pocketcal.

The recurrence engine itself never converts between zones; these helpers are
used only at the edges: reading "now" for reminder planning and resolving the
zone a view wants occurrences bucketed in.
"""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache

from ..exceptions import InvalidTimezoneError

logger = logging.getLogger(__name__)

LOCAL_ZONE = "local"
TEST_TIME_ENV = "POCKETCAL_TEST_TIME"

# Obsolete names still found in older backups
TZ_ALIAS_MAP: dict[str, str] = {
    "US/Pacific": "America/Los_Angeles",
    "US/Mountain": "America/Denver",
    "US/Central": "America/Chicago",
    "US/Eastern": "America/New_York",
    "GMT": "UTC",
    "Etc/UTC": "UTC",
    "Zulu": "UTC",
    "Asia/Rangoon": "Asia/Yangon",
    "America/Godthab": "America/Nuuk",
}


@lru_cache(maxsize=64)
def _zone_info(name: str) -> zoneinfo.ZoneInfo:
    return zoneinfo.ZoneInfo(name)


def resolve_zone(name: str | None) -> datetime.tzinfo | None:
    """Resolve a zone name to a tzinfo.

    Args:
        name: "local" (or None/empty) for the host zone, otherwise an IANA name

    Returns:
        None for the local zone, a ZoneInfo otherwise

    Raises:
        InvalidTimezoneError: If the name is not a known IANA identifier
    """
    if not name or name == LOCAL_ZONE:
        return None

    canonical = TZ_ALIAS_MAP.get(name, name)
    try:
        return _zone_info(canonical)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(f"Unknown timezone: {name!r}") from exc


def is_valid_timezone(name: str | None) -> bool:
    """Return True if ``name`` resolves via resolve_zone()."""
    try:
        resolve_zone(name)
    except InvalidTimezoneError:
        return False
    return True


def now_utc() -> datetime.datetime:
    """Return current UTC time with tzinfo.

    Can be overridden for testing via the POCKETCAL_TEST_TIME environment
    variable (ISO 8601, e.g. "2025-10-27T08:20:00-07:00"). A naive override is
    taken to be UTC.
    """
    test_time = os.environ.get(TEST_TIME_ENV)
    if test_time:
        try:
            from dateutil import parser as date_parser

            dt = date_parser.isoparse(test_time)
            if dt.tzinfo is not None:
                return dt.astimezone(datetime.UTC)
            return dt.replace(tzinfo=datetime.UTC)
        except (ValueError, OverflowError) as e:
            logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)

    return datetime.datetime.now(datetime.UTC)


def now_wall() -> datetime.datetime:
    """Return the current local wall-clock time as a naive datetime.

    With POCKETCAL_TEST_TIME set, a value carrying an offset is read as written
    (its offset dropped) so tests pin the wall clock directly.
    """
    test_time = os.environ.get(TEST_TIME_ENV)
    if test_time:
        try:
            from dateutil import parser as date_parser

            return date_parser.isoparse(test_time).replace(tzinfo=None, microsecond=0)
        except (ValueError, OverflowError) as e:
            logger.warning("Failed to parse %s=%r: %s", TEST_TIME_ENV, test_time, e)

    return datetime.datetime.now().replace(microsecond=0)
