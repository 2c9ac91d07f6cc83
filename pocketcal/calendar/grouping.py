"""Calendar-grid helpers: bucketing occurrences by date and clipping them to views."""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Optional

from ..core.timezone_utils import resolve_zone
from .models import EventOccurrence

logger = logging.getLogger(__name__)


def _date_key(start: datetime, zone: Optional[object]) -> str:
    if zone is None:
        return start.date().isoformat()
    # Naive wall-clock starts are read as host-local time by astimezone().
    return start.astimezone(zone).date().isoformat()  # type: ignore[arg-type]


def group_by_date(
    occurrences: Iterable[EventOccurrence], zone: str = "local"
) -> dict[str, list[EventOccurrence]]:
    """Bucket occurrences by the calendar date their start falls on.

    Args:
        occurrences: Occurrences, normally the start-sorted output of expand()
        zone: "local" to bucket by the wall-clock date, or an IANA zone name

    Returns:
        Mapping of 'YYYY-MM-DD' to occurrences in input order

    Raises:
        InvalidTimezoneError: If ``zone`` is not a known zone name
    """
    tz = resolve_zone(zone)
    buckets: dict[str, list[EventOccurrence]] = {}
    for occurrence in occurrences:
        start = getattr(occurrence, "start", None)
        if not isinstance(start, datetime):
            logger.debug("Skipping occurrence without a usable start: %r", occurrence)
            continue
        try:
            key = _date_key(start, tz)
        except (OverflowError, ValueError) as e:
            logger.debug("Skipping occurrence %s: %s", getattr(occurrence, "instance_id", "?"), e)
            continue
        buckets.setdefault(key, []).append(occurrence)
    return buckets


def clip_to_window(
    occurrence: EventOccurrence, window_start: datetime, window_end: datetime
) -> Optional[tuple[datetime, datetime]]:
    """Return the part of an occurrence visible in [window_start, window_end).

    The expander keeps occurrences that cross a window edge whole; a day view
    draws only this clipped span (e.g. the tail of last night's event).

    Returns:
        (display_start, display_end), or None if the occurrence is not visible
    """
    if occurrence.end <= window_start or occurrence.start >= window_end:
        return None
    return max(occurrence.start, window_start), min(occurrence.end, window_end)
