"""Reminder planning for expanded occurrences.

Computes what should be scheduled; handing plans to the OS notification
service is left to the caller.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..calendar.models import EventOccurrence
from ..calendar.wall_clock import format_wall_clock
from ..core.timezone_utils import now_wall

logger = logging.getLogger(__name__)

# Triggers this far in the past are still scheduled (fire immediately)
PAST_TRIGGER_TOLERANCE = timedelta(seconds=5)

NO_REMINDER = -1

# (label, minutes before start)
REMINDER_OPTIONS: list[tuple[str, int]] = [
    ("None", NO_REMINDER),
    ("At start", 0),
    ("5 minutes before", 5),
    ("10 minutes before", 10),
    ("15 minutes before", 15),
    ("30 minutes before", 30),
    ("1 hour before", 60),
    ("2 hours before", 120),
    ("1 day before", 1440),
    ("2 days before", 2880),
    ("1 week before", 10080),
]


@dataclass(frozen=True)
class ReminderPlan:
    """A notification to schedule for one occurrence."""

    notification_id: str
    instance_id: str
    trigger_at: datetime
    title: str
    body: str

    def to_dict(self) -> dict[str, str]:
        return {
            "notification_id": self.notification_id,
            "instance_id": self.instance_id,
            "trigger_at": format_wall_clock(self.trigger_at),
            "title": self.title,
            "body": self.body,
        }


def notification_id(instance_id: str) -> str:
    """Scheduler identifier for an occurrence; rescheduling replaces the previous one."""
    return f"event-{instance_id}"


def reminder_body(title: str, minutes_before: int) -> str:
    if minutes_before == 0:
        return f"{title} is starting now"
    return f"{title} starts in {minutes_before} minutes"


def plan_reminders(
    occurrences: Iterable[EventOccurrence], now: Optional[datetime] = None
) -> list[ReminderPlan]:
    """Plan reminders for occurrences that have a lead time set.

    Args:
        occurrences: Expanded occurrences
        now: Current wall-clock time; defaults to now_wall()

    Returns:
        Plans sorted by trigger time. Occurrences without a reminder
        (None or negative lead time) and triggers more than five seconds in
        the past are left out.
    """
    current = now if now is not None else now_wall()
    plans = []
    for occurrence in occurrences:
        minutes = occurrence.alert_offset_minutes
        if minutes is None or minutes < 0:
            continue
        trigger_at = occurrence.start - timedelta(minutes=minutes)
        if trigger_at <= current - PAST_TRIGGER_TOLERANCE:
            logger.debug("Reminder for %s already passed at %s", occurrence.instance_id, trigger_at)
            continue
        plans.append(
            ReminderPlan(
                notification_id=notification_id(occurrence.instance_id),
                instance_id=occurrence.instance_id,
                trigger_at=trigger_at,
                title="Event reminder",
                body=reminder_body(occurrence.title, minutes),
            )
        )
    plans.sort(key=lambda plan: plan.trigger_at)
    logger.debug("Planned %d reminders", len(plans))
    return plans
