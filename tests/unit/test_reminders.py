"""Unit tests for pocketcal.domain.reminders."""
from datetime import datetime

import pytest

from pocketcal.calendar.expander import expand
from pocketcal.domain.reminders import REMINDER_OPTIONS, notification_id, plan_reminders

pytestmark = pytest.mark.unit


def _occurrences(alert: object):
    return expand(
        [
            {
                "id": "standup",
                "title": "Standup",
                "start_wall": "2025-01-06T09:00:00",
                "end_wall": "2025-01-06T09:15:00",
                "repeat_rule": "FREQ=DAILY;COUNT=3",
                "alert_offset_minutes": alert,
            }
        ],
        "2025-01-06T00:00:00",
        "2025-01-09T00:00:00",
    )


def test_plans_sorted_by_trigger_with_stable_ids() -> None:
    plans = plan_reminders(_occurrences(10), now=datetime(2025, 1, 6, 0, 0))
    assert [p.trigger_at for p in plans] == [
        datetime(2025, 1, 6, 8, 50),
        datetime(2025, 1, 7, 8, 50),
        datetime(2025, 1, 8, 8, 50),
    ]
    assert plans[0].notification_id == "event-standup::2025-01-06T09:00:00"
    assert plans[0].body == "Standup starts in 10 minutes"


def test_past_triggers_dropped_with_tolerance() -> None:
    occurrences = _occurrences(0)
    # 3 seconds late still fires; more than 5 seconds late is dropped
    assert len(plan_reminders(occurrences, now=datetime(2025, 1, 6, 9, 0, 3))) == 3
    assert len(plan_reminders(occurrences, now=datetime(2025, 1, 6, 9, 0, 6))) == 2
    assert plan_reminders(occurrences, now=datetime(2025, 1, 6, 8, 0))[0].body == "Standup is starting now"


@pytest.mark.parametrize("alert", [None, -1])
def test_no_reminder_when_disabled(alert: object) -> None:
    assert plan_reminders(_occurrences(alert), now=datetime(2025, 1, 1)) == []


def test_now_defaults_to_test_time(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("POCKETCAL_TEST_TIME", "2025-01-07T12:00:00+09:00")
    plans = plan_reminders(_occurrences(10))
    assert [p.trigger_at.day for p in plans] == [8]


def test_reminder_options() -> None:
    values = [minutes for _, minutes in REMINDER_OPTIONS]
    assert values[0] == -1
    assert values == sorted(values)
    assert 10080 in values
    assert notification_id("abc") == "event-abc"
