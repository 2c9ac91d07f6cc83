"""
Unit tests for pocketcal.calendar.rrule_engine.

Covers:
- RecurrenceRuleEngine.occurrences() window widening and the occurrence cap
- UNTIL normalization in synthetic space
- parse_rrule_string()
- set_until()/get_until()/shift_until() rule rewriting
"""
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from pocketcal.calendar.rrule_engine import (
    RecurrenceRuleEngine,
    get_until,
    prepare_rule_text,
    set_until,
    shift_until,
    until_for_cutoff,
)
from pocketcal.exceptions import RecurrenceRuleError

pytestmark = pytest.mark.unit

ANCHOR = datetime(2025, 1, 1, 9, 0, tzinfo=UTC)


def test_occurrences_cover_window_plus_padding(simple_settings: SimpleNamespace) -> None:
    engine = RecurrenceRuleEngine(simple_settings)
    instants = engine.occurrences(
        "FREQ=DAILY", ANCHOR, datetime(2025, 1, 10, 12, 0), datetime(2025, 1, 10, 13, 0)
    )
    # whole days widened by one day each side: [Jan 9 00:00, Jan 11 00:00]
    assert [i.day for i in instants] == [9, 10]
    assert all(i.hour == 9 for i in instants)


def test_occurrences_respect_count_from_anchor(simple_settings: SimpleNamespace) -> None:
    engine = RecurrenceRuleEngine(simple_settings)
    instants = engine.occurrences(
        "FREQ=WEEKLY;COUNT=3", ANCHOR, datetime(2025, 1, 1), datetime(2025, 3, 1)
    )
    assert len(instants) == 3


def test_occurrences_capped_by_settings() -> None:
    engine = RecurrenceRuleEngine(SimpleNamespace(max_occurrences_per_rule=5))
    instants = engine.occurrences("FREQ=MINUTELY", ANCHOR, datetime(2025, 1, 1), datetime(2025, 1, 2))
    assert len(instants) == 5


def test_until_without_z_is_read_in_synthetic_space(simple_settings: SimpleNamespace) -> None:
    engine = RecurrenceRuleEngine(simple_settings)
    instants = engine.occurrences(
        "FREQ=DAILY;UNTIL=20250103T090000", ANCHOR, datetime(2025, 1, 1), datetime(2025, 1, 10)
    )
    assert [i.day for i in instants] == [1, 2, 3]


def test_date_only_until_covers_whole_day(simple_settings: SimpleNamespace) -> None:
    engine = RecurrenceRuleEngine(simple_settings)
    instants = engine.occurrences(
        "RRULE:FREQ=DAILY;UNTIL=20250103", ANCHOR, datetime(2025, 1, 1), datetime(2025, 1, 10)
    )
    assert [i.day for i in instants] == [1, 2, 3]


def test_prepare_rule_text_drops_dtstart_lines() -> None:
    prepared = prepare_rule_text("DTSTART:20200101T000000Z\nRRULE:FREQ=DAILY;UNTIL=20250103")
    assert "DTSTART" not in prepared
    assert "UNTIL=20250103T235959Z" in prepared


@pytest.mark.parametrize("bad", ["", "   ", "DTSTART:20200101T000000Z"])
def test_prepare_rule_text_rejects_empty_rules(bad: str) -> None:
    with pytest.raises(RecurrenceRuleError):
        prepare_rule_text(bad)


@pytest.mark.parametrize("bad", ["FREQ=SOMETIMES", "FREQ=DAILY;INTERVAL=x", "not a rule"])
def test_malformed_rules_raise(bad: str, simple_settings: SimpleNamespace) -> None:
    engine = RecurrenceRuleEngine(simple_settings)
    with pytest.raises(RecurrenceRuleError):
        engine.occurrences(bad, ANCHOR, datetime(2025, 1, 1), datetime(2025, 1, 2))
    with pytest.raises(RecurrenceRuleError):
        engine.validate(bad)


@pytest.mark.parametrize(
    "rrule_str,expected_freq,expected_interval",
    [
        ("FREQ=DAILY;INTERVAL=1", "DAILY", 1),
        ("FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE", "WEEKLY", 2),
        ("RRULE:FREQ=YEARLY;INTERVAL=5", "YEARLY", 5),
    ],
)
def test_parse_rrule_string_valid_various(rrule_str: str, expected_freq: str, expected_interval: int) -> None:
    parsed = RecurrenceRuleEngine().parse_rrule_string(rrule_str)
    assert parsed["freq"] == expected_freq
    assert parsed["interval"] == expected_interval


def test_parse_rrule_string_until_and_byday() -> None:
    parsed = RecurrenceRuleEngine().parse_rrule_string("FREQ=WEEKLY;BYDAY=mo,fr;UNTIL=20250301T120000Z")
    assert parsed["byday"] == ["MO", "FR"]
    assert parsed["until"] == datetime(2025, 3, 1, 12, 0)


@pytest.mark.parametrize("bad", ["", "INTERVAL=2", "FREQ=DAILY;COUNT=many"])
def test_parse_rrule_string_invalid(bad: str) -> None:
    with pytest.raises(RecurrenceRuleError):
        RecurrenceRuleEngine().parse_rrule_string(bad)


def test_set_until_appends_and_drops_count() -> None:
    rule = set_until("FREQ=WEEKLY;COUNT=10;BYDAY=MO", datetime(2025, 1, 20, 8, 59, 59))
    assert rule == "FREQ=WEEKLY;BYDAY=MO;UNTIL=20250120T085959Z"


def test_set_until_replaces_existing_bound_and_keeps_prefix() -> None:
    rule = set_until("RRULE:FREQ=DAILY;UNTIL=20251231T000000Z", datetime(2025, 2, 1, 9, 0))
    assert rule == "RRULE:FREQ=DAILY;UNTIL=20250201T090000Z"
    assert get_until(rule) == datetime(2025, 2, 1, 9, 0)


def test_shift_until_moves_bound_only_when_present() -> None:
    assert shift_until("FREQ=DAILY", timedelta(hours=5)) == "FREQ=DAILY"
    shifted = shift_until("FREQ=DAILY;UNTIL=20250120T085959Z", timedelta(hours=5))
    assert get_until(shifted) == datetime(2025, 1, 20, 13, 59, 59)


def test_until_for_cutoff_is_one_second_before() -> None:
    assert until_for_cutoff("2025-01-20T09:00:00") == datetime(2025, 1, 20, 8, 59, 59)
