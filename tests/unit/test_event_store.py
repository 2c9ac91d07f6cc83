"""
Unit tests for pocketcal.domain.event_store.

Covers the store contract (ids, revisions, not-found errors), change
notifications, JSON persistence and backup import/export.
"""
import json
from pathlib import Path
from typing import Any

import pytest

from pocketcal.calendar.models import EventDefinition
from pocketcal.domain.event_store import (
    ChangeNotifier,
    JsonFileEventStore,
    MemoryEventStore,
    export_definitions,
    import_definitions,
)
from pocketcal.exceptions import (
    DefinitionNotFoundError,
    EventValidationError,
    StoreReadError,
    StoreWriteError,
)

pytestmark = pytest.mark.unit


def test_create_assigns_fresh_id_and_bumps_revision(memory_store: MemoryEventStore) -> None:
    created = memory_store.create_definition(
        {"id": "ignored", "title": "Lunch", "dtstart": "2025-01-06T12:00:00"}
    )
    assert created.id != "ignored"
    assert len(created.id) == 32
    assert created.start_wall == "2025-01-06T12:00:00"
    assert memory_store.revision == 1
    assert memory_store.get_definition(created.id) == created


def test_create_rejects_invalid_definition(memory_store: MemoryEventStore) -> None:
    with pytest.raises(EventValidationError):
        memory_store.create_definition({"title": "no start"})
    assert memory_store.revision == 0


def test_update_merges_patch_with_alias_keys(memory_store: MemoryEventStore) -> None:
    created = memory_store.create_definition({"title": "Gym", "start_wall": "2025-01-06T18:00:00"})
    updated = memory_store.update_definition(created.id, {"rrule": "FREQ=DAILY", "location": "Club"})
    assert updated.repeat_rule == "FREQ=DAILY"
    assert updated.location == "Club"
    assert updated.title == "Gym"
    assert memory_store.revision == 2


def test_update_and_delete_unknown_id_raise(memory_store: MemoryEventStore) -> None:
    with pytest.raises(DefinitionNotFoundError) as exc_info:
        memory_store.update_definition("missing", {"title": "x"})
    assert exc_info.value.definition_id == "missing"
    assert isinstance(exc_info.value, KeyError)
    with pytest.raises(DefinitionNotFoundError):
        memory_store.delete_definition("missing")


def test_returned_definitions_are_copies(memory_store: MemoryEventStore) -> None:
    created = memory_store.create_definition({"start_wall": "2025-01-06T18:00:00"})
    fetched = memory_store.get_all_definitions()[0]
    fetched.exception_dates.append("2025-01-07T18:00:00")
    assert memory_store.get_definition(created.id).exception_dates == []


def test_subscribers_receive_full_list_in_order(memory_store: MemoryEventStore) -> None:
    calls: list[tuple[str, int]] = []
    memory_store.subscribe(lambda defs: calls.append(("first", len(defs))))
    memory_store.subscribe(lambda defs: calls.append(("second", len(defs))))

    created = memory_store.create_definition({"start_wall": "2025-01-06T18:00:00"})
    memory_store.delete_definition(created.id)

    assert calls == [("first", 1), ("second", 1), ("first", 0), ("second", 0)]


def test_failing_subscriber_does_not_fail_write(memory_store: MemoryEventStore) -> None:
    received: list[int] = []

    def broken(_: Any) -> None:
        raise RuntimeError("boom")

    memory_store.subscribe(broken)
    memory_store.subscribe(lambda defs: received.append(len(defs)))
    memory_store.create_definition({"start_wall": "2025-01-06T18:00:00"})
    assert received == [1]
    assert memory_store.revision == 1


def test_unsubscribe_is_idempotent() -> None:
    notifier = ChangeNotifier()
    calls: list[int] = []
    subscription = notifier.subscribe(lambda defs: calls.append(len(defs)))
    subscription.unsubscribe()
    subscription.unsubscribe()
    notifier.notify([])
    assert calls == []
    assert len(notifier) == 0
    assert not subscription.active


def test_import_definitions_upserts_by_id(memory_store: MemoryEventStore) -> None:
    memory_store.import_definitions([{"id": "a", "title": "Old", "start_wall": "2025-01-06T09:00:00"}])
    count = memory_store.import_definitions(
        [
            {"id": "a", "title": "New", "start_wall": "2025-01-06T09:00:00"},
            {"id": "b", "start_wall": "2025-01-07T09:00:00"},
        ]
    )
    assert count == 2
    assert [(d.id, d.title) for d in memory_store.get_all_definitions()] == [("a", "New"), ("b", "")]
    memory_store.import_definitions([{"id": "c", "start_wall": "2025-01-08T09:00:00"}], replace=True)
    assert [d.id for d in memory_store.get_all_definitions()] == ["c"]


def test_json_store_persists_between_instances(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "events.json"
    store = JsonFileEventStore(path)
    assert store.get_all_definitions() == []
    created = store.create_definition({"title": "Persisted", "start_wall": "2025-01-06T09:00:00"})

    reopened = JsonFileEventStore(path)
    assert [d.id for d in reopened.get_all_definitions()] == [created.id]
    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk[0]["title"] == "Persisted"
    assert not list(path.parent.glob("*.tmp"))


def test_json_store_skips_malformed_records(tmp_path: Path) -> None:
    path = tmp_path / "events.json"
    path.write_text(
        json.dumps([{"id": "ok", "start_wall": "2025-01-06T09:00:00"}, {"title": "no id"}, "junk"]),
        encoding="utf-8",
    )
    assert [d.id for d in JsonFileEventStore(path).get_all_definitions()] == ["ok"]


@pytest.mark.parametrize("content", ["{not json", json.dumps({"id": "x"})])
def test_json_store_unreadable_file_raises(tmp_path: Path, content: str) -> None:
    path = tmp_path / "events.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(StoreReadError):
        JsonFileEventStore(path).get_all_definitions()


def test_json_store_write_failure_raises(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    store = JsonFileEventStore(blocker / "events.json")
    with pytest.raises(StoreWriteError):
        store.create_definition({"start_wall": "2025-01-06T09:00:00"})
    assert store.revision == 0


def test_export_and_import_backup(tmp_path: Path) -> None:
    definitions = [
        EventDefinition.model_validate(
            {"id": "s", "start_wall": "2025-01-06T09:00:00", "repeat_rule": "FREQ=WEEKLY"}
        )
    ]
    backup = tmp_path / "backup.json"
    assert export_definitions(definitions, backup) == 1
    assert import_definitions(backup) == definitions


def test_import_accepts_legacy_backup_names(tmp_path: Path) -> None:
    backup = tmp_path / "legacy.json"
    backup.write_text(
        json.dumps(
            [
                {
                    "id": "old",
                    "dtstart": "2025-01-06T09:00:00+08:00",
                    "rrule": "FREQ=DAILY",
                    "exdate": ["2025-01-07T09:00:00+08:00"],
                    "originalId": None,
                }
            ]
        ),
        encoding="utf-8",
    )
    (definition,) = import_definitions(backup)
    assert definition.repeat_rule == "FREQ=DAILY"
    assert definition.exception_dates == ["2025-01-07T09:00:00+08:00"]
    assert definition.parent_id is None
