"""Definition store collaborator: a key-value list of raw event records.

Every mutation bumps ``revision`` and pushes the full current definition list to
subscribers through an explicit ChangeNotifier. ``JsonFileEventStore`` persists
the list as JSON with atomic temp-file replacement.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from ..calendar.models import EventDefinition, canonical_record
from ..exceptions import (
    DefinitionNotFoundError,
    EventValidationError,
    StoreReadError,
    StoreWriteError,
)

logger = logging.getLogger(__name__)

Listener = Callable[[list[EventDefinition]], None]
DefinitionInput = Union[EventDefinition, Mapping[str, Any]]


class Subscription:
    """Handle returned by ChangeNotifier.subscribe(); unsubscribe() is idempotent."""

    def __init__(self, notifier: ChangeNotifier, callback: Listener):
        self._notifier = notifier
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._notifier._remove(self)  # noqa: SLF001

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()


class ChangeNotifier:
    """Observer registry delivering definition lists in subscription order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []

    def subscribe(self, callback: Listener) -> Subscription:
        """Register a callback; it receives the full definition list after each mutation."""
        subscription = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock, contextlib.suppress(ValueError):
            self._subscriptions.remove(subscription)

    def notify(self, definitions: list[EventDefinition]) -> None:
        """Call every active subscriber.

        A failing subscriber is logged and does not prevent delivery to the
        others; the mutation that triggered the notification has already been
        persisted.
        """
        with self._lock:
            targets = list(self._subscriptions)
        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.callback([d.model_copy(deep=True) for d in definitions])
            except Exception:
                logger.exception("Store subscriber %r failed", subscription.callback)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)


class EventStore(ABC):
    """Base class for definition stores.

    Subclasses implement ``_load`` and ``_save``; this class implements the
    create/update/delete contract, id assignment, revisions and notifications.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._notifier = ChangeNotifier()
        self._revision = 0

    @abstractmethod
    def _load(self) -> list[EventDefinition]:
        """Return the current definitions. Raises StoreReadError."""

    @abstractmethod
    def _save(self, definitions: list[EventDefinition]) -> None:
        """Persist the full definition list. Raises StoreWriteError."""

    @property
    def revision(self) -> int:
        """Counter bumped by every successful mutation."""
        return self._revision

    def subscribe(self, callback: Listener) -> Subscription:
        """Subscribe to change notifications."""
        return self._notifier.subscribe(callback)

    def get_all_definitions(self) -> list[EventDefinition]:
        """Return copies of all stored definitions."""
        with self._lock:
            return [d.model_copy(deep=True) for d in self._load()]

    def get_definition(self, definition_id: str) -> Optional[EventDefinition]:
        """Return a copy of one definition, or None."""
        for definition in self.get_all_definitions():
            if definition.id == definition_id:
                return definition
        return None

    def create_definition(self, data: DefinitionInput) -> EventDefinition:
        """Store a new definition under a freshly assigned id.

        Args:
            data: Definition fields; any id present is ignored

        Returns:
            The stored definition

        Raises:
            EventValidationError: If the fields do not form a valid definition
            StoreReadError, StoreWriteError: On storage failure
        """
        record = _as_record(data)
        record.pop("id", None)
        record["id"] = uuid.uuid4().hex
        definition = _validate(record)

        with self._lock:
            definitions = self._load()
            definitions.append(definition)
            self._commit(definitions)
        logger.info("Created definition %s (%r)", definition.id, definition.title)
        self._notifier.notify(definitions)
        return definition.model_copy(deep=True)

    def update_definition(self, definition_id: str, patch: Mapping[str, Any]) -> EventDefinition:
        """Merge ``patch`` over the stored definition.

        Raises:
            DefinitionNotFoundError: If no definition has this id
            EventValidationError: If the merged record is invalid
            StoreReadError, StoreWriteError: On storage failure
        """
        with self._lock:
            definitions = self._load()
            index = _index_of(definitions, definition_id)
            merged = {**definitions[index].to_record(), **canonical_record(patch), "id": definition_id}
            updated = _validate(merged)
            definitions[index] = updated
            self._commit(definitions)
        logger.info("Updated definition %s (fields: %s)", definition_id, ", ".join(sorted(patch)))
        self._notifier.notify(definitions)
        return updated.model_copy(deep=True)

    def delete_definition(self, definition_id: str) -> None:
        """Remove a definition.

        Raises:
            DefinitionNotFoundError: If no definition has this id
            StoreReadError, StoreWriteError: On storage failure
        """
        with self._lock:
            definitions = self._load()
            index = _index_of(definitions, definition_id)
            del definitions[index]
            self._commit(definitions)
        logger.info("Deleted definition %s", definition_id)
        self._notifier.notify(definitions)

    def import_definitions(self, incoming: Iterable[DefinitionInput], replace: bool = False) -> int:
        """Bulk-load definitions (e.g. from a backup).

        Args:
            incoming: Definitions to load; records with an existing id replace it
            replace: Drop all current definitions first

        Returns:
            Number of definitions imported
        """
        loaded = [_validate(_as_record(item)) for item in incoming]
        with self._lock:
            definitions = [] if replace else self._load()
            positions = {d.id: i for i, d in enumerate(definitions)}
            for definition in loaded:
                if definition.id in positions:
                    definitions[positions[definition.id]] = definition
                else:
                    positions[definition.id] = len(definitions)
                    definitions.append(definition)
            self._commit(definitions)
        logger.info("Imported %d definitions (replace=%s)", len(loaded), replace)
        self._notifier.notify(definitions)
        return len(loaded)

    def _commit(self, definitions: list[EventDefinition]) -> None:
        self._save(definitions)
        self._revision += 1


class MemoryEventStore(EventStore):
    """In-process store, mainly for tests and embedding."""

    def __init__(self, definitions: Optional[Iterable[DefinitionInput]] = None):
        super().__init__()
        self._definitions = [_validate(_as_record(d)) for d in (definitions or [])]

    def _load(self) -> list[EventDefinition]:
        return list(self._definitions)

    def _save(self, definitions: list[EventDefinition]) -> None:
        self._definitions = list(definitions)


class JsonFileEventStore(EventStore):
    """Store persisting the definition list to a JSON file.

    The on-disk format is a JSON array of records. Malformed records are
    skipped on load with a warning rather than failing the whole list.
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> list[EventDefinition]:
        if not self._path.exists():
            logger.debug("Store file not found; starting empty: %s", self._path)
            return []
        return read_definitions_file(self._path)

    def _save(self, definitions: list[EventDefinition]) -> None:
        write_definitions_file(self._path, definitions)


def read_definitions_file(path: Union[str, Path]) -> list[EventDefinition]:
    """Read a JSON array of definition records.

    Raises:
        StoreReadError: If the file cannot be read or is not a JSON array
    """
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise StoreReadError(f"Failed to read definitions from {p}: {exc}") from exc
    if not isinstance(data, list):
        raise StoreReadError(f"Definitions file {p} must contain a JSON array")

    definitions = []
    for index, record in enumerate(data):
        if not isinstance(record, dict):
            logger.warning("Skipping non-object record #%d in %s", index, p)
            continue
        try:
            definitions.append(EventDefinition.model_validate(record))
        except ValidationError as exc:
            logger.warning("Skipping malformed record #%d in %s: %s", index, p, exc)
    logger.debug("Loaded %d definitions from %s", len(definitions), p)
    return definitions


def write_definitions_file(path: Union[str, Path], definitions: Iterable[EventDefinition]) -> None:
    """Write definitions as a JSON array atomically (temp file + replace).

    Raises:
        StoreWriteError: If the file cannot be written
    """
    p = Path(path)
    data = [d.to_record() for d in definitions]
    tmp_path: Optional[Path] = None
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", dir=p.parent, delete=False, encoding="utf-8", suffix=".tmp"
        ) as tf:
            tmp_path = Path(tf.name)
            json.dump(data, tf, ensure_ascii=False, indent=2)
            tf.flush()
            with contextlib.suppress(OSError):
                os.fsync(tf.fileno())
        tmp_path.replace(p)
    except OSError as exc:
        if tmp_path is not None:
            with contextlib.suppress(OSError):
                tmp_path.unlink()
        raise StoreWriteError(f"Failed to write definitions to {p}: {exc}") from exc


def export_definitions(definitions: Iterable[EventDefinition], path: Union[str, Path]) -> int:
    """Write a JSON backup of the raw record list and return the record count."""
    items = list(definitions)
    write_definitions_file(path, items)
    logger.info("Exported %d definitions to %s", len(items), path)
    return len(items)


def import_definitions(path: Union[str, Path]) -> list[EventDefinition]:
    """Read a JSON backup; legacy record names (dtstart, rrule, exdate, ...) are accepted."""
    return read_definitions_file(path)


def _as_record(data: DefinitionInput) -> dict[str, Any]:
    if isinstance(data, EventDefinition):
        return data.to_record()
    return canonical_record(data)


def _validate(record: Mapping[str, Any]) -> EventDefinition:
    try:
        return EventDefinition.model_validate(dict(record))
    except ValidationError as exc:
        raise EventValidationError(f"Invalid event definition: {exc}") from exc


def _index_of(definitions: list[EventDefinition], definition_id: str) -> int:
    for index, definition in enumerate(definitions):
        if definition.id == definition_id:
            return index
    raise DefinitionNotFoundError(definition_id)
