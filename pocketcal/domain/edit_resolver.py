"""Edit/delete intents against one occurrence of a (possibly recurring) event.

The resolver decides how a change to a single occurrence maps onto store
writes: patching a plain definition in place, retiming a whole series and its
override children, splitting one occurrence off into a standalone override, or
truncating a series with an ``UNTIL`` bound. The expander holds no state, so
nothing here is assumed applied until the store has confirmed each write.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from ..calendar.expander import INSTANCE_ID_SEPARATOR
from ..calendar.models import (
    OCCURRENCE_OWN_FIELDS,
    EventChanges,
    EventDefinition,
    EventOccurrence,
)
from ..calendar.rrule_engine import RecurrenceRuleEngine, set_until, shift_until, until_for_cutoff
from ..calendar.wall_clock import (
    format_wall_clock,
    parse_wall_clock,
    replace_time_of_day,
    shift_time_of_day,
    time_of_day,
)
from ..exceptions import (
    DefinitionNotFoundError,
    EditResolutionError,
    EventValidationError,
    PartialEditError,
    RecurrenceRuleError,
    StoreError,
    WallClockParseError,
)
from .event_store import EventStore

logger = logging.getLogger(__name__)

ChangesInput = Union[EventChanges, Mapping[str, Any], None]
TargetInput = Union["EditTarget", EventOccurrence, Mapping[str, Any]]

# Series-level fields an override never copies from the occurrence it replaces
_SERIES_ONLY_FIELDS = frozenset({"repeat_rule", "exception_dates", "extra_dates"})


class EditState(str, Enum):
    """Relationship between the edited occurrence and its series."""

    NON_RECURRING = "non_recurring"
    EDITING_SERIES_ITSELF = "editing_series_itself"
    EDITING_ONE_OCCURRENCE = "editing_one_occurrence"
    EDITING_EXISTING_OVERRIDE = "editing_existing_override"


class DeleteScope(str, Enum):
    """How much of a series a delete removes."""

    THIS = "this"
    THIS_AND_FUTURE = "this_and_future"


class EditAction(str, Enum):
    """What an edit or delete ended up writing."""

    NOOP = "noop"
    UPDATED = "updated"
    UPDATED_SERIES = "updated_series"
    CREATED_OVERRIDE = "created_override"
    DELETED = "deleted"
    EXCLUDED = "excluded"
    TRUNCATED = "truncated"
    DELETED_SERIES = "deleted_series"


@dataclass
class EditTarget:
    """Classified edit target.

    Attributes:
        state: Which of the four edit states applies
        occurrence: The occurrence the user acted on
        definition: Definition a direct patch applies to (plain event, override or series)
        series: Owning recurring definition, when there is one
        override: Existing standalone override for this occurrence, when there is one
        children: Override definitions whose parent is ``series``
    """

    state: EditState
    occurrence: EventOccurrence
    definition: EventDefinition
    series: Optional[EventDefinition] = None
    override: Optional[EventDefinition] = None
    children: list[EventDefinition] = field(default_factory=list)


@dataclass
class EditResult:
    """Outcome of a save or delete."""

    action: EditAction
    state: EditState
    definition: Optional[EventDefinition] = None
    steps: list[str] = field(default_factory=list)


def resolve_parent_id(record: Any) -> Optional[str]:
    """Return the id of the definition a record belongs to.

    Looks at ``original_id``, then ``parent_id`` (camelCase keys accepted for
    mappings), then the prefix of a composite ``"<id>::<start>"`` instance id,
    and finally the record's own id.

    Args:
        record: An EventOccurrence, EventDefinition or raw mapping

    Returns:
        The owning definition id, or None if the record carries no id at all
    """

    def first(*names: str) -> Optional[str]:
        for name in names:
            if isinstance(record, Mapping):
                value = record.get(name)
            else:
                value = getattr(record, name, None)
            if value:
                return str(value)
        return None

    linked = first("original_id", "originalId") or first("parent_id", "parentId")
    if linked:
        return linked

    own = first("instance_id", "instanceId", "id")
    if own and INSTANCE_ID_SEPARATOR in own:
        return own.split(INSTANCE_ID_SEPARATOR, 1)[0]
    return own


def _normalized(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return format_wall_clock(parse_wall_clock(value))
    except WallClockParseError:
        return None


def _as_changes(changes: ChangesInput) -> Optional[EventChanges]:
    if changes is None or isinstance(changes, EventChanges):
        return changes
    try:
        return EventChanges.model_validate(dict(changes))
    except (ValidationError, WallClockParseError) as e:
        raise EventValidationError(f"Invalid changes: {e}") from e


class _WriteLog:
    """Runs the store writes of one operation and tracks which ones completed."""

    def __init__(self, operation: str):
        self.operation = operation
        self.completed: list[str] = []

    def run(self, description: str, write: Callable[..., Any], *args: Any) -> Any:
        try:
            result = write(*args)
        except StoreError as e:
            if not self.completed:
                raise
            logger.error(
                "%s interrupted at '%s' after %d write(s): %s",
                self.operation,
                description,
                len(self.completed),
                e,
            )
            raise PartialEditError(
                f"{self.operation} failed at '{description}'", self.completed, e
            ) from e
        self.completed.append(description)
        return result


class EditResolver:
    """Applies save/delete intents for occurrences to an EventStore."""

    def __init__(
        self,
        store: EventStore,
        settings: Any = None,
        rule_engine: Optional[RecurrenceRuleEngine] = None,
    ):
        self.store = store
        self.rule_engine = rule_engine or RecurrenceRuleEngine(settings)
        self.default_duration = timedelta(
            minutes=getattr(settings, "default_duration_minutes", 60)
        )

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(self, target: TargetInput) -> EditTarget:
        """Work out the edit state for an occurrence.

        Raises:
            DefinitionNotFoundError: If the owning definition is not in the store
            EventValidationError: If ``target`` is not a usable occurrence
        """
        if isinstance(target, EditTarget):
            return target
        occurrence = self._as_occurrence(target)

        owner_id = resolve_parent_id(occurrence)
        definitions = self.store.get_all_definitions()
        by_id = {d.id: d for d in definitions}
        owner = by_id.get(owner_id or "")
        if owner is None:
            raise DefinitionNotFoundError(owner_id or "")

        if owner.is_recurring:
            children = [d for d in definitions if d.parent_id == owner.id and not d.is_recurring]
            if occurrence.instance_id == owner.id:
                state = EditState.EDITING_SERIES_ITSELF
                return EditTarget(state, occurrence, owner, series=owner, children=children)

            recurrence_id = format_wall_clock(occurrence.start)
            override = next(
                (c for c in children if _normalized(c.recurrence_id) == recurrence_id), None
            )
            if override is not None:
                state = EditState.EDITING_EXISTING_OVERRIDE
                return EditTarget(
                    state, occurrence, override, series=owner, override=override, children=children
                )
            state = EditState.EDITING_ONE_OCCURRENCE
            return EditTarget(state, occurrence, owner, series=owner, children=children)

        if owner.parent_id:
            series = by_id.get(owner.parent_id)
            if series is None:
                logger.warning("Override %s refers to missing series %s", owner.id, owner.parent_id)
            children = (
                [d for d in definitions if d.parent_id == series.id and not d.is_recurring]
                if series is not None
                else []
            )
            return EditTarget(
                EditState.EDITING_EXISTING_OVERRIDE,
                occurrence,
                owner,
                series=series,
                override=owner,
                children=children,
            )

        return EditTarget(EditState.NON_RECURRING, occurrence, owner)

    @staticmethod
    def _as_occurrence(target: Union[EventOccurrence, Mapping[str, Any]]) -> EventOccurrence:
        if isinstance(target, EventOccurrence):
            return target
        try:
            return EventOccurrence.model_validate(dict(target))
        except (ValidationError, TypeError) as e:
            raise EventValidationError(f"Not an occurrence: {e}") from e

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, target: TargetInput, changes: ChangesInput) -> EditResult:
        """Apply edited fields to the occurrence's definition(s).

        Args:
            target: Occurrence being edited (or an already classified EditTarget)
            changes: Edited fields; None or empty is a no-op

        Returns:
            EditResult describing the writes made

        Raises:
            EventValidationError: If the edit would persist an invalid definition
            DefinitionNotFoundError: If the owning definition is gone
            StoreError: If the first write fails
            PartialEditError: If a later write fails after earlier ones succeeded
        """
        parsed = _as_changes(changes)
        edit = self.classify(target)
        if parsed is None or parsed.is_empty:
            logger.debug("Ignoring empty save for %s", edit.occurrence.instance_id)
            return EditResult(EditAction.NOOP, edit.state)

        logger.info(
            "Saving %s (%s), fields: %s",
            edit.occurrence.instance_id,
            edit.state.value,
            ", ".join(sorted(parsed.provided())),
        )
        if edit.state is EditState.EDITING_SERIES_ITSELF:
            return self._save_series(edit, parsed)
        if edit.state is EditState.EDITING_ONE_OCCURRENCE:
            return self._save_one_occurrence(edit, parsed)
        return self._save_in_place(edit, parsed)

    def _definition_bounds(self, definition: EventDefinition) -> tuple[datetime, datetime]:
        try:
            start = parse_wall_clock(definition.start_wall)
            end = (
                parse_wall_clock(definition.end_wall)
                if definition.end_wall
                else start + self.default_duration
            )
        except WallClockParseError as e:
            raise EventValidationError(f"Definition {definition.id} has invalid timestamps: {e}") from e
        return start, end

    def _check_rule(self, fields: dict[str, Any]) -> None:
        rule = fields.get("repeat_rule")
        if rule is None:
            return
        try:
            self.rule_engine.validate(rule)
        except RecurrenceRuleError as e:
            raise EventValidationError(f"Invalid repeat rule {rule!r}: {e}") from e

    @staticmethod
    def _check_span(start: datetime, end: datetime) -> None:
        if end <= start:
            raise EventValidationError(
                f"End {format_wall_clock(end)} must follow start {format_wall_clock(start)}"
            )

    @staticmethod
    def _attribute_patch(fields: dict[str, Any]) -> dict[str, Any]:
        patch = dict(fields)
        patch.pop("start", None)
        patch.pop("end", None)
        return patch

    @staticmethod
    def _require_series(edit: EditTarget) -> EventDefinition:
        if edit.series is None:
            raise EditResolutionError(
                f"Occurrence {edit.occurrence.instance_id} has no series to edit"
            )
        return edit.series

    def _ensure_excluded(
        self, log: _WriteLog, series: EventDefinition, recurrence_id: str
    ) -> Optional[EventDefinition]:
        """Add ``recurrence_id`` to the series exclusions unless already present."""
        if recurrence_id in {_normalized(x) for x in series.exception_dates}:
            return None
        return log.run(
            f"exclude {recurrence_id} from {series.id}",
            self.store.update_definition,
            series.id,
            {"exception_dates": [*series.exception_dates, recurrence_id]},
        )

    def _save_in_place(self, edit: EditTarget, changes: EventChanges) -> EditResult:
        definition = edit.definition
        fields = changes.provided()
        is_override = edit.state is EditState.EDITING_EXISTING_OVERRIDE
        if is_override and fields.get("repeat_rule"):
            raise EventValidationError("A single-occurrence override cannot carry a repeat rule")
        self._check_rule(fields)

        start, end = self._definition_bounds(definition)
        new_start = fields.get("start") or start
        if "end" in fields and fields["end"] is not None:
            new_end = fields["end"]
        else:
            new_end = new_start + (end - start)
        self._check_span(new_start, new_end)

        patch = self._attribute_patch(fields)
        if changes.changes_time:
            patch["start_wall"] = format_wall_clock(new_start)
            patch["end_wall"] = format_wall_clock(new_end)
            if is_override and fields.get("end") is not None:
                patch["duration_locked"] = True

        log = _WriteLog(f"Editing {definition.id}")
        replaced = _normalized(definition.recurrence_id) if is_override else None
        if edit.series is not None and replaced:
            # Repairs a split whose exclusion write never landed
            self._ensure_excluded(log, edit.series, replaced)
        updated = log.run(f"update {definition.id}", self.store.update_definition, definition.id, patch)
        return EditResult(EditAction.UPDATED, edit.state, updated, log.completed)

    def _save_one_occurrence(self, edit: EditTarget, changes: EventChanges) -> EditResult:
        series = self._require_series(edit)
        occurrence = edit.occurrence
        fields = changes.provided()
        if fields.get("repeat_rule"):
            raise EventValidationError("A single-occurrence override cannot carry a repeat rule")

        new_start = fields.get("start") or occurrence.start
        explicit_end = fields.get("end")
        new_end = explicit_end if explicit_end is not None else new_start + occurrence.duration
        self._check_span(new_start, new_end)

        recurrence_id = format_wall_clock(occurrence.start)
        record = {
            k: v
            for k, v in occurrence.model_dump().items()
            if k not in OCCURRENCE_OWN_FIELDS and k not in _SERIES_ONLY_FIELDS
        }
        record.update(self._attribute_patch(fields))
        record.pop("repeat_rule", None)
        record.update(
            start_wall=format_wall_clock(new_start),
            end_wall=format_wall_clock(new_end),
            parent_id=series.id,
            recurrence_id=recurrence_id,
            duration_locked=explicit_end is not None,
        )

        log = _WriteLog(f"Editing occurrence {occurrence.instance_id}")
        # Override first: an interrupted edit shows a duplicate rather than losing the occurrence.
        override = log.run("create override", self.store.create_definition, record)
        self._ensure_excluded(log, series, recurrence_id)
        logger.info("Split %s off series %s as %s", recurrence_id, series.id, override.id)
        return EditResult(EditAction.CREATED_OVERRIDE, edit.state, override, log.completed)

    def _save_series(self, edit: EditTarget, changes: EventChanges) -> EditResult:
        series = edit.definition
        fields = changes.provided()
        self._check_rule(fields)

        old_start, old_end = self._definition_bounds(series)
        old_duration = old_end - old_start
        patch = self._attribute_patch(fields)

        delta = timedelta(0)
        new_duration = old_duration
        duration_changed = False
        if changes.changes_time:
            reference = fields.get("start") or edit.occurrence.start
            new_time = time_of_day(fields["start"]) if fields.get("start") else time_of_day(old_start)
            new_start = datetime.combine(old_start.date(), new_time)
            if fields.get("end") is not None:
                new_duration = fields["end"] - reference
                duration_changed = new_duration != old_duration
            self._check_span(new_start, new_start + new_duration)

            delta = new_start - old_start
            patch["start_wall"] = format_wall_clock(new_start)
            patch["end_wall"] = format_wall_clock(new_start + new_duration)
            if delta:
                patch["exception_dates"] = self._retimed(series.exception_dates, new_time, series.id)
                patch["extra_dates"] = self._retimed(series.extra_dates, new_time, series.id)
                rule = patch.get("repeat_rule", series.repeat_rule)
                if rule:
                    try:
                        patch["repeat_rule"] = shift_until(rule, delta)
                    except RecurrenceRuleError as e:
                        logger.warning("Leaving UNTIL of %s unshifted: %s", series.id, e)

        log = _WriteLog(f"Editing series {series.id}")
        updated = log.run(f"update series {series.id}", self.store.update_definition, series.id, patch)

        if delta or duration_changed:
            new_time = time_of_day(parse_wall_clock(patch["start_wall"]))
            for child in edit.children:
                child_patch = self._retimed_child(child, delta, new_time, new_duration, duration_changed)
                if child_patch is None:
                    continue
                log.run(f"update override {child.id}", self.store.update_definition, child.id, child_patch)

        logger.info(
            "Updated series %s (shift %s, %d override(s) touched)",
            series.id,
            delta,
            len(log.completed) - 1,
        )
        return EditResult(EditAction.UPDATED_SERIES, edit.state, updated, log.completed)

    @staticmethod
    def _retimed(values: list[str], new_time: Any, series_id: str) -> list[str]:
        result = []
        for value in values:
            try:
                result.append(replace_time_of_day(value, new_time))
            except WallClockParseError:
                logger.warning("Keeping unreadable date %r of %s as is", value, series_id)
                result.append(value)
        return result

    def _retimed_child(
        self,
        child: EventDefinition,
        delta: timedelta,
        new_time: Any,
        new_duration: timedelta,
        duration_changed: bool,
    ) -> Optional[dict[str, Any]]:
        try:
            start, end = self._definition_bounds(child)
        except EventValidationError as e:
            logger.warning("Skipping override %s during series edit: %s", child.id, e)
            return None

        duration = new_duration if duration_changed and not child.duration_locked else end - start
        shifted = shift_time_of_day(start, delta)
        patch: dict[str, Any] = {
            "start_wall": format_wall_clock(shifted),
            "end_wall": format_wall_clock(shifted + duration),
        }
        if delta and child.recurrence_id:
            try:
                patch["recurrence_id"] = replace_time_of_day(child.recurrence_id, new_time)
            except WallClockParseError:
                logger.warning("Override %s has unreadable recurrence id", child.id)
        return patch

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, target: TargetInput, scope: Union[DeleteScope, str] = DeleteScope.THIS) -> EditResult:
        """Delete an occurrence, a series tail or a whole definition.

        Args:
            target: Occurrence being deleted (or an already classified EditTarget)
            scope: DeleteScope.THIS or DeleteScope.THIS_AND_FUTURE; ignored for
                non-recurring events

        Returns:
            EditResult describing the writes made

        Raises:
            DefinitionNotFoundError: If the definition is already gone
            StoreError: If the first write fails
            PartialEditError: If a later write fails after earlier ones succeeded
        """
        scope = DeleteScope(scope)
        edit = self.classify(target)
        logger.info("Deleting %s (%s, %s)", edit.occurrence.instance_id, edit.state.value, scope.value)

        if edit.state is EditState.NON_RECURRING:
            self.store.delete_definition(edit.definition.id)
            return EditResult(EditAction.DELETED, edit.state, steps=[f"delete {edit.definition.id}"])

        if edit.state is EditState.EDITING_SERIES_ITSELF:
            return self._delete_series(edit)

        series = edit.series
        if edit.state is EditState.EDITING_EXISTING_OVERRIDE:
            override = edit.override or edit.definition
            if series is None:
                self.store.delete_definition(override.id)
                return EditResult(EditAction.DELETED, edit.state, steps=[f"delete {override.id}"])
            replaced = _normalized(override.recurrence_id) or format_wall_clock(edit.occurrence.start)
            if scope is DeleteScope.THIS_AND_FUTURE:
                return self._truncate(edit, parse_wall_clock(replaced))
            return self._delete_override(edit, replaced)

        if scope is DeleteScope.THIS_AND_FUTURE:
            return self._truncate(edit, edit.occurrence.start)
        return self._exclude(edit, format_wall_clock(edit.occurrence.start))

    def _exclude(self, edit: EditTarget, recurrence_id: str) -> EditResult:
        series = self._require_series(edit)
        log = _WriteLog(f"Deleting occurrence {recurrence_id} of {series.id}")
        updated = self._ensure_excluded(log, series, recurrence_id) or series
        return EditResult(EditAction.EXCLUDED, edit.state, updated, log.completed)

    def _delete_override(self, edit: EditTarget, recurrence_id: str) -> EditResult:
        series = self._require_series(edit)
        override = edit.override or edit.definition
        log = _WriteLog(f"Deleting override {override.id}")
        self._ensure_excluded(log, series, recurrence_id)
        log.run(f"delete override {override.id}", self.store.delete_definition, override.id)
        return EditResult(EditAction.DELETED, edit.state, steps=log.completed)

    def _delete_series(self, edit: EditTarget) -> EditResult:
        series = self._require_series(edit)
        log = _WriteLog(f"Deleting series {series.id}")
        log.run(f"delete series {series.id}", self.store.delete_definition, series.id)
        for child in edit.children:
            log.run(f"delete override {child.id}", self.store.delete_definition, child.id)
        return EditResult(EditAction.DELETED_SERIES, edit.state, steps=log.completed)

    def _truncate(self, edit: EditTarget, cutoff: datetime) -> EditResult:
        """End the series just before ``cutoff`` and drop overrides at or after it."""
        series = self._require_series(edit)
        if not series.repeat_rule:
            raise EditResolutionError(f"Series {series.id} has no repeat rule to truncate")
        anchor, _ = self._definition_bounds(series)
        if cutoff <= anchor:
            logger.info("Cutoff %s is at or before the start of %s; deleting it", cutoff, series.id)
            return self._delete_series(edit)

        rule = set_until(series.repeat_rule, until_for_cutoff(cutoff))
        kept_extras = [x for x in series.extra_dates if not self._at_or_after(x, cutoff)]
        log = _WriteLog(f"Truncating series {series.id}")
        updated = log.run(
            f"set UNTIL on {series.id}",
            self.store.update_definition,
            series.id,
            {"repeat_rule": rule, "extra_dates": kept_extras},
        )
        for child in edit.children:
            if self._at_or_after(child.recurrence_id or child.start_wall, cutoff):
                log.run(f"delete override {child.id}", self.store.delete_definition, child.id)
        logger.info("Truncated %s before %s", series.id, format_wall_clock(cutoff))
        return EditResult(EditAction.TRUNCATED, edit.state, updated, log.completed)

    @staticmethod
    def _at_or_after(value: Optional[str], cutoff: datetime) -> bool:
        if not value:
            return False
        try:
            return parse_wall_clock(value) >= cutoff
        except WallClockParseError:
            return False
