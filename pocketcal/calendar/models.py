"""Data models for event definitions and their expanded occurrences."""

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer, field_validator

from .wall_clock import format_wall_clock, parse_wall_clock

# Fields an occurrence computes itself and never inherits from its definition
OCCURRENCE_OWN_FIELDS = frozenset({"id", "instance_id", "original_id", "start", "end"})

# Fields an edit may never rewrite
PROTECTED_FIELDS = frozenset({"id", "instance_id", "original_id", "parent_id", "recurrence_id"})

DEFAULT_DURATION = timedelta(hours=1)


def _as_iso_string(value: Any) -> Any:
    """Accept datetimes where the stored representation is an ISO string."""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class EventDefinition(BaseModel):
    """A raw event record as held by the store.

    Timestamps are kept as the ISO strings the user saved; they are only
    normalized to wall clock during expansion, so a single corrupt record can
    be skipped there without failing the whole list.
    """

    id: str = Field(..., description="Unique definition id")
    title: str = Field(default="", description="Display title")

    start_wall: str = Field(
        ...,
        validation_alias=AliasChoices("start_wall", "startWall", "dtstart"),
        description="Wall-clock start (ISO-8601, offset ignored)",
    )
    end_wall: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("end_wall", "endWall", "dtend"),
        description="Wall-clock end; defaults to start + 1 hour",
    )

    # Recurrence
    repeat_rule: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("repeat_rule", "repeatRule", "rrule"),
        description="RFC 5545 style rule text, e.g. FREQ=WEEKLY;BYDAY=MO",
    )
    exception_dates: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("exception_dates", "exceptionDates", "exdate"),
        description="Wall-clock starts of suppressed occurrences",
    )
    extra_dates: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("extra_dates", "extraDates", "rdate"),
        description="Wall-clock starts of additional one-off occurrences",
    )

    # Free-form attributes carried into every occurrence
    location: Optional[str] = None
    notes: Optional[str] = None
    alert_offset_minutes: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("alert_offset_minutes", "alertOffsetMinutes", "alertOffset"),
        description="Reminder lead time in minutes; negative or None disables",
    )
    timezone: Optional[str] = Field(default=None, description="Zone the event was created in")

    # Override bookkeeping
    parent_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("parent_id", "parentId", "originalId", "original_id"),
        description="Series id this standalone override replaces an occurrence of",
    )
    recurrence_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("recurrence_id", "recurrenceId"),
        description="Wall-clock start of the series occurrence this override replaces",
    )
    duration_locked: bool = Field(
        default=False,
        validation_alias=AliasChoices("duration_locked", "durationLocked"),
        description="Override keeps its own duration when the series duration changes",
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("start_wall", "end_wall", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> Any:
        return _as_iso_string(value)

    @field_validator("repeat_rule", mode="before")
    @classmethod
    def _blank_rule_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("exception_dates", "extra_dates", mode="before")
    @classmethod
    def _coerce_date_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (str, datetime)):
            value = [value]
        return [_as_iso_string(v) for v in value]

    @property
    def is_recurring(self) -> bool:
        """True if the definition carries a repeat rule."""
        return bool(self.repeat_rule)

    @property
    def is_override(self) -> bool:
        """True for a standalone record replacing one occurrence of a series."""
        return bool(self.parent_id) and not self.is_recurring

    def to_record(self) -> dict[str, Any]:
        """Serialize to the plain mapping persisted by stores."""
        return self.model_dump(mode="json")


def canonical_record(data: Mapping[str, Any]) -> dict[str, Any]:
    """Rename alias keys ('dtstart', 'exceptionDates', ...) to EventDefinition field names.

    Lets a patch written with legacy or camelCase names be merged over a stored
    record without the alias being shadowed by the stored field.
    """
    aliases: dict[str, str] = {}
    for name, field in EventDefinition.model_fields.items():
        choices = field.validation_alias
        if isinstance(choices, AliasChoices):
            for choice in choices.choices:
                if isinstance(choice, str):
                    aliases[choice] = name
    return {aliases.get(key, key): value for key, value in data.items()}


class EventOccurrence(BaseModel):
    """One concrete occurrence of a definition inside a query window.

    Built fresh on every expansion and never persisted. ``start``/``end`` are
    naive wall-clock datetimes; every other definition attribute is inherited
    by value.
    """

    instance_id: str = Field(..., description="'<definition id>::<start ISO>' or the definition id")
    original_id: str = Field(..., description="Id of the definition that generated this occurrence")
    start: datetime = Field(..., description="Wall-clock start")
    end: datetime = Field(..., description="Wall-clock end")

    title: str = ""
    location: Optional[str] = None
    notes: Optional[str] = None
    alert_offset_minutes: Optional[int] = None
    timezone: Optional[str] = None
    repeat_rule: Optional[str] = None
    exception_dates: list[str] = Field(default_factory=list)
    extra_dates: list[str] = Field(default_factory=list)
    parent_id: Optional[str] = None
    recurrence_id: Optional[str] = None
    duration_locked: bool = False

    model_config = ConfigDict(extra="allow")

    @property
    def duration(self) -> timedelta:
        """Occurrence length (may be zero or negative for malformed input)."""
        return self.end - self.start

    @property
    def is_recurring_instance(self) -> bool:
        """True if the id is a composite '<definition id>::<start>' id."""
        return "::" in self.instance_id

    @field_serializer("start", "end")
    def serialize_wall_clock(self, dt: datetime) -> str:
        """Serialize wall-clock fields without an offset."""
        return format_wall_clock(dt)

    @classmethod
    def for_series(
        cls, definition: EventDefinition, default_duration: timedelta = DEFAULT_DURATION
    ) -> "EventOccurrence":
        """Build the target that addresses a whole series in the edit resolver.

        The result sits at the series anchor and its ``instance_id`` equals the
        definition id.

        Raises:
            WallClockParseError: If the definition's timestamps do not parse
        """
        start = parse_wall_clock(definition.start_wall)
        end = parse_wall_clock(definition.end_wall) if definition.end_wall else start + default_duration
        inherited = {
            k: v for k, v in definition.model_dump().items() if k not in OCCURRENCE_OWN_FIELDS
        }
        inherited.pop("start_wall", None)
        inherited.pop("end_wall", None)
        return cls(
            **inherited,
            instance_id=definition.id,
            original_id=definition.id,
            start=start,
            end=end,
        )


class EventChanges(BaseModel):
    """Fields supplied by a save intent. Only explicitly set fields are applied.

    ``start``/``end`` are normalized to wall clock on input; an offset in the
    submitted string is dropped, never converted.
    """

    title: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    alert_offset_minutes: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("alert_offset_minutes", "alertOffsetMinutes", "alertOffset"),
    )
    timezone: Optional[str] = None
    start: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("start", "start_wall", "startWall", "dtstart")
    )
    end: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("end", "end_wall", "endWall", "dtend")
    )
    repeat_rule: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("repeat_rule", "repeatRule", "rrule")
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("start", "end", mode="before")
    @classmethod
    def _to_wall_clock(cls, value: Any) -> Any:
        if value is None:
            return None
        return parse_wall_clock(value)

    @field_validator("repeat_rule", mode="before")
    @classmethod
    def _blank_rule_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def provided(self) -> dict[str, Any]:
        """Return only the fields the caller explicitly set, minus protected ids."""
        data = self.model_dump(exclude_unset=True)
        for key in PROTECTED_FIELDS:
            data.pop(key, None)
        return data

    @property
    def is_empty(self) -> bool:
        return not self.provided()

    @property
    def changes_time(self) -> bool:
        fields = self.provided()
        return "start" in fields or "end" in fields
