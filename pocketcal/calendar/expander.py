"""Occurrence expansion: event definitions -> concrete occurrences in a window.

Expansion is a pure function of (definitions, window). Bad data is contained per
definition: a definition with unreadable timestamps contributes nothing, a
malformed repeat rule only loses the rule-generated occurrences (extra dates and
exceptions still apply), and neither aborts the rest of the batch.
"""

import logging
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from pydantic import ValidationError

from ..exceptions import RecurrenceRuleError, WallClockParseError
from .models import OCCURRENCE_OWN_FIELDS, EventDefinition, EventOccurrence
from .rrule_engine import RecurrenceRuleEngine
from .wall_clock import (
    WallClockInput,
    format_wall_clock,
    from_synthetic_instant,
    parse_wall_clock,
    to_synthetic_instant,
)

logger = logging.getLogger(__name__)

DefinitionLike = Union[EventDefinition, Mapping[str, Any]]

INSTANCE_ID_SEPARATOR = "::"


def make_instance_id(definition_id: str, occurrence_start: datetime) -> str:
    """Build the composite '<definition id>::<start ISO>' id of a generated occurrence."""
    return f"{definition_id}{INSTANCE_ID_SEPARATOR}{format_wall_clock(occurrence_start)}"


def _inherited_fields(definition: EventDefinition) -> dict[str, Any]:
    """Definition attributes copied by value into each occurrence."""
    data = definition.model_dump()
    data.pop("start_wall", None)
    data.pop("end_wall", None)
    for key in OCCURRENCE_OWN_FIELDS:
        data.pop(key, None)
    return data


class OccurrenceExpander:
    """Expands event definitions into occurrences intersecting a query window."""

    def __init__(self, settings: Any = None, rule_engine: Optional[RecurrenceRuleEngine] = None):
        """Initialize the expander.

        Args:
            settings: Optional configuration object (see pocketcal.config_loader.Config)
            rule_engine: Rule engine to use; built from settings when omitted
        """
        self.rule_engine = rule_engine or RecurrenceRuleEngine(settings)
        self.default_duration = timedelta(
            minutes=getattr(settings, "default_duration_minutes", 60)
        )

    def expand(
        self,
        definitions: Iterable[DefinitionLike],
        window_start: WallClockInput,
        window_end: WallClockInput,
    ) -> list[EventOccurrence]:
        """Expand all definitions over the half-open window [window_start, window_end).

        Args:
            definitions: EventDefinition models or raw record mappings
            window_start: Wall-clock start of the window (offset ignored)
            window_end: Wall-clock end of the window (offset ignored)

        Returns:
            Occurrences sorted by start; ties keep definition then generation order

        Raises:
            WallClockParseError: If a window bound is not a valid timestamp
        """
        ws = parse_wall_clock(window_start)
        we = parse_wall_clock(window_end)

        occurrences: list[EventOccurrence] = []
        count = 0
        for index, raw in enumerate(definitions):
            count += 1
            definition = self._coerce_definition(raw, index)
            if definition is None:
                continue
            occurrences.extend(self.expand_definition(definition, ws, we))

        occurrences.sort(key=lambda occ: occ.start)
        logger.debug(
            "Expanded %d definitions into %d occurrences for %s..%s",
            count,
            len(occurrences),
            format_wall_clock(ws),
            format_wall_clock(we),
        )
        return occurrences

    def expand_definition(
        self,
        definition: EventDefinition,
        window_start: datetime,
        window_end: datetime,
    ) -> list[EventOccurrence]:
        """Expand a single definition; never raises for bad definition data.

        Args:
            definition: Definition to expand
            window_start: Wall-clock window start (naive)
            window_end: Wall-clock window end (naive)

        Returns:
            Occurrences of this definition in generation order
        """
        try:
            start = parse_wall_clock(definition.start_wall)
            end = (
                parse_wall_clock(definition.end_wall)
                if definition.end_wall
                else start + self.default_duration
            )
        except WallClockParseError as e:
            logger.warning("Skipping definition %s with invalid timestamps: %s", definition.id, e)
            return []

        duration = end - start
        inherited = _inherited_fields(definition)
        occurrences: list[EventOccurrence] = []
        seen_ids: set[str] = set()

        def in_window(occ_start: datetime, occ_end: datetime) -> bool:
            return occ_end > window_start and occ_start < window_end

        def push(instant: datetime) -> None:
            occ_start = from_synthetic_instant(instant)
            occ_end = occ_start + duration
            if not in_window(occ_start, occ_end):
                return
            instance_id = make_instance_id(definition.id, occ_start)
            if instance_id in seen_ids:
                return
            seen_ids.add(instance_id)
            occurrences.append(
                EventOccurrence(
                    **inherited,
                    instance_id=instance_id,
                    original_id=definition.id,
                    start=occ_start,
                    end=occ_end,
                )
            )

        if definition.repeat_rule:
            # Lower bound also reaches back by the duration so long events that
            # began before the window still show their tail.
            rule_window_start = window_start - max(duration, timedelta(0))
            try:
                instants = self.rule_engine.occurrences(
                    definition.repeat_rule,
                    to_synthetic_instant(start),
                    rule_window_start,
                    window_end,
                )
            except RecurrenceRuleError as e:
                logger.warning("Repeat rule of definition %s ignored: %s", definition.id, e)
                instants = []
            for instant in instants:
                push(instant)
        elif in_window(start, end):
            seen_ids.add(make_instance_id(definition.id, start))
            occurrences.append(
                EventOccurrence(
                    **inherited,
                    instance_id=definition.id,
                    original_id=definition.id,
                    start=start,
                    end=end,
                )
            )

        for raw_extra in definition.extra_dates:
            try:
                extra = parse_wall_clock(raw_extra)
            except WallClockParseError as e:
                logger.warning("Ignoring extra date of %s: %s", definition.id, e)
                continue
            push(to_synthetic_instant(extra))

        if definition.exception_dates and occurrences:
            excluded: set[str] = set()
            for raw_exception in definition.exception_dates:
                try:
                    excluded.add(format_wall_clock(parse_wall_clock(raw_exception)))
                except WallClockParseError as e:
                    logger.warning("Ignoring exception date of %s: %s", definition.id, e)
            occurrences = [
                occ for occ in occurrences if format_wall_clock(occ.start) not in excluded
            ]

        return occurrences

    @staticmethod
    def _coerce_definition(raw: DefinitionLike, index: int) -> Optional[EventDefinition]:
        if isinstance(raw, EventDefinition):
            return raw
        if isinstance(raw, Mapping):
            try:
                return EventDefinition.model_validate(dict(raw))
            except ValidationError as e:
                logger.warning(
                    "Skipping definition #%d (%s): %s",
                    index,
                    raw.get("id", "<no-id>"),
                    e.errors(include_url=False),
                )
                return None
        logger.warning("Skipping definition #%d of unsupported type %s", index, type(raw).__name__)
        return None


def expand(
    definitions: Iterable[DefinitionLike],
    window_start: WallClockInput,
    window_end: WallClockInput,
    settings: Any = None,
) -> list[EventOccurrence]:
    """Expand definitions over [window_start, window_end); see OccurrenceExpander.expand."""
    return OccurrenceExpander(settings).expand(definitions, window_start, window_end)


class ExpansionCache:
    """Memoizes expansions keyed on (definition-list revision, window).

    A pure optimization: a hit returns copies of the occurrences computed for
    the same revision and window, so callers mutating results cannot affect
    later hits. Entries are evicted first-in-first-out when full.

    Example:
        cache = ExpansionCache(OccurrenceExpander(settings), max_size=32)
        occurrences = cache.expand(store.revision, store.get_all_definitions(), start, end)
    """

    def __init__(self, expander: Optional[OccurrenceExpander] = None, max_size: int = 32):
        self.expander = expander or OccurrenceExpander()
        self.max_size = max(0, max_size)
        self._entries: "OrderedDict[tuple[int, str, str], list[EventOccurrence]]" = OrderedDict()
        self.stats = {"hits": 0, "misses": 0, "evictions": 0, "invalidations": 0}

    def expand(
        self,
        revision: int,
        definitions: Iterable[DefinitionLike],
        window_start: WallClockInput,
        window_end: WallClockInput,
    ) -> list[EventOccurrence]:
        """Return the expansion for (revision, window), computing it on a miss."""
        key = (
            revision,
            format_wall_clock(parse_wall_clock(window_start)),
            format_wall_clock(parse_wall_clock(window_end)),
        )
        cached = self._entries.get(key)
        if cached is not None:
            self.stats["hits"] += 1
            logger.debug("Expansion cache hit for %s", key)
            return [occ.model_copy(deep=True) for occ in cached]

        self.stats["misses"] += 1
        result = self.expander.expand(definitions, window_start, window_end)
        if self.max_size:
            while len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
                self.stats["evictions"] += 1
            self._entries[key] = [occ.model_copy(deep=True) for occ in result]
        return result

    def invalidate_all(self) -> None:
        """Drop every cached expansion."""
        self._entries.clear()
        self.stats["invalidations"] += 1

    def __len__(self) -> int:
        return len(self._entries)
