"""Repeat-rule expansion in synthetic (DST-free) space.

Rule text follows the RFC 5545 RRULE grammar as understood by
``dateutil.rrule.rrulestr``. The engine is anchored at a synthetic instant (see
``wall_clock``), so ``UNTIL`` bounds are read in synthetic space as well: a bound
without ``Z`` is treated as if it carried one, and a date-only bound covers the
whole of that date.
"""

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Optional, Union

from dateutil.rrule import rrule, rrulestr, rruleset

from ..exceptions import RecurrenceRuleError
from .wall_clock import format_until, from_synthetic_instant, parse_wall_clock, to_synthetic_instant

logger = logging.getLogger(__name__)

RuleLike = Union[rrule, rruleset]

_UNTIL_RE = re.compile(r"UNTIL=([0-9]{8}(?:T[0-9]{6})?)(Z?)", re.IGNORECASE)
_VALIDATION_ANCHOR = datetime(2000, 1, 1, tzinfo=UTC)


@dataclass
class RRuleEngineConfig:
    """Configuration for rule expansion with explicit defaults."""

    rule_window_padding_days: int = 1
    max_occurrences_per_rule: int = 5000

    @classmethod
    def from_settings(cls, settings: Any) -> "RRuleEngineConfig":
        """Extract rule settings from a settings object (missing attributes use defaults)."""
        return cls(
            rule_window_padding_days=getattr(settings, "rule_window_padding_days", 1),
            max_occurrences_per_rule=getattr(settings, "max_occurrences_per_rule", 5000),
        )


def _normalize_until(match: "re.Match[str]") -> str:
    value = match.group(1).upper()
    if "T" not in value:
        value += "T235959"
    return f"UNTIL={value}Z"


def prepare_rule_text(rule_text: str) -> str:
    """Normalize rule text for parsing in synthetic space.

    Drops embedded DTSTART lines (the definition start is always the anchor)
    and rewrites UNTIL bounds to synthetic UTC.

    Raises:
        RecurrenceRuleError: If nothing but whitespace or DTSTART lines remain
    """
    if not isinstance(rule_text, str) or not rule_text.strip():
        raise RecurrenceRuleError("Empty repeat rule")

    lines = []
    for raw_line in rule_text.replace("\r\n", "\n").split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        if line.upper().startswith("DTSTART"):
            logger.debug("Ignoring embedded DTSTART line in repeat rule: %r", line)
            continue
        lines.append(_UNTIL_RE.sub(_normalize_until, line))

    if not lines:
        raise RecurrenceRuleError(f"Repeat rule has no RRULE content: {rule_text!r}")
    return "\n".join(lines)


class RecurrenceRuleEngine:
    """Expands repeat rules anchored at synthetic instants.

    Each call is independent; the engine holds configuration only.
    """

    def __init__(self, settings: Any = None):
        """Initialize the engine.

        Args:
            settings: Optional configuration object with rule settings
        """
        config = RRuleEngineConfig.from_settings(settings)
        self.padding = timedelta(days=max(1, config.rule_window_padding_days))
        self.max_occurrences = max(1, config.max_occurrences_per_rule)

    def build_rule(self, rule_text: str, anchor: datetime) -> RuleLike:
        """Parse rule text anchored at a synthetic instant.

        Raises:
            RecurrenceRuleError: If the rule text cannot be parsed
        """
        prepared = prepare_rule_text(rule_text)
        try:
            return rrulestr(prepared, dtstart=anchor)
        except (ValueError, TypeError, KeyError, IndexError) as e:
            raise RecurrenceRuleError(f"Invalid repeat rule {rule_text!r}: {e}") from e

    def query_bounds(self, window_start: datetime, window_end: datetime) -> tuple[datetime, datetime]:
        """Widen a wall-clock window to whole days plus padding, in synthetic space."""
        lo = datetime(window_start.year, window_start.month, window_start.day, tzinfo=UTC)
        hi = datetime(window_end.year, window_end.month, window_end.day, tzinfo=UTC)
        return lo - self.padding, hi + self.padding

    def occurrences(
        self,
        rule_text: str,
        anchor: datetime,
        window_start: datetime,
        window_end: datetime,
    ) -> list[datetime]:
        """Return synthetic instants of the rule intersecting the widened window.

        Args:
            rule_text: Repeat rule text
            anchor: Synthetic instant of the series start
            window_start: Wall-clock lower bound of the query
            window_end: Wall-clock upper bound of the query

        Returns:
            Ordered synthetic instants (not deduplicated)

        Raises:
            RecurrenceRuleError: If the rule cannot be parsed or iterated
        """
        rule = self.build_rule(rule_text, anchor)
        lo, hi = self.query_bounds(window_start, window_end)

        produced: list[datetime] = []
        try:
            for occurrence in rule.xafter(lo, inc=True):
                if occurrence > hi:
                    break
                if len(produced) >= self.max_occurrences:
                    logger.warning(
                        "Repeat rule %r truncated at %d occurrences for window %s..%s",
                        rule_text,
                        self.max_occurrences,
                        lo,
                        hi,
                    )
                    break
                produced.append(occurrence)
        except (ValueError, TypeError) as e:
            raise RecurrenceRuleError(f"Failed to expand repeat rule {rule_text!r}: {e}") from e

        logger.debug(
            "Rule %r anchored at %s produced %d instants in %s..%s",
            rule_text,
            anchor,
            len(produced),
            lo,
            hi,
        )
        return produced

    def validate(self, rule_text: str) -> None:
        """Raise RecurrenceRuleError if the rule text would not expand."""
        rule = self.build_rule(rule_text, _VALIDATION_ANCHOR)
        try:
            rule.after(_VALIDATION_ANCHOR, inc=True)
        except (ValueError, TypeError) as e:
            raise RecurrenceRuleError(f"Invalid repeat rule {rule_text!r}: {e}") from e

    def parse_rrule_string(self, rule_text: str) -> dict:
        """Parse rule text into its components.

        Args:
            rule_text: Rule string (e.g. "FREQ=WEEKLY;INTERVAL=1;BYDAY=MO")

        Returns:
            Dictionary with parsed components; UNTIL is returned as a wall-clock datetime

        Raises:
            RecurrenceRuleError: If the rule text is invalid or lacks FREQ
        """
        if not rule_text or not rule_text.strip():
            raise RecurrenceRuleError("Empty RRULE string")

        body = _rrule_body(rule_text)
        rule_dict: dict[str, Any] = {}
        try:
            for part in body.split(";"):
                if "=" not in part:
                    continue
                key, value = part.split("=", 1)
                key = key.strip().lower()
                value = value.strip()

                if key == "freq":
                    rule_dict["freq"] = value.upper()
                elif key == "interval":
                    rule_dict["interval"] = int(value)
                elif key == "count":
                    rule_dict["count"] = int(value)
                elif key == "byday":
                    rule_dict["byday"] = [day.strip().upper() for day in value.split(",")]
                elif key == "until":
                    until = get_until(f"UNTIL={value}")
                    if until is None:
                        raise ValueError(f"unreadable UNTIL value {value!r}")
                    rule_dict["until"] = until
                else:
                    rule_dict[key] = value
        except (ValueError, RecurrenceRuleError) as e:
            raise RecurrenceRuleError(f"Invalid RRULE format: {rule_text}") from e

        if not rule_dict.get("freq"):
            raise RecurrenceRuleError("RRULE missing required FREQ parameter")

        return rule_dict


def _rrule_body(rule_text: str) -> str:
    """Return the RRULE line of rule text without its ``RRULE:`` prefix."""
    for raw_line in rule_text.replace("\r\n", "\n").split("\n"):
        line = raw_line.strip()
        if not line or line.upper().startswith("DTSTART"):
            continue
        if ":" in line:
            name, value = line.split(":", 1)
            if name.strip().upper() == "RRULE":
                return value
            continue
        return line
    return rule_text.strip()


def get_until(rule_text: str) -> Optional[datetime]:
    """Return the UNTIL bound of rule text as a wall-clock datetime, or None.

    Raises:
        RecurrenceRuleError: If the UNTIL value is malformed
    """
    match = _UNTIL_RE.search(rule_text or "")
    if not match:
        return None
    normalized = _normalize_until(match)[len("UNTIL="):]
    try:
        instant = datetime.strptime(normalized, "%Y%m%dT%H%M%SZ").replace(tzinfo=UTC)
    except ValueError as e:
        raise RecurrenceRuleError(f"Invalid UNTIL value in {rule_text!r}") from e
    return from_synthetic_instant(instant)


def set_until(rule_text: str, until_wall: datetime) -> str:
    """Insert or replace the UNTIL bound of rule text.

    COUNT is removed because RFC 5545 does not allow it together with UNTIL.
    An ``RRULE:`` prefix, if present, is preserved.

    Args:
        rule_text: Existing repeat rule text
        until_wall: Last wall-clock instant still allowed to start an occurrence

    Returns:
        Updated rule text
    """
    bound = format_until(until_wall)
    out_lines = []
    replaced_rule = False
    for raw_line in (rule_text or "").replace("\r\n", "\n").split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        prefix = ""
        body = line
        if ":" in line:
            name, value = line.split(":", 1)
            if name.strip().upper() != "RRULE" or replaced_rule:
                out_lines.append(line)
                continue
            prefix, body = f"{name}:", value
        elif replaced_rule or line.upper().startswith("DTSTART"):
            out_lines.append(line)
            continue

        parts = [p for p in body.split(";") if p.strip()]
        kept = []
        has_until = False
        for part in parts:
            key = part.split("=", 1)[0].strip().upper()
            if key == "COUNT":
                continue
            if key == "UNTIL":
                kept.append(f"UNTIL={bound}")
                has_until = True
            else:
                kept.append(part)
        if not has_until:
            kept.append(f"UNTIL={bound}")
        out_lines.append(prefix + ";".join(kept))
        replaced_rule = True

    return "\n".join(out_lines)


def shift_until(rule_text: str, delta: timedelta) -> str:
    """Move an existing UNTIL bound by ``delta``; rules without UNTIL are returned unchanged."""
    until = get_until(rule_text)
    if until is None:
        return rule_text
    return set_until(rule_text, until + delta)


def until_for_cutoff(occurrence_start: Union[str, datetime]) -> datetime:
    """Return the last wall-clock instant kept when truncating before an occurrence."""
    return parse_wall_clock(occurrence_start) - timedelta(seconds=1)


def synthetic_anchor(start: Union[str, datetime]) -> datetime:
    """Synthetic instant for a wall-clock start (convenience for callers)."""
    return to_synthetic_instant(parse_wall_clock(start))
