"""Exception hierarchy for pocketcal.

Expansion-time problems (bad timestamps, malformed repeat rules) are contained
per definition and only logged; these exceptions surface from the edit path and
the store collaborator, where the caller has to report the failure to the user.
"""

from __future__ import annotations

from typing import Any


class PocketCalError(Exception):
    """Base exception for all pocketcal errors."""


class WallClockParseError(PocketCalError, ValueError):
    """A timestamp could not be read as an ISO-8601 wall-clock value."""


class RecurrenceRuleError(PocketCalError):
    """A repeat rule could not be parsed or expanded."""


class InvalidTimezoneError(PocketCalError, ValueError):
    """A zone name is neither "local" nor a known IANA identifier."""


class EventValidationError(PocketCalError):
    """An edit would persist an invalid event definition.

    Raised when:
    - The end time does not follow the start time
    - A changed repeat rule does not parse
    - A required field is missing from a new definition
    """


class StoreError(PocketCalError):
    """Base exception for failures of the definition store."""


class StoreReadError(StoreError):
    """The store could not load its definitions."""


class StoreWriteError(StoreError):
    """The store could not persist a mutation."""


class DefinitionNotFoundError(StoreError, KeyError):
    """An update or delete targeted an id the store does not hold."""

    def __init__(self, definition_id: str):
        super().__init__(definition_id)
        self.definition_id = definition_id

    def __str__(self) -> str:
        return f"event definition not found: {self.definition_id}"


class EditResolutionError(PocketCalError):
    """An edit or delete intent could not be carried out."""


class PartialEditError(EditResolutionError):
    """An edit failed after some of its writes had already been applied.

    Attributes:
        completed: Human-readable descriptions of the writes that succeeded
        cause: The store error that interrupted the operation
    """

    def __init__(self, message: str, completed: list[str], cause: BaseException | None = None):
        super().__init__(message)
        self.completed = list(completed)
        self.cause: Any = cause
