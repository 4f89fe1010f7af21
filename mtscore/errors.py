"""Exception types raised by the scoring engine."""
from __future__ import annotations


class ScoringError(Exception):
    """Base class for all scoring engine failures."""


class InvalidBoundsError(ScoringError, ValueError):
    """Event bounds are inverted, non-finite or do not match the event kind."""


class UnknownTypeError(ScoringError, KeyError):
    """An event type id is not part of the active catalog."""

    def __str__(self) -> str:  # KeyError quotes its argument otherwise
        return str(self.args[0]) if self.args else ""


class UnsupportedStageCountError(ScoringError, ValueError):
    """The requested scoring mode is neither 3- nor 5-stage."""


class EventNotFoundError(ScoringError, KeyError):
    """No event with the given id exists in the store."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class CorruptRecordError(ScoringError, ValueError):
    """A persisted scoring record cannot be turned back into a store."""


class NoMatchingLevelError(ScoringError, ValueError):
    """The resolution threshold table is malformed."""


class EmptyTimelineError(ScoringError, ValueError):
    """The recording duration is missing or not positive."""


__all__ = [
    "ScoringError",
    "InvalidBoundsError",
    "UnknownTypeError",
    "UnsupportedStageCountError",
    "EventNotFoundError",
    "CorruptRecordError",
    "NoMatchingLevelError",
    "EmptyTimelineError",
]
