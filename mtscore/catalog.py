"""Event type catalogs for 3- and 5-stage scoring."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from mtscore.errors import UnknownTypeError, UnsupportedStageCountError

UNSCORED = 0
N3_ID = 1
N2_ID = 2
N1_ID = 3
NREM_ID = 3
REM_ID = 4
WAKE_ID = 5
ARTIFACT_ID = 6
SPINDLE_ID = 7

STAGE_IDS = frozenset({N3_ID, N2_ID, N1_ID, REM_ID, WAKE_ID})
SUPPORTED_STAGE_COUNTS = (3, 5)


def is_stage_id(type_id: int) -> bool:
    return type_id in STAGE_IDS


@dataclass(frozen=True)
class EventType:
    """One catalog entry.

    ``label`` is the short marker text drawn next to the event (``None`` for
    unlabeled markers), ``is_region`` selects start/end bounds instead of a
    single time, and ``y_bounded`` means a region always spans the full
    frequency axis.
    """

    label: Optional[str]
    id: int
    is_region: bool
    y_bounded: bool


_THREE_STAGE = (
    EventType("W", WAKE_ID, False, False),
    EventType("R", REM_ID, False, False),
    EventType("N", NREM_ID, False, False),
    EventType("A", ARTIFACT_ID, True, True),
    EventType(None, SPINDLE_ID, True, False),
)

_FIVE_STAGE = (
    EventType("W", WAKE_ID, False, False),
    EventType("R", REM_ID, False, False),
    EventType("N1", N1_ID, False, False),
    EventType("N2", N2_ID, False, False),
    EventType("N3", N3_ID, False, False),
    EventType("A", ARTIFACT_ID, True, True),
    EventType(None, SPINDLE_ID, True, False),
)

_STAGE_NAMES = {
    3: {UNSCORED: "Unscored", NREM_ID: "NREM", REM_ID: "REM", WAKE_ID: "Wake", ARTIFACT_ID: "Art."},
    5: {
        UNSCORED: "Unscored",
        N3_ID: "N3",
        N2_ID: "N2",
        N1_ID: "N1",
        REM_ID: "REM",
        WAKE_ID: "Wake",
        ARTIFACT_ID: "Art.",
    },
}


class EventCatalog:
    """Fixed set of event types for one scoring mode."""

    def __init__(self, numstages: int):
        try:
            numstages = int(numstages)
        except (TypeError, ValueError) as exc:
            raise UnsupportedStageCountError(f"numstages must be 3 or 5, got {numstages!r}") from exc
        if numstages == 3:
            types = _THREE_STAGE
        elif numstages == 5:
            types = _FIVE_STAGE
        else:
            raise UnsupportedStageCountError(f"numstages must be 3 or 5, got {numstages}")
        self.numstages = numstages
        self._types: Dict[int, EventType] = {t.id: t for t in types}

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._types

    def __iter__(self) -> Iterator[EventType]:
        return iter(self._types.values())

    def __len__(self) -> int:
        return len(self._types)

    def get(self, type_id: int) -> EventType:
        try:
            return self._types[type_id]
        except KeyError:
            raise UnknownTypeError(
                f"event type {type_id!r} is not defined for {self.numstages}-stage scoring"
            ) from None

    @property
    def stage_ids(self) -> tuple[int, ...]:
        """Stage ids of this mode, deepest first."""
        return tuple(sorted(t.id for t in self._types.values() if is_stage_id(t.id)))

    def name_for(self, value: int) -> str:
        """Display name of a timeline value (stage, artifact or unscored)."""
        names = _STAGE_NAMES[self.numstages]
        if value in names:
            return names[value]
        if value in self._types:
            return self._types[value].label or f"type {value}"
        return str(value)

    def axis_ticks(self) -> list[tuple[int, str]]:
        """(value, label) pairs for a hypnogram y-axis, deepest stage first."""
        values = list(self.stage_ids) + [ARTIFACT_ID]
        return [(value, self.name_for(value)) for value in values]

    def __repr__(self) -> str:
        return f"EventCatalog(numstages={self.numstages})"


__all__ = [
    "UNSCORED",
    "N3_ID",
    "N2_ID",
    "N1_ID",
    "NREM_ID",
    "REM_ID",
    "WAKE_ID",
    "ARTIFACT_ID",
    "SPINDLE_ID",
    "STAGE_IDS",
    "SUPPORTED_STAGE_COUNTS",
    "is_stage_id",
    "EventType",
    "EventCatalog",
]
