"""Annotation events and the store that owns them for a scoring session."""
from __future__ import annotations

import enum
import itertools
import logging
import math
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from mtscore.catalog import EventCatalog, EventType
from mtscore.errors import EventNotFoundError, InvalidBoundsError

LOG = logging.getLogger(__name__)

Bounds = Union[float, Tuple[float, float]]


class EventKind(str, enum.Enum):
    POINT = "point"
    REGION = "region"


@dataclass(frozen=True)
class Event:
    """Immutable snapshot of one annotation.

    Point events carry ``start == end``. The id is opaque; view layers keep
    their own id -> item mapping.
    """

    id: int
    type_id: int
    kind: EventKind
    start: float
    end: float
    selected: bool = False

    @property
    def time(self) -> float:
        return self.start

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def bounds(self) -> Bounds:
        if self.kind is EventKind.REGION:
            return (self.start, self.end)
        return self.start


def coerce_bounds(kind: EventKind, bounds: Bounds) -> tuple[float, float]:
    """Validate ``bounds`` for ``kind`` and return ``(start, end)``."""
    if kind is EventKind.POINT:
        if isinstance(bounds, (tuple, list)):
            raise InvalidBoundsError(f"point events take a single time, got {bounds!r}")
        try:
            t = float(bounds)
        except (TypeError, ValueError) as exc:
            raise InvalidBoundsError(f"invalid point time {bounds!r}") from exc
        if not math.isfinite(t):
            raise InvalidBoundsError(f"point time must be finite, got {t}")
        return t, t

    if not isinstance(bounds, (tuple, list)) or len(bounds) != 2:
        raise InvalidBoundsError(f"region events take (start, end), got {bounds!r}")
    try:
        start, end = float(bounds[0]), float(bounds[1])
    except (TypeError, ValueError) as exc:
        raise InvalidBoundsError(f"invalid region bounds {bounds!r}") from exc
    if not (math.isfinite(start) and math.isfinite(end)):
        raise InvalidBoundsError(f"region bounds must be finite, got ({start}, {end})")
    if end < start:
        raise InvalidBoundsError(f"region end {end} precedes start {start}")
    return start, end


def kind_for(event_type: EventType) -> EventKind:
    return EventKind.REGION if event_type.is_region else EventKind.POINT


class EventView:
    """Time-ordered snapshot of the store.

    Iteration is lazy and may be repeated; later store mutations do not
    change what a view yields.
    """

    __slots__ = ("_events",)

    def __init__(self, events: Sequence[Event]):
        self._events = tuple(events)

    def __iter__(self) -> Iterator[Event]:
        ordered = sorted(range(len(self._events)), key=lambda i: self._events[i].start)
        for idx in ordered:
            yield self._events[idx]

    def __len__(self) -> int:
        return len(self._events)

    def __repr__(self) -> str:
        return f"EventView({len(self._events)} events)"


class EventStore:
    """Owns every event of a session and the single selection."""

    def __init__(self, catalog: EventCatalog):
        self.catalog = catalog
        self._events: Dict[int, Event] = {}
        self._selected: Optional[int] = None
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._events

    def get(self, event_id: int) -> Event:
        try:
            return self._events[event_id]
        except KeyError:
            raise EventNotFoundError(f"no event with id {event_id!r}") from None

    @property
    def selected(self) -> Optional[Event]:
        if self._selected is None:
            return None
        return self._events[self._selected]

    @property
    def selected_id(self) -> Optional[int]:
        return self._selected

    def list_events(self) -> EventView:
        return EventView(list(self._events.values()))

    def events_of_type(self, type_id: int) -> List[Event]:
        return [ev for ev in self.list_events() if ev.type_id == type_id]

    # ------------------------------------------------------------------

    def add_event(self, type_id: int, bounds: Bounds) -> Event:
        event_type = self.catalog.get(type_id)
        kind = kind_for(event_type)
        start, end = coerce_bounds(kind, bounds)
        return self._append(type_id, kind, start, end)

    def insert_batch(self, type_id: int, bounds_seq: Iterable[Bounds]) -> List[Event]:
        """Add one event per bounds entry, all or nothing.

        No deduplication against existing events is attempted.
        """
        event_type = self.catalog.get(type_id)
        kind = kind_for(event_type)
        validated = [coerce_bounds(kind, bounds) for bounds in bounds_seq]
        added = [self._append(type_id, kind, start, end) for start, end in validated]
        LOG.debug("Inserted %d events of type %d", len(added), type_id)
        return added

    def move_event(self, event_id: int, bounds: Bounds) -> Event:
        current = self.get(event_id)
        start, end = coerce_bounds(current.kind, bounds)
        moved = replace(current, start=start, end=end)
        self._events[event_id] = moved
        return moved

    def delete_event(self, event_id: int) -> Event:
        removed = self.get(event_id)
        del self._events[event_id]
        if self._selected == event_id:
            self._selected = None
        return replace(removed, selected=False)

    def select(self, event_id: Optional[int]) -> None:
        if event_id is not None and event_id not in self._events:
            raise EventNotFoundError(f"no event with id {event_id!r}")
        previous = self._selected
        if previous is not None and previous in self._events:
            self._events[previous] = replace(self._events[previous], selected=False)
        self._selected = event_id
        if event_id is not None:
            self._events[event_id] = replace(self._events[event_id], selected=True)

    def clear(self) -> None:
        self._events.clear()
        self._selected = None

    # ------------------------------------------------------------------

    def _append(self, type_id: int, kind: EventKind, start: float, end: float) -> Event:
        event = Event(next(self._ids), type_id, kind, start, end)
        self._events[event.id] = event
        return event

    def __repr__(self) -> str:
        return f"EventStore({len(self._events)} events, numstages={self.catalog.numstages})"


__all__ = [
    "Bounds",
    "EventKind",
    "Event",
    "EventView",
    "EventStore",
    "coerce_bounds",
    "kind_for",
]
