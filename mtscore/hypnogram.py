"""Reconcile stage markers and artifact regions into a hypnogram.

Stage changes are point events; artifacts are regions that occlude every
stage change inside them. The result is a right-continuous step function
over ``[0, recording_duration]`` expressed as sorted ``(time, value)``
breakpoints, where the value is a stage id, ``ARTIFACT_ID`` or
``UNSCORED`` before the first stage marker.
"""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from mtscore.catalog import ARTIFACT_ID, UNSCORED, is_stage_id
from mtscore.errors import EmptyTimelineError, InvalidBoundsError
from mtscore.events import Bounds, Event, EventKind, coerce_bounds

LOG = logging.getLogger(__name__)

__all__ = [
    "ArtifactOverlap",
    "InFlightMove",
    "Timeline",
    "reconcile",
    "hold_previous",
]


class ArtifactOverlap(str, enum.Enum):
    """How overlapping artifact intervals are combined.

    ``MERGE`` unions them first so the artifact value holds across the whole
    covered span. ``SEQUENTIAL`` processes each interval on its own, the way
    the legacy scorer did; a stage resumed at the end of one interval can then
    show through inside a later overlapping interval.
    """

    MERGE = "merge"
    SEQUENTIAL = "sequential"


@dataclass(frozen=True)
class InFlightMove:
    """An event being dragged: its id and provisional bounds."""

    event_id: int
    bounds: Bounds


class Timeline:
    """Sorted breakpoints of the reconciled hypnogram."""

    __slots__ = ("times", "stages", "duration")

    def __init__(self, times: Sequence[float], stages: Sequence[int], duration: float):
        self.times = np.asarray(times, dtype=np.float64)
        self.stages = np.asarray(stages, dtype=np.int64)
        if self.times.shape != self.stages.shape:
            raise ValueError("times and stages must have the same length")
        self.times.setflags(write=False)
        self.stages.setflags(write=False)
        self.duration = float(duration)

    def __len__(self) -> int:
        return int(self.times.size)

    def __iter__(self) -> Iterator[Tuple[float, int]]:
        for t, s in zip(self.times.tolist(), self.stages.tolist()):
            yield t, s

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Timeline):
            return NotImplemented
        return (
            self.duration == other.duration
            and np.array_equal(self.times, other.times)
            and np.array_equal(self.stages, other.stages)
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Timeline({self.breakpoints()!r}, duration={self.duration})"

    def breakpoints(self) -> List[Tuple[float, int]]:
        return list(self)

    def stage_at(self, t: float) -> int:
        if not (0.0 <= t <= self.duration):
            raise ValueError(f"time {t} outside recording [0, {self.duration}]")
        return int(hold_previous(self.times, self.stages, t))

    def sample(self, t: np.ndarray) -> np.ndarray:
        """Vectorised ``stage_at``; times outside the recording map to UNSCORED."""
        t = np.asarray(t, dtype=np.float64)
        idx = np.searchsorted(self.times, t, side="right") - 1
        out = np.where(idx >= 0, self.stages[np.clip(idx, 0, None)], UNSCORED)
        out = np.where((t < 0.0) | (t > self.duration), UNSCORED, out)
        return out.astype(np.int64)

    def segments(self) -> List[Tuple[float, float, int]]:
        """(start, end, value) for every non-empty step."""
        out = []
        for i in range(len(self) - 1):
            start = float(self.times[i])
            end = float(self.times[i + 1])
            if end > start:
                out.append((start, end, int(self.stages[i])))
        return out

    def step_edges(self) -> Tuple[np.ndarray, np.ndarray]:
        """Edges (n+1) and values (n) for a centre-mode step plot."""
        if len(self) < 2:
            return self.times.copy(), self.stages[:0].copy()
        return self.times.copy(), self.stages[:-1].copy()

    def durations(self) -> Dict[int, float]:
        totals: Dict[int, float] = {}
        for start, end, value in self.segments():
            totals[value] = totals.get(value, 0.0) + (end - start)
        return totals


def hold_previous(times: np.ndarray, values: np.ndarray, t: float) -> int:
    """Value of the last breakpoint at or before ``t`` (UNSCORED if none)."""
    idx = int(np.searchsorted(times, t, side="right")) - 1
    if idx < 0:
        return UNSCORED
    return int(values[idx])


def _check_duration(recording_duration: Optional[float]) -> float:
    if recording_duration is None:
        raise EmptyTimelineError("recording duration is undefined")
    try:
        duration = float(recording_duration)
    except (TypeError, ValueError) as exc:
        raise EmptyTimelineError(f"invalid recording duration {recording_duration!r}") from exc
    if not math.isfinite(duration) or duration <= 0:
        raise EmptyTimelineError(f"recording duration must be positive, got {duration}")
    return duration


def _merge_intervals(intervals: List[Tuple[float, float]]) -> List[Tuple[float, float]]:
    merged: List[Tuple[float, float]] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1]:
            prev_start, prev_end = merged[-1]
            merged[-1] = (prev_start, max(prev_end, end))
        else:
            merged.append((start, end))
    return merged


def reconcile(
    events: Iterable[Event],
    recording_duration: Optional[float],
    *,
    in_flight: Optional[InFlightMove] = None,
    artifact_overlap: ArtifactOverlap = ArtifactOverlap.MERGE,
) -> Timeline:
    """Build the hypnogram for ``events`` with an optional provisional move.

    The move is matched against stage breakpoints by the dragged event's
    stored time, so it changes at most one breakpoint; a move that cannot be
    matched or has invalid bounds is ignored for this pass.
    """
    duration = _check_duration(recording_duration)
    events = list(events)
    by_id = {ev.id: ev for ev in events}

    stage_events = sorted(
        (ev for ev in events if ev.kind is EventKind.POINT and is_stage_id(ev.type_id)),
        key=lambda ev: ev.start,
    )
    artifact_events = [
        ev for ev in events if ev.kind is EventKind.REGION and ev.type_id == ARTIFACT_ID
    ]

    stage_times = [ev.start for ev in stage_events]
    stage_vals = [ev.type_id for ev in stage_events]
    intervals = [(ev.start, ev.end) for ev in artifact_events]

    target = by_id.get(in_flight.event_id) if in_flight is not None else None
    if in_flight is not None and target is None:
        LOG.debug("Ignoring in-flight move of unknown event %r", in_flight.event_id)
    elif target is not None:
        try:
            new_start, new_end = coerce_bounds(target.kind, in_flight.bounds)
        except InvalidBoundsError as exc:
            LOG.debug("Ignoring in-flight move with invalid bounds: %s", exc)
        else:
            if target.kind is EventKind.POINT and is_stage_id(target.type_id):
                matches = [i for i, t in enumerate(stage_times) if t == target.start]
                if not matches:
                    LOG.warning("In-flight stage move at t=%s has no matching breakpoint", target.start)
                else:
                    # coincident markers: move the dragged one, not whichever sorts first
                    own = [i for i in matches if stage_events[i].id == target.id]
                    stage_times[(own or matches)[0]] = new_start
            elif target.kind is EventKind.REGION and target.type_id == ARTIFACT_ID:
                slot = artifact_events.index(target)
                intervals[slot] = (new_start, new_end)

    # sort again: a provisional time may have jumped past its neighbours
    order = sorted(range(len(stage_times)), key=lambda i: stage_times[i])
    stage_pairs = [
        (stage_times[i], stage_vals[i]) for i in order if 0.0 <= stage_times[i] <= duration
    ]
    last_value = stage_pairs[-1][1] if stage_pairs else UNSCORED
    stage_pairs.append((duration, last_value))

    clipped = []
    for start, end in intervals:
        start = max(0.0, start)
        end = min(duration, end)
        if end > start:
            clipped.append((start, end))
    if artifact_overlap is ArtifactOverlap.MERGE:
        clipped = _merge_intervals(clipped)

    points: List[Tuple[float, int]] = list(stage_pairs)
    if clipped:
        times_arr = np.array([t for t, _ in stage_pairs], dtype=np.float64)
        vals_arr = np.array([v for _, v in stage_pairs], dtype=np.int64)
        resumed = [hold_previous(times_arr, vals_arr, end) for _, end in clipped]
        for start, end in clipped:
            points = [(t, v) for t, v in points if not (start <= t < end)]
        points.extend((start, ARTIFACT_ID) for start, _ in clipped)
        points.extend((end, value) for (_, end), value in zip(clipped, resumed))

    points.sort(key=lambda p: p[0])

    times: List[float] = []
    values: List[int] = []
    for t, v in points:
        if times and t == times[-1]:
            values[-1] = v
        else:
            times.append(t)
            values.append(v)
    if times[0] > 0.0:
        times.insert(0, 0.0)
        values.insert(0, UNSCORED)

    return Timeline(times, values, duration)
