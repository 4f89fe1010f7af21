"""Single entry point the UI drives while scoring one recording."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional

import numpy as np

from mtscore.catalog import ARTIFACT_ID, EventCatalog
from mtscore.detectors import MaskDetector, detect_and_insert
from mtscore.errors import EventNotFoundError
from mtscore.events import Bounds, Event, EventStore
from mtscore.hypnogram import ArtifactOverlap, InFlightMove, Timeline, reconcile
from mtscore.persistence import open_scoring, save_scoring
from mtscore.resolution import ResolutionSelector, ResolutionTable
from mtscore.spectrogram_cache import SpectrogramCache, SpectrogramSlice
from mtscore.view_window import ViewState, WindowLimits

LOG = logging.getLogger(__name__)


class ScoringSession:
    """Serialises every edit, reconciliation and save behind one lock.

    Committed mutations are written to ``record_path`` straight away when
    ``autosave`` is on. A drag in progress only ever produces provisional
    timelines; the store is touched when the drag finishes.
    """

    def __init__(
        self,
        store: EventStore,
        duration_s: float,
        *,
        n_channels: int = 1,
        table: Optional[ResolutionTable] = None,
        dead_band: float = 0.0,
        limits: Optional[WindowLimits] = None,
        record_path: Optional[str | Path] = None,
        autosave: bool = True,
        cache: Optional[SpectrogramCache] = None,
        artifact_overlap: ArtifactOverlap = ArtifactOverlap.MERGE,
        min_run: int = 2,
    ):
        self._lock = threading.RLock()
        self.store = store
        self.duration_s = float(duration_s)
        self.table = table if table is not None else ResolutionTable()
        self.view = ViewState(
            self.duration_s,
            n_channels,
            ResolutionSelector(self.table, dead_band=dead_band),
            limits if limits is not None else WindowLimits(),
        )
        self.record_path = Path(record_path) if record_path is not None else None
        self.autosave = autosave
        self.cache = cache
        self.artifact_overlap = ArtifactOverlap(artifact_overlap)
        self.min_run = int(min_run)
        self._in_flight: Optional[InFlightMove] = None

    @classmethod
    def open(
        cls,
        record_path: str | Path,
        catalog: EventCatalog,
        duration_s: float,
        **kwargs,
    ) -> "ScoringSession":
        """Resume the record at ``record_path`` or start a fresh one."""
        store = open_scoring(record_path, catalog)
        return cls(store, duration_s, record_path=record_path, **kwargs)

    @property
    def catalog(self) -> EventCatalog:
        return self.store.catalog

    @property
    def in_flight(self) -> Optional[InFlightMove]:
        return self._in_flight

    # ------------------------------------------------------------------ edits

    def mark_event(self, type_id: int, bounds: Optional[Bounds] = None) -> Event:
        """Add an event and select it.

        Without explicit bounds a point lands at the window centre and a
        region covers the middle half of the window.
        """
        with self._lock:
            if bounds is None:
                if self.catalog.get(type_id).is_region:
                    quarter = self.view.duration / 4.0
                    bounds = (self.view.start + quarter, self.view.end - quarter)
                else:
                    bounds = self.view.center
            event = self.store.add_event(type_id, bounds)
            self.store.select(event.id)
            self._autosave()
            return self.store.get(event.id)

    def select(self, event_id: Optional[int]) -> None:
        with self._lock:
            self.store.select(event_id)

    def delete_selected(self) -> Optional[Event]:
        with self._lock:
            selected = self.store.selected_id
            if selected is None:
                return None
            if self._in_flight is not None and self._in_flight.event_id == selected:
                self._in_flight = None
            removed = self.store.delete_event(selected)
            self._autosave()
            return removed

    def delete_event(self, event_id: int) -> Event:
        with self._lock:
            removed = self.store.delete_event(event_id)
            if self._in_flight is not None and self._in_flight.event_id == event_id:
                self._in_flight = None
            self._autosave()
            return removed

    def insert_batch(self, type_id: int, bounds_seq: Iterable[Bounds]) -> List[Event]:
        with self._lock:
            added = self.store.insert_batch(type_id, bounds_seq)
            if added:
                self._autosave()
            return added

    def detect_artifacts(
        self,
        detector: MaskDetector,
        signal: np.ndarray,
        fs: float,
        *,
        type_id: int = ARTIFACT_ID,
        min_length: Optional[int] = None,
    ) -> List[Event]:
        min_length = self.min_run if min_length is None else min_length
        with self._lock:
            added = detect_and_insert(self.store, detector, signal, fs, type_id=type_id, min_length=min_length)
            if added:
                self._autosave()
            return added

    # ------------------------------------------------------------------ drag

    def drag(self, event_id: int, bounds: Bounds) -> Timeline:
        """Record a provisional position and return the matching timeline."""
        with self._lock:
            if event_id not in self.store:
                raise EventNotFoundError(f"no event with id {event_id!r}")
            self._in_flight = InFlightMove(event_id, bounds)
            return self._reconcile(self._in_flight)

    def finish_drag(self, bounds: Optional[Bounds] = None) -> Optional[Event]:
        """Commit the drag in progress; invalid bounds leave the store untouched."""
        with self._lock:
            move = self._in_flight
            if move is None:
                return None
            self._in_flight = None
            moved = self.store.move_event(move.event_id, move.bounds if bounds is None else bounds)
            self._autosave()
            return moved

    def cancel_drag(self) -> None:
        with self._lock:
            self._in_flight = None

    # ------------------------------------------------------------------ reads

    def timeline(self) -> Timeline:
        """Hypnogram of the committed store."""
        with self._lock:
            return self._reconcile(None)

    def current_timeline(self) -> Timeline:
        """Hypnogram including the drag in progress, if any."""
        with self._lock:
            return self._reconcile(self._in_flight)

    def current_spectrogram(self) -> Optional[SpectrogramSlice]:
        with self._lock:
            if self.cache is None:
                return None
            return self.cache.get(self.view.resolution, self.view.channel)

    def events(self) -> List[Event]:
        with self._lock:
            return list(self.store.list_events())

    # ------------------------------------------------------------------ view

    def set_window(self, start: float, duration: float) -> bool:
        with self._lock:
            return self.view.set_window(start, duration)

    def zoom(self, factor: float, *, anchor: Optional[float] = None) -> bool:
        with self._lock:
            return self.view.zoom(factor, anchor=anchor)

    def pan(self, delta: float) -> None:
        with self._lock:
            self.view.pan(delta)

    def pan_pages(self, pages: float) -> None:
        with self._lock:
            self.view.pan_pages(pages)

    def cycle_channel(self, step: int = 1) -> int:
        with self._lock:
            return self.view.cycle_channel(step)

    # ------------------------------------------------------------------ io

    def save(self) -> Optional[Path]:
        with self._lock:
            if self.record_path is None:
                return None
            return save_scoring(self.record_path, self.store)

    def _autosave(self) -> None:
        if self.autosave and self.record_path is not None:
            save_scoring(self.record_path, self.store)

    def _reconcile(self, in_flight: Optional[InFlightMove]) -> Timeline:
        return reconcile(
            self.store.list_events(),
            self.duration_s,
            in_flight=in_flight,
            artifact_overlap=self.artifact_overlap,
        )

    def __repr__(self) -> str:
        return f"ScoringSession({self.store!r}, duration={self.duration_s}, record={self.record_path})"


__all__ = ["ScoringSession"]
