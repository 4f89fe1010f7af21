# ui/hypnogram_view.py
"""pyqtgraph items for the scoring view.

The engine never holds graphics objects. ``EventViewRegistry`` keeps the
event id -> item mapping on this side and turns item drags back into
``(event_id, bounds)`` callbacks.
"""
from __future__ import annotations

import logging
from functools import partial
from typing import Callable, Dict, Iterable, Optional

import numpy as np
import pyqtgraph as pg
from PySide6 import QtCore

from mtscore.catalog import ARTIFACT_ID, EventCatalog
from mtscore.events import Bounds, Event, EventKind
from mtscore.hypnogram import Timeline
from mtscore.spectrogram_cache import SpectrogramSlice

LOG = logging.getLogger(__name__)

DragCallback = Callable[[int, Bounds], None]

STAGE_PEN = "#f0f4ff"
MARKER_COLOR = "#ff9f1c"
SELECTED_COLOR = "#3fd0ff"
ARTIFACT_BRUSH = (220, 60, 60, 70)
REGION_BRUSH = (120, 200, 120, 60)


class HypnogramCurve:
    """Step plot of a reconciled timeline with stage names on the y axis."""

    def __init__(self, plot: pg.PlotItem, catalog: EventCatalog):
        self.plot = plot
        self.catalog = catalog
        self.item = pg.PlotDataItem(pen=pg.mkPen(STAGE_PEN, width=1.5))
        self.item.setZValue(5)
        plot.addItem(self.item)
        ticks = catalog.axis_ticks()
        plot.getAxis("left").setTicks([ticks])
        values = [value for value, _ in ticks]
        plot.setYRange(min(values) - 0.5, max(values) + 0.5, padding=0)
        self.x_data = np.zeros(0)
        self.y_data = np.zeros(0)

    def set_timeline(self, timeline: Timeline) -> None:
        edges, values = timeline.step_edges()
        self.x_data = edges
        self.y_data = values.astype(np.float64)
        if values.size == 0:
            self.item.setData([], [])
            return
        self.item.setData(self.x_data, self.y_data, stepMode="center")

    def clear(self) -> None:
        self.x_data = np.zeros(0)
        self.y_data = np.zeros(0)
        self.item.setData([], [])


class SpectrogramImage:
    """ImageItem showing one spectrogram slice in time/frequency coordinates."""

    def __init__(self, plot: pg.PlotItem, *, colormap: str = "viridis", percentiles=(5.0, 98.0)):
        self.plot = plot
        self.item = pg.ImageItem(axisOrder="row-major")
        self.item.setZValue(-20)
        self.item.setLookupTable(pg.colormap.get(colormap).getLookupTable(nPts=256))
        self.percentiles = percentiles
        self.levels: Optional[tuple[float, float]] = None
        plot.addItem(self.item)

    def set_slice(self, spect: SpectrogramSlice) -> None:
        power = np.asarray(spect.power)
        if power.size == 0 or spect.times.size == 0 or spect.freqs.size == 0:
            self.item.clear()
            self.levels = None
            return
        finite = power[np.isfinite(power)]
        if finite.size:
            low, high = np.percentile(finite, self.percentiles)
        else:
            low, high = 0.0, 1.0
        if high <= low:
            high = low + 1.0
        self.levels = (float(low), float(high))
        self.item.setImage(power, autoLevels=False, levels=self.levels)
        t0, t1 = float(spect.times[0]), float(spect.times[-1])
        f0, f1 = float(spect.freqs[0]), float(spect.freqs[-1])
        self.item.setRect(QtCore.QRectF(t0, f0, max(t1 - t0, 1e-9), max(f1 - f0, 1e-9)))


class EventViewRegistry:
    """Keeps one graphics item per event id in sync with the store.

    Point events become vertical lines, region events linear regions. While
    ``sync`` moves items the drag callbacks are muted.
    """

    def __init__(
        self,
        plot: pg.PlotItem,
        catalog: EventCatalog,
        *,
        on_drag: Optional[DragCallback] = None,
        on_drag_finished: Optional[DragCallback] = None,
        on_select: Optional[Callable[[int], None]] = None,
    ):
        self.plot = plot
        self.catalog = catalog
        self.on_drag = on_drag
        self.on_drag_finished = on_drag_finished
        self.on_select = on_select
        self._items: Dict[int, pg.GraphicsObject] = {}
        self._syncing = False

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._items

    def item_for(self, event_id: int) -> pg.GraphicsObject:
        return self._items[event_id]

    def ids(self) -> list[int]:
        return list(self._items)

    def sync(self, events: Iterable[Event]) -> None:
        """Create, move, restyle and drop items to mirror ``events``."""
        self._syncing = True
        try:
            seen = set()
            for event in events:
                seen.add(event.id)
                item = self._items.get(event.id)
                if item is None:
                    item = self._create(event)
                else:
                    self._move(item, event)
                self._style(item, event)
            for event_id in [eid for eid in self._items if eid not in seen]:
                self.remove(event_id)
        finally:
            self._syncing = False

    def remove(self, event_id: int) -> None:
        item = self._items.pop(event_id, None)
        if item is not None:
            self.plot.removeItem(item)

    def clear(self) -> None:
        for event_id in list(self._items):
            self.remove(event_id)

    # ------------------------------------------------------------------

    def _create(self, event: Event) -> pg.GraphicsObject:
        event_type = self.catalog.get(event.type_id)
        if event.kind is EventKind.REGION:
            brush = ARTIFACT_BRUSH if event.type_id == ARTIFACT_ID else REGION_BRUSH
            item = pg.LinearRegionItem(values=(event.start, event.end), movable=True, brush=pg.mkBrush(brush))
            item.sigRegionChanged.connect(partial(self._region_changed, event.id, False))
            item.sigRegionChangeFinished.connect(partial(self._region_changed, event.id, True))
            item.sigRegionChangeStarted.connect(partial(self._picked, event.id))
        else:
            label_opts = {"position": 0.95, "color": MARKER_COLOR, "movable": False}
            item = pg.InfiniteLine(
                pos=event.start,
                angle=90,
                movable=True,
                pen=pg.mkPen(MARKER_COLOR, width=1.5),
                label=event_type.label,
                labelOpts=label_opts,
            )
            item.sigPositionChanged.connect(partial(self._line_changed, event.id, False))
            item.sigPositionChangeFinished.connect(partial(self._line_changed, event.id, True))
            item.sigClicked.connect(partial(self._picked, event.id))
        item.setZValue(10)
        self.plot.addItem(item)
        self._items[event.id] = item
        return item

    def _move(self, item: pg.GraphicsObject, event: Event) -> None:
        if event.kind is EventKind.REGION:
            if tuple(item.getRegion()) != (event.start, event.end):
                item.setRegion((event.start, event.end))
        elif item.value() != event.start:
            item.setValue(event.start)

    def _style(self, item: pg.GraphicsObject, event: Event) -> None:
        color = SELECTED_COLOR if event.selected else MARKER_COLOR
        width = 2.5 if event.selected else 1.5
        if event.kind is EventKind.REGION:
            for line in item.lines:
                line.setPen(pg.mkPen(color, width=width))
        else:
            item.setPen(pg.mkPen(color, width=width))

    def _line_changed(self, event_id: int, finished: bool, line) -> None:
        self._emit(event_id, float(line.value()), finished)

    def _region_changed(self, event_id: int, finished: bool, region) -> None:
        start, end = region.getRegion()
        self._emit(event_id, (float(start), float(end)), finished)

    def _picked(self, event_id: int, *_args) -> None:
        if not self._syncing and self.on_select is not None:
            self.on_select(event_id)

    def _emit(self, event_id: int, bounds: Bounds, finished: bool) -> None:
        if self._syncing:
            return
        callback = self.on_drag_finished if finished else self.on_drag
        if callback is not None:
            callback(event_id, bounds)


__all__ = ["HypnogramCurve", "SpectrogramImage", "EventViewRegistry"]
