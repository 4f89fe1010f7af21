# ui/scoring_window.py
"""Minimal scoring window: spectrogram with event markers over a night hypnogram."""
from __future__ import annotations

import logging
from typing import Dict, Optional

import pyqtgraph as pg
from PySide6 import QtCore, QtGui, QtWidgets

from mtscore.catalog import EventCatalog
from mtscore.errors import ScoringError
from mtscore.events import Bounds
from mtscore.session import ScoringSession
from mtscore.timebase import Timebase, format_range
from ui.hypnogram_view import EventViewRegistry, HypnogramCurve, SpectrogramImage
from ui.time_axis import TimeAxis

LOG = logging.getLogger(__name__)


def stage_shortcuts(catalog: EventCatalog) -> Dict[str, int]:
    """Key -> type id: the label's last character for N1/N2/N3, else its first."""
    keys: Dict[str, int] = {}
    for event_type in catalog:
        label = event_type.label
        if not label:
            continue
        key = label[-1] if label.startswith("N") and len(label) > 1 else label[0]
        keys[key.upper()] = event_type.id
    return keys


class ScoringWindow(QtWidgets.QMainWindow):
    def __init__(
        self,
        session: ScoringSession,
        *,
        timebase: Optional[Timebase] = None,
        spindle_key: str = "S",
    ):
        super().__init__()
        self.session = session
        self._updating_view = False

        self.plotLayout = pg.GraphicsLayoutWidget()
        self.spectPlot = self.plotLayout.addPlot(
            row=0, col=0, axisItems={"bottom": TimeAxis(timebase=timebase)}
        )
        self.spectPlot.setMenuEnabled(False)
        self.spectPlot.setLabel("left", "Hz")
        self.spectPlot.getViewBox().setMouseEnabled(x=True, y=False)
        self.hypnoPlot = self.plotLayout.addPlot(
            row=1, col=0, axisItems={"bottom": TimeAxis(timebase=timebase)}
        )
        self.hypnoPlot.setMenuEnabled(False)
        self.hypnoPlot.setMouseEnabled(x=False, y=False)
        self.hypnoPlot.hideButtons()
        self.hypnoPlot.setMaximumHeight(160)
        self.hypnoPlot.setXRange(0.0, session.duration_s, padding=0)
        self.setCentralWidget(self.plotLayout)

        self.image = SpectrogramImage(self.spectPlot)
        self.curve = HypnogramCurve(self.hypnoPlot, session.catalog)
        self.windowRegion = pg.LinearRegionItem(movable=False, brush=pg.mkBrush(255, 255, 255, 30))
        self.windowRegion.setZValue(-10)
        self.hypnoPlot.addItem(self.windowRegion)
        self.registry = EventViewRegistry(
            self.spectPlot,
            session.catalog,
            on_drag=self._on_drag,
            on_drag_finished=self._on_drag_finished,
            on_select=self._on_select,
        )

        self._shortcuts: list[QtGui.QShortcut] = []
        keys = stage_shortcuts(session.catalog)
        spindle = [t.id for t in session.catalog if t.label is None]
        if spindle:
            keys.setdefault(spindle_key, spindle[0])
        for key, type_id in keys.items():
            self._add_shortcut(key, lambda type_id=type_id: self.mark(type_id))
        self._add_shortcut(QtCore.Qt.Key_Delete, self.delete_selected)
        self._add_shortcut(QtCore.Qt.Key_Left, lambda: self._apply(self.session.pan_pages, -1.0))
        self._add_shortcut(QtCore.Qt.Key_Right, lambda: self._apply(self.session.pan_pages, 1.0))
        self._add_shortcut(QtCore.Qt.Key_Minus, lambda: self._apply(self.session.zoom, 2.0))
        self._add_shortcut(QtCore.Qt.Key_Equal, lambda: self._apply(self.session.zoom, 0.5))
        self._add_shortcut("C", lambda: self._apply(self.session.cycle_channel))
        self._add_shortcut("Ctrl+S", self.session.save)

        self.spectPlot.getViewBox().sigXRangeChanged.connect(self._on_viewbox_range)
        self.refresh()

    def _add_shortcut(self, key, slot) -> None:
        self._shortcuts.append(QtGui.QShortcut(QtGui.QKeySequence(key), self, activated=slot))

    # ------------------------------------------------------------------

    def refresh(self) -> None:
        session = self.session
        view = session.view
        self.registry.sync(session.events())
        self.curve.set_timeline(session.current_timeline())
        spect = session.current_spectrogram()
        if spect is not None:
            self.image.set_slice(spect)
        self._updating_view = True
        try:
            self.spectPlot.setXRange(view.start, view.end, padding=0)
        finally:
            self._updating_view = False
        self.windowRegion.setRegion((view.start, view.end))
        level = session.table.levels[view.resolution].name
        summary = " | ".join(format_range(view.start, view.end).splitlines())
        self.statusBar().showMessage(f"{summary} | Level: {level} | Channel: {view.channel}")

    def mark(self, type_id: int) -> None:
        try:
            self.session.mark_event(type_id)
        except ScoringError as exc:
            LOG.warning("Could not mark event: %s", exc)
        self.refresh()

    def delete_selected(self) -> None:
        self.session.delete_selected()
        self.refresh()

    def _apply(self, action, *args) -> None:
        action(*args)
        self.refresh()

    # ------------------------------------------------------------------

    def _on_drag(self, event_id: int, bounds: Bounds) -> None:
        self.curve.set_timeline(self.session.drag(event_id, bounds))

    def _on_drag_finished(self, event_id: int, bounds: Bounds) -> None:
        if self.session.in_flight is None:
            self.session.drag(event_id, bounds)
        try:
            self.session.finish_drag(bounds)
        except ScoringError as exc:
            LOG.warning("Drag of event %s rejected: %s", event_id, exc)
        self.refresh()

    def _on_select(self, event_id: int) -> None:
        self.session.select(event_id)
        self.refresh()

    def _on_viewbox_range(self, viewbox, xrange) -> None:
        if self._updating_view or not xrange or len(xrange) != 2:
            return
        start, end = float(xrange[0]), float(xrange[1])
        self.session.set_window(start, end - start)
        self.refresh()


__all__ = ["ScoringWindow", "stage_shortcuts"]
