"""Headless checks for the scoring window wiring."""

from __future__ import annotations

import os
from pathlib import Path

import numpy as np
import pytest

try:  # pragma: no cover - environment-dependent import guard
    from PySide6 import QtWidgets
    import pyqtgraph as pg
except ImportError as exc:  # pragma: no cover - skip when Qt dependencies missing
    pytest.skip(f"PySide6 import failed: {exc}", allow_module_level=True)

from mtscore.catalog import ARTIFACT_ID, N1_ID, N2_ID, N3_ID, NREM_ID, REM_ID, SPINDLE_ID, WAKE_ID, EventCatalog
from mtscore.hypnogram import InFlightMove
from mtscore.session import ScoringSession
from mtscore.spectrogram_cache import SpectrogramCache
from ui.scoring_window import ScoringWindow, stage_shortcuts

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

NIGHT = 3600.0


@pytest.fixture(scope="session")
def qt_app():
    app = QtWidgets.QApplication.instance()
    if app is None:
        app = QtWidgets.QApplication([])
    yield app


@pytest.fixture
def window(qt_app, tmp_path: Path):
    times = np.array([10.0, 20.0, 30.0])
    freqs = np.array([1.0, 2.0])
    levels = [(times, freqs, np.full((2, 2, 3), float(i), dtype=np.float32)) for i in range(3)]
    cache = SpectrogramCache.from_arrays(levels, channels=["C3", "C4"], duration_s=NIGHT)
    session = ScoringSession.open(tmp_path / "record.json", EventCatalog(5), NIGHT, n_channels=2, cache=cache)
    w = ScoringWindow(session)
    yield w
    w.close()


def test_stage_shortcuts():
    assert stage_shortcuts(EventCatalog(5)) == {
        "W": WAKE_ID,
        "R": REM_ID,
        "1": N1_ID,
        "2": N2_ID,
        "3": N3_ID,
        "A": ARTIFACT_ID,
    }
    assert stage_shortcuts(EventCatalog(3)) == {"W": WAKE_ID, "R": REM_ID, "N": NREM_ID, "A": ARTIFACT_ID}


def test_window_shows_session(window):
    session = window.session
    assert len(window.registry) == 1
    assert window.curve.y_data.tolist() == [WAKE_ID]
    assert window.image.levels is not None
    assert "Level: stage" in window.statusBar().currentMessage()
    assert "Channel: 0" in window.statusBar().currentMessage()
    assert len(window._shortcuts) == 14
    assert session.view.duration == NIGHT


def test_mark_and_delete(window):
    window.mark(N2_ID)
    n2 = window.session.store.selected
    assert n2.type_id == N2_ID
    assert n2.id in window.registry
    assert N2_ID in window.curve.y_data.tolist()

    window.mark(SPINDLE_ID)
    spindle = window.session.store.selected
    assert isinstance(window.registry.item_for(spindle.id), pg.LinearRegionItem)

    window.delete_selected()
    assert spindle.id not in window.registry
    assert len(window.session.store) == 2


def test_drag_previews_then_commits(window):
    window.mark(REM_ID)
    rem = window.session.store.selected
    window.registry.item_for(rem.id).setValue(600.0)
    assert window.session.in_flight == InFlightMove(rem.id, 600.0)
    assert 600.0 in window.curve.x_data.tolist()
    assert window.session.store.get(rem.id).start == rem.start

    window._on_drag_finished(rem.id, 600.0)
    assert window.session.in_flight is None
    assert window.session.store.get(rem.id).start == 600.0
    assert window.session.timeline().stage_at(700.0) == REM_ID


def test_rejected_drag_keeps_event(window):
    window.mark(ARTIFACT_ID)
    art = window.session.store.selected
    window._on_drag_finished(art.id, (500.0, 400.0))
    assert window.session.store.get(art.id).bounds == art.bounds
    assert window.registry.item_for(art.id).getRegion() == art.bounds


def test_view_range_follows_plot(window):
    window._on_viewbox_range(None, (100.0, 300.0))
    view = window.session.view
    assert (view.start, view.duration) == (100.0, 200.0)
    assert view.resolution == 2
    assert window.image.levels == (2.0, 3.0)
    assert "Level: microevent" in window.statusBar().currentMessage()
    assert window.windowRegion.getRegion() == (100.0, 300.0)
