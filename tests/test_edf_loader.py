from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace

import numpy as np
import pytest

import mtscore.edf_loader as edf_module


class FakeEdfReader:
    def __init__(self, path: str):  # noqa: D401 - mimic pyedflib signature
        self.path = path
        self.file_duration = 5.0
        self._start = datetime(2024, 1, 1, 0, 0, 0)
        self.signals_in_file = 3
        self._labels = ["C3-M2", "O1-M2", "EDF Annotations"]
        self._fs = [100.0, 50.0, 0.0]
        self._data = [
            np.arange(int(self._fs[0] * self.file_duration), dtype=np.float64) / self._fs[0],
            np.linspace(-1.0, 1.0, int(self._fs[1] * self.file_duration), endpoint=False, dtype=np.float64),
            np.zeros(0, dtype=np.float64),
        ]
        self._units = ["uV", "uV", ""]
        self._closed = False
        self.annotations = ([0.0, 30.0], [30.0, 30.0], ["Sleep stage W", "Sleep stage 2"])

    # --- pyedflib API we rely on -------------------------------------------------
    def getStartdatetime(self):
        return self._start

    def getSignalLabels(self):
        return list(self._labels)

    def getSampleFrequency(self, idx: int) -> float:
        return self._fs[idx]

    def getNSamples(self):
        return [arr.size for arr in self._data]

    def getPhysicalDimension(self, idx: int) -> str:
        return self._units[idx]

    def readSignal(self, idx: int, start: int = 0, n: int | None = None):
        arr = self._data[idx]
        if start >= arr.size:
            return np.zeros(0, dtype=np.float64)
        end = arr.size if n is None else min(start + n, arr.size)
        return arr[start:end]

    def readAnnotations(self):
        if isinstance(self.annotations, Exception):
            raise self.annotations
        return self.annotations

    def close(self):
        self._closed = True

    @property
    def closed(self):
        return self._closed


@pytest.fixture(autouse=True)
def patch_pyedflib(monkeypatch):
    dummy_module = SimpleNamespace(EdfReader=FakeEdfReader)
    monkeypatch.setattr(edf_module, "pyedflib", dummy_module)
    yield


def test_loader_metadata_and_timebase():
    loader = edf_module.EdfLoader("night01.edf")
    try:
        assert loader.duration_s == pytest.approx(5.0)
        assert loader.start_dt == datetime(2024, 1, 1, 0, 0, 0)
        assert loader.n_channels == 2
        assert loader.channels == ["C3-M2", "O1-M2"]
        assert loader.fs(0) == 100.0
        assert loader.name == "night01"
        assert loader.timebase.duration_s == 5.0
        assert loader.info[1].raw_index == 1
        assert loader.info[0].unit == "uV"
    finally:
        loader.close()


def test_channel_selection_keeps_requested_order():
    loader = edf_module.EdfLoader("night01.edf", channels=["O1-M2", "C3-M2"])
    try:
        assert loader.channels == ["O1-M2", "C3-M2"]
        assert loader.fs(0) == 50.0
    finally:
        loader.close()


def test_missing_channel_raises():
    with pytest.raises(KeyError):
        edf_module.EdfLoader("night01.edf", channels=["Fz"])


def test_read_window_returns_time_vector():
    with edf_module.EdfLoader("night01.edf") as loader:
        t, x = loader.read(0, 1.0, 2.0)
    assert t[0] == pytest.approx(1.0)
    assert t[-1] < 2.0
    np.testing.assert_allclose(x[:3], np.array([1.0, 1.01, 1.02]), atol=1e-9)


def test_read_clamps_to_duration():
    with edf_module.EdfLoader("night01.edf") as loader:
        t, x = loader.read(1, 4.8, 6.0)
        assert x.size == 10
        t_after, x_after = loader.read(0, 6.0, 7.0)
    assert t.size == x.size
    assert t_after.size == 0 and x_after.size == 0


def test_read_channel_returns_whole_signal():
    loader = edf_module.EdfLoader("night01.edf")
    try:
        x = loader.read_channel(1)
    finally:
        loader.close()
    assert x.size == 250
    assert x.dtype == np.float64


def test_read_annotations():
    loader = edf_module.EdfLoader("night01.edf")
    try:
        onsets, durations, texts = loader.read_annotations()
        assert texts == ["Sleep stage W", "Sleep stage 2"]
        loader._r.annotations = OSError("no annotations signal")
        assert loader.read_annotations() == ([], [], [])
    finally:
        loader.close()
    assert loader._r.closed
