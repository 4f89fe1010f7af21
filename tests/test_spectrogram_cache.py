from __future__ import annotations

import logging
import threading
from pathlib import Path

import numpy as np
import pytest
import zarr

import mtscore.spectrogram_cache as sc
from mtscore.resolution import MultitaperParams

N_FREQS = 8

LEVELS = (
    MultitaperParams("coarse", (0.5, 35.0), (3.0, 5), (4.0, 2.0)),
    MultitaperParams("fine", (0.5, 35.0), (2.0, 3), (1.0, 0.5)),
)


class FakeEdfLoader:
    def __init__(self, path: str, *, durations=(20.0, 20.0), fs=(100.0, 50.0)):
        self.path = path
        self.duration_s = max(durations)
        self.channels = [f"ch{i}" for i in range(len(durations))]
        self.n_channels = len(durations)
        self._fs = list(fs)
        self._data = [np.zeros(int(d * f)) for d, f in zip(durations, fs)]

    def fs(self, idx: int) -> float:
        return self._fs[idx]

    def read_channel(self, idx: int) -> np.ndarray:
        return self._data[idx]


class FakeEstimator:
    """Constant power per frequency row; one time bin per window step."""

    def __init__(self):
        self.calls = []
        self.threads = set()
        self._lock = threading.Lock()

    def __call__(self, signal, fs, params):
        with self._lock:
            self.calls.append((len(signal), fs, params))
            self.threads.add(threading.get_ident())
        step = params.window_params[1]
        n_times = max(1, int(len(signal) / fs / step))
        times = (np.arange(n_times) + 0.5) * step
        freqs = np.linspace(params.frequency_range[0], params.frequency_range[1], N_FREQS)
        power = np.repeat(10.0 * (1 + np.arange(N_FREQS))[:, None], n_times, axis=1)
        return power, times, freqs


def _build(loader, estimator, **kwargs):
    store = zarr.storage.MemoryStore()
    builder = sc.SpectrogramCacheBuilder(
        loader, LEVELS, estimator, store_factory=lambda path: store, **kwargs
    )
    return builder.build()


def test_builder_writes_every_level_and_channel():
    estimator = FakeEstimator()
    cache = _build(FakeEdfLoader("night01.edf"), estimator)
    assert cache.n_levels == 2
    assert cache.level_names == ["coarse", "fine"]
    assert cache.channels == ["ch0", "ch1"]
    assert cache.duration_s == 20.0
    assert len(estimator.calls) == 4

    coarse = cache.get(0, 0)
    assert coarse.power.shape == (N_FREQS, 10)
    assert coarse.power.dtype == np.float32
    np.testing.assert_allclose(coarse.power[:, 0], 10.0 * np.log10(10.0 * (1 + np.arange(N_FREQS))), rtol=1e-6)
    fine = cache.get(1, 1)
    assert fine.power.shape == (N_FREQS, 40)


def test_builder_clips_frequency_range_to_nyquist():
    estimator = FakeEstimator()
    cache = _build(FakeEdfLoader("night01.edf"), estimator)
    clipped = {(fs, params.frequency_range) for _, fs, params in estimator.calls}
    assert (50.0, (0.5, 25.0)) in clipped
    assert (100.0, (0.5, 35.0)) in clipped
    _, freqs = cache.axes(0)
    assert freqs[-1] == pytest.approx(35.0)


def test_builder_skips_channels_with_other_shape(caplog):
    loader = FakeEdfLoader("night01.edf", durations=(20.0, 20.0, 10.0), fs=(100.0, 100.0, 100.0))
    with caplog.at_level(logging.WARNING, logger="mtscore.spectrogram_cache"):
        cache = _build(loader, FakeEstimator())
    assert cache.channels == ["ch0", "ch1"]
    assert "ch2" in caplog.text
    with pytest.raises(IndexError):
        cache.get(0, 2)


def test_parallel_build_matches_serial():
    serial = _build(FakeEdfLoader("night01.edf"), FakeEstimator())
    estimator = FakeEstimator()
    parallel = _build(FakeEdfLoader("night01.edf"), estimator, parallel=True, max_workers=2)
    assert len(estimator.calls) == 4
    for level in range(2):
        for channel in range(2):
            np.testing.assert_array_equal(serial.get(level, channel).power, parallel.get(level, channel).power)


def test_progress_and_raw_power():
    progress = []
    cache = _build(
        FakeEdfLoader("night01.edf"),
        FakeEstimator(),
        to_db=False,
        progress_callback=lambda done, total: progress.append((done, total)),
    )
    assert progress == [(2, 4), (4, 4)]
    assert cache.get(0, 0).power[0, 0] == pytest.approx(10.0)


def test_builder_writes_directory_store(tmp_path: Path):
    out = tmp_path / "processed" / "night01.spect.zarr"
    builder = sc.SpectrogramCacheBuilder(FakeEdfLoader("night01.edf"), LEVELS, FakeEstimator(), out_path=out)
    builder.build()
    reopened = sc.SpectrogramCache.open(out)
    assert reopened.channels == ["ch0", "ch1"]
    assert reopened.get(1, 0).power.shape == (N_FREQS, 40)


def test_resolve_output_path():
    assert sc.resolve_output_path("data/night01.edf") == Path("processed/night01.spect.zarr")
    assert sc.resolve_output_path("x.edf", "custom.zarr") == Path("custom.zarr")


def _small_cache(**kwargs):
    times = np.array([1.0, 3.0, 5.0, 7.0])
    freqs = np.array([1.0, 2.0, 4.0, 8.0, 16.0])
    cube = np.arange(2 * 5 * 4, dtype=np.float32).reshape(2, 5, 4)
    return sc.SpectrogramCache.from_arrays(
        [(times, freqs, cube)], channels=["C3", "C4"], duration_s=8.0, level_names=["only"], **kwargs
    )


def test_slices_are_read_only_and_cached():
    cache = _small_cache()
    first = cache.get(0, 1)
    assert cache.get(0, 1) is first
    assert first.power[0, 0] == 20.0
    with pytest.raises(ValueError):
        first.power[0, 0] = 1.0
    with pytest.raises(IndexError):
        cache.get(1, 0)


def test_spectrum_and_region_extraction():
    cache = _small_cache()
    freqs, spectrum = cache.spectrum_at(0, 0, 4.9)
    assert freqs.tolist() == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert spectrum.tolist() == [2.0, 6.0, 10.0, 14.0, 18.0]
    region = cache.extract_region(0, 0, 2.0, 6.0, 2.0, 8.0)
    assert region.times.tolist() == [3.0, 5.0]
    assert region.freqs.tolist() == [2.0, 4.0, 8.0]
    assert region.power.tolist() == [[5.0, 6.0], [9.0, 10.0], [13.0, 14.0]]


def test_power_to_db():
    out = sc.power_to_db(np.array([1.0, 10.0, 100.0, 0.0]))
    assert out[:3].tolist() == pytest.approx([0.0, 10.0, 20.0])
    assert out[3] == -np.inf
