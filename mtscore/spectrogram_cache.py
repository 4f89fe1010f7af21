# mtscore/spectrogram_cache.py
"""Multi-resolution spectrogram store.

Each resolution level is written once per recording into a zarr group::

    attrs: schema_version, created_at, channels, duration_s, levels
    levels/<i>/times      (n_times,)
    levels/<i>/freqs      (n_freqs,)
    levels/<i>/power      (n_channels, n_freqs, n_times) float32, dB by default

The scorer only indexes into it; spectra are computed by an external
estimator handed to :class:`SpectrogramCacheBuilder`.
"""
from __future__ import annotations

from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import logging
from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple

import numpy as np
import zarr

from mtscore.edf_loader import EdfLoader
from mtscore.resolution import MultitaperParams

LOG = logging.getLogger(__name__)

DEFAULT_PROCESSED_DIR = Path("processed")

# (signal, fs, params) -> (power[freq, time], times, freqs)
Estimator = Callable[[np.ndarray, float, MultitaperParams], Tuple[np.ndarray, np.ndarray, np.ndarray]]


def resolve_output_path(recording_path: str | Path, out_path: Optional[str | Path] = None) -> Path:
    if out_path is not None:
        return Path(out_path)
    return DEFAULT_PROCESSED_DIR / f"{Path(recording_path).stem}.spect.zarr"


def power_to_db(power: np.ndarray) -> np.ndarray:
    power = np.asarray(power, dtype=np.float64)
    with np.errstate(divide="ignore"):
        return (10.0 * np.log10(power)).astype(np.float32)


@dataclass(frozen=True)
class SpectrogramSlice:
    """One channel at one resolution: power[freq, time] in dB plus its axes."""

    power: np.ndarray
    times: np.ndarray
    freqs: np.ndarray

    def spectrum_at(self, t: float) -> np.ndarray:
        """Power spectrum of the time bin nearest ``t``."""
        if self.times.size == 0:
            return np.zeros(0, dtype=np.float32)
        idx = int(np.argmin(np.abs(self.times - t)))
        return self.power[:, idx]

    def region(self, t0: float, t1: float, f0: float, f1: float) -> "SpectrogramSlice":
        """Sub-block inside the time/frequency rectangle (inclusive)."""
        t_mask = (self.times >= t0) & (self.times <= t1)
        f_mask = (self.freqs >= f0) & (self.freqs <= f1)
        return SpectrogramSlice(
            self.power[np.ix_(f_mask, t_mask)],
            self.times[t_mask],
            self.freqs[f_mask],
        )


def _read_only(arr: np.ndarray) -> np.ndarray:
    arr = np.asarray(arr)
    arr.setflags(write=False)
    return arr


class SpectrogramCache:
    """Read-side access to precomputed spectrograms stored in a zarr group.

    Layout::

        attrs: channels, duration_s, levels
        levels/<i>/times   (n_times,)
        levels/<i>/freqs   (n_freqs,)
        levels/<i>/power   (n_channels, n_freqs, n_times) dB
    """

    def __init__(self, group: zarr.Group, *, max_slices: int = 8):
        self._root = group
        self.channels = list(group.attrs.get("channels", []))
        self.duration_s = float(group.attrs.get("duration_s", 0.0))
        self.level_names = list(group.attrs.get("levels", []))
        self._levels = group["levels"]
        self.n_levels = len(self.level_names)
        self._max_slices = max(1, int(max_slices))
        self._slices: OrderedDict[tuple[int, int], SpectrogramSlice] = OrderedDict()
        self._axes: dict[int, tuple[np.ndarray, np.ndarray]] = {}

    @classmethod
    def open(cls, path: str | Path, **kwargs) -> "SpectrogramCache":
        return cls(zarr.open_group(str(path), mode="r"), **kwargs)

    @classmethod
    def from_arrays(
        cls,
        levels: Sequence[Tuple[np.ndarray, np.ndarray, np.ndarray]],
        *,
        channels: Sequence[str],
        duration_s: float,
        level_names: Sequence[str] | None = None,
        store=None,
    ) -> "SpectrogramCache":
        """Build a cache from ``(times, freqs, power[channel, freq, time])`` triples."""
        group = zarr.open_group(store=store if store is not None else zarr.storage.MemoryStore(), mode="w")
        names = list(level_names) if level_names is not None else [f"level {i}" for i in range(len(levels))]
        _write_root_attrs(group, channels, duration_s, names)
        levels_group = group.create_group("levels")
        for idx, (times, freqs, cube) in enumerate(levels):
            cube = np.asarray(cube, dtype=np.float32)
            level = _create_level(levels_group, idx, names[idx], np.asarray(times), np.asarray(freqs), cube.shape[0])
            level["power"][...] = cube
        return cls(group)

    # ------------------------------------------------------------------

    @property
    def n_channels(self) -> int:
        return len(self.channels)

    def axes(self, level: int) -> tuple[np.ndarray, np.ndarray]:
        """(times, freqs) of ``level``."""
        self._check_level(level)
        cached = self._axes.get(level)
        if cached is None:
            group = self._levels[str(level)]
            cached = (_read_only(group["times"][:]), _read_only(group["freqs"][:]))
            self._axes[level] = cached
        return cached

    def get(self, level: int, channel: int) -> SpectrogramSlice:
        self._check_level(level)
        if not 0 <= channel < self.n_channels:
            raise IndexError(f"channel {channel} out of range (0..{self.n_channels - 1})")
        key = (level, channel)
        hit = self._slices.get(key)
        if hit is not None:
            self._slices.move_to_end(key)
            return hit
        times, freqs = self.axes(level)
        power = _read_only(self._levels[str(level)]["power"][channel])
        item = SpectrogramSlice(power, times, freqs)
        self._slices[key] = item
        while len(self._slices) > self._max_slices:
            self._slices.popitem(last=False)
        return item

    def spectrum_at(self, level: int, channel: int, t: float) -> tuple[np.ndarray, np.ndarray]:
        item = self.get(level, channel)
        return item.freqs, item.spectrum_at(t)

    def extract_region(
        self, level: int, channel: int, t0: float, t1: float, f0: float, f1: float
    ) -> SpectrogramSlice:
        return self.get(level, channel).region(t0, t1, f0, f1)

    def _check_level(self, level: int) -> None:
        if not 0 <= level < self.n_levels:
            raise IndexError(f"resolution level {level} out of range (0..{self.n_levels - 1})")


def _write_root_attrs(group: zarr.Group, channels: Sequence[str], duration_s: float, names: Sequence[str]) -> None:
    attrs = group.attrs
    attrs["schema_version"] = "1.0"
    attrs["created_at"] = datetime.now(timezone.utc).isoformat()
    attrs["channels"] = list(channels)
    attrs["duration_s"] = float(duration_s)
    attrs["levels"] = list(names)


def _create_level(
    levels_group: zarr.Group, idx: int, name: str, times: np.ndarray, freqs: np.ndarray, n_channels: int
) -> zarr.Group:
    group = levels_group.create_group(str(idx))
    group.attrs["name"] = name
    times_arr = group.create_dataset("times", shape=times.shape, dtype="float64", overwrite=True)
    times_arr[...] = times
    freqs_arr = group.create_dataset("freqs", shape=freqs.shape, dtype="float64", overwrite=True)
    freqs_arr[...] = freqs
    group.create_dataset(
        "power",
        shape=(n_channels, freqs.size, times.size),
        chunks=(1, max(1, freqs.size), max(1, times.size)),
        dtype="float32",
        overwrite=True,
    )
    return group


@dataclass
class SpectrogramCacheBuilder:
    """Compute every resolution level for every channel and store it.

    The estimator is external. ``parallel`` is an explicit capability flag:
    when set, channels of a level are estimated concurrently in a thread pool.
    Channels whose spectrogram shape differs from the first channel's (a
    different recording length, say) are skipped for all levels.
    """

    loader: EdfLoader
    levels: Sequence[MultitaperParams]
    estimator: Estimator
    out_path: Optional[str | Path] = None
    parallel: bool = False
    max_workers: Optional[int] = None
    to_db: bool = True
    store_factory: Optional[Callable[[Path], object]] = None
    progress_callback: Optional[Callable[[int, int], None]] = None

    def build(self) -> SpectrogramCache:
        loader = self.loader
        output_path = resolve_output_path(loader.path, self.out_path)
        if self.store_factory is not None:
            store = self.store_factory(output_path)
        else:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            store = str(output_path)

        n_channels = loader.n_channels
        signals = [loader.read_channel(i) for i in range(n_channels)]
        total = max(1, len(self.levels) * n_channels)
        done = 0

        results = []
        skipped: set[int] = set()
        for params in self.levels:
            outputs = self._estimate_level(signals, params)
            reference = outputs[0][0].shape
            for ch, (power, _, _) in enumerate(outputs):
                if power.shape != reference:
                    skipped.add(ch)
            results.append(outputs)
            done += n_channels
            self._report_progress(done, total)

        kept = [ch for ch in range(n_channels) if ch not in skipped]
        if skipped:
            LOG.warning(
                "Skipped channels with different duration: %s",
                ", ".join(loader.channels[ch] for ch in sorted(skipped)),
            )

        group = zarr.open_group(store=store, mode="w")
        _write_root_attrs(
            group, [loader.channels[ch] for ch in kept], loader.duration_s, [p.name for p in self.levels]
        )
        levels_group = group.create_group("levels")
        for idx, (params, outputs) in enumerate(zip(self.levels, results)):
            _, times, freqs = outputs[0]
            level = _create_level(levels_group, idx, params.name, np.asarray(times), np.asarray(freqs), len(kept))
            level.attrs["params"] = asdict(params)
            power_arr = level["power"]
            for out_idx, ch in enumerate(kept):
                power = outputs[ch][0]
                power_arr[out_idx] = power_to_db(power) if self.to_db else np.asarray(power, dtype=np.float32)
        LOG.info("Spectrogram cache written to %s (%d levels, %d channels)", output_path, len(self.levels), len(kept))
        return SpectrogramCache(group)

    def _estimate_level(self, signals: Sequence[np.ndarray], params: MultitaperParams):
        loader = self.loader

        def run(ch: int):
            fs = loader.fs(ch)
            power, times, freqs = self.estimator(signals[ch], fs, params.clipped(fs))
            return np.asarray(power), np.asarray(times), np.asarray(freqs)

        channels = range(len(signals))
        if self.parallel and len(signals) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                return list(pool.map(run, channels))
        return [run(ch) for ch in channels]

    def _report_progress(self, done: int, total: int) -> None:
        if self.progress_callback:
            self.progress_callback(done, total)


__all__ = [
    "DEFAULT_PROCESSED_DIR",
    "Estimator",
    "SpectrogramCache",
    "SpectrogramCacheBuilder",
    "SpectrogramSlice",
    "power_to_db",
    "resolve_output_path",
]
