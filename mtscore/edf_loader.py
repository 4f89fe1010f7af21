# mtscore/edf_loader.py
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Sequence, Tuple
import logging
import threading
import numpy as np
import pyedflib

from mtscore.timebase import Timebase

LOG = logging.getLogger(__name__)


@dataclass
class ChannelInfo:
    name: str
    fs: float
    n_samples: int
    unit: str
    raw_index: int


class EdfLoader:
    """Header and signal access for the recording being scored.

    Only channels with a positive sampling rate are exposed; EDF+ annotation
    signals are skipped. ``channels`` optionally restricts loading to the
    named labels, in the given order.
    """

    def __init__(self, path: str | Path, *, channels: Sequence[str] | None = None):
        self.path = str(path)
        self._r = pyedflib.EdfReader(self.path)
        self._lock = threading.RLock()
        self.duration_s = float(self._r.file_duration)
        self.start_dt: datetime = self._r.getStartdatetime()
        self.info = self._build_channel_metadata(channels)
        self.channels = [info.name for info in self.info]
        self.n_channels = len(self.info)
        self.timebase = Timebase(self.start_dt, self.duration_s)
        LOG.debug("Opened %s: %d channels, %.1f s", self.path, self.n_channels, self.duration_s)

    @property
    def name(self) -> str:
        return Path(self.path).stem

    def _build_channel_metadata(self, wanted: Sequence[str] | None) -> List[ChannelInfo]:
        labels = self._r.getSignalLabels()
        ns = self._r.getNSamples()
        info_list: List[ChannelInfo] = []
        for raw_idx in range(self._r.signals_in_file):
            fs = float(self._r.getSampleFrequency(raw_idx))
            n_samples = int(ns[raw_idx])
            if fs <= 0 or n_samples <= 0:
                continue
            info_list.append(
                ChannelInfo(labels[raw_idx], fs, n_samples, self._r.getPhysicalDimension(raw_idx), raw_idx)
            )
        if wanted is None:
            return info_list
        by_name = {info.name: info for info in info_list}
        missing = [name for name in wanted if name not in by_name]
        if missing:
            raise KeyError(f"channels not in {self.path}: {', '.join(missing)}")
        return [by_name[name] for name in wanted]

    def fs(self, i: int) -> float:
        return self.info[i].fs

    def read(self, i: int, t0: float, t1: float) -> Tuple[np.ndarray, np.ndarray]:
        info = self.info[i]
        with self._lock:
            t0_c, t1_c = self.timebase.clamp_window(t0, t1)
            s0, n = Timebase.sec_to_idx(t0_c, t1_c, info.fs)
            n = min(n, max(0, info.n_samples - s0))
            if n <= 0:
                return np.zeros(0, dtype=float), np.zeros(0, dtype=np.float64)
            x = np.asarray(self._r.readSignal(info.raw_index, start=s0, n=n), dtype=np.float64)
        return Timebase.time_vector(s0, x.size, info.fs), x

    def read_channel(self, i: int) -> np.ndarray:
        """Whole channel, as handed to spectrogram estimators and detectors."""
        info = self.info[i]
        with self._lock:
            return np.asarray(self._r.readSignal(info.raw_index), dtype=np.float64)

    def read_annotations(self):
        with self._lock:
            try:
                return self._r.readAnnotations()
            except Exception as exc:  # pyedflib raises plain OSError/ValueError variants
                LOG.debug("No EDF+ annotations in %s: %s", self.path, exc)
                return ([], [], [])

    def close(self):
        with self._lock:
            self._r.close()

    def __enter__(self) -> "EdfLoader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
