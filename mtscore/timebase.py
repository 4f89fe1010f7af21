# mtscore/timebase.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Tuple
import numpy as np

# (window range upper bound in seconds, tick step in seconds)
_TICK_LADDER: Tuple[Tuple[float, float], ...] = (
    (5.0, 0.5),
    (30.0, 1.0),
    (120.0, 5.0),
    (5 * 60.0, 30.0),
    (10 * 60.0, 60.0),
    (30 * 60.0, 5 * 60.0),
    (2 * 3600.0, 10 * 60.0),
    (5 * 3600.0, 15 * 60.0),
)


@dataclass(frozen=True)
class Timebase:
    """
    Time keeper for one recording being scored.
    - t=0.0 is the recording start; event times are seconds from it.
    - Supports sec <-> sample index for any channel fs.
    - Supports absolute clock time for labels.
    """
    start_dt: datetime
    duration_s: float

    def to_datetime(self, t_s: float) -> datetime:
        return self.start_dt + timedelta(seconds=float(t_s))

    @staticmethod
    def sec_to_idx(t0_s: float, t1_s: float, fs: float) -> Tuple[int, int]:
        """
        Convert [t0, t1) seconds to integer [start_idx, n_samples] at sampling rate fs.
        Clamps negative t0 to 0; returns n=0 if window is empty.
        """
        if fs <= 0:
            raise ValueError("fs must be positive")
        start = max(0.0, t0_s)
        end = max(start, t1_s)
        s0 = int(np.floor(start * fs))
        n = int(max(0.0, np.ceil((end - start) * fs)))
        return s0, n

    @staticmethod
    def time_vector(s0: int, n: int, fs: float) -> np.ndarray:
        if n <= 0:
            return np.zeros(0, dtype=float)
        return (s0 + np.arange(n, dtype=np.int64)) / float(fs)

    def clamp_window(self, t0_s: float, t1_s: float) -> Tuple[float, float]:
        """
        Clamp [t0, t1] to recording bounds [0, duration_s].
        Ensures t1 >= t0 after clamping.
        """
        t0 = max(0.0, min(t0_s, self.duration_s))
        t1 = max(t0, min(t1_s, self.duration_s))
        return t0, t1


def tick_step(range_s: float) -> float:
    """Spacing between time ticks for a visible range of ``range_s`` seconds."""
    for upper, step in _TICK_LADDER:
        if range_s < upper:
            return step
    return 3600.0


def format_clock(seconds: float, *, millis: bool = False) -> str:
    """Format seconds-from-start as HH:MM:SS (or HH:MM:SS:FFF)."""
    total_ms = int(round(float(seconds) * 1000.0))
    sign = "-" if total_ms < 0 else ""
    total_ms = abs(total_ms)
    secs, ms = divmod(total_ms, 1000)
    h, r = divmod(secs, 3600)
    m, s = divmod(r, 60)
    if millis:
        return f"{sign}{h:02d}:{m:02d}:{s:02d}:{ms:03d}"
    return f"{sign}{h:02d}:{m:02d}:{s:02d}"


def format_range(t0_s: float, t1_s: float) -> str:
    """Two-line window summary: visible range and window size."""
    return (
        f"Time Range: {format_clock(t0_s)} - {format_clock(t1_s)}\n"
        f"Window Size: {format_clock(t1_s - t0_s)}"
    )
