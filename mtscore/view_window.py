"""View window (start/duration) handling and the per-session view state."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

from mtscore.resolution import ResolutionSelector


@dataclass(frozen=True)
class WindowLimits:
    duration_min: float = 10.0
    duration_max: float = math.inf


def clamp_window(start: float, duration: float, *, total: float, limits: WindowLimits) -> tuple[float, float]:
    duration_clamped = max(limits.duration_min, min(limits.duration_max, total, duration))
    start_clamped = max(0.0, min(start, max(0.0, total - duration_clamped)))
    # adjust duration if recording shorter than min window
    if total < limits.duration_min:
        duration_clamped = total
        start_clamped = 0.0
    return start_clamped, duration_clamped


def pan_window(start: float, duration: float, delta: float, *, total: float, limits: WindowLimits) -> tuple[float, float]:
    return clamp_window(start + delta, duration, total=total, limits=limits)


def zoom_window(start: float, duration: float, factor: float, *, anchor: float, total: float, limits: WindowLimits) -> tuple[float, float]:
    if factor <= 0:
        raise ValueError("factor must be positive")
    duration_new = duration * factor
    duration_new = max(limits.duration_min, min(limits.duration_max, total, duration_new))

    # keep anchor position (relative 0..1) within window
    rel = 0.0
    if duration > 0:
        rel = (anchor - start) / duration
    rel = min(1.0, max(0.0, rel))

    start_new = anchor - rel * duration_new
    return clamp_window(start_new, duration_new, total=total, limits=limits)


@dataclass
class ViewState:
    """Everything about what is on screen, kept in one place.

    The window starts out covering the whole recording. Changing its width
    asks the resolution selector whether a different spectrogram level
    should be shown; ``resolution_changed`` records the last answer.
    """

    total: float
    n_channels: int
    selector: ResolutionSelector
    limits: WindowLimits = field(default_factory=WindowLimits)
    start: float = 0.0
    duration: Optional[float] = None
    channel: int = 0
    resolution_changed: bool = False

    def __post_init__(self) -> None:
        if self.total <= 0:
            raise ValueError("recording duration must be positive")
        if self.n_channels <= 0:
            raise ValueError("at least one channel is required")
        duration = self.total if self.duration is None else self.duration
        self.start, self.duration = clamp_window(self.start, duration, total=self.total, limits=self.limits)
        self.selector.update(self.duration)

    @property
    def end(self) -> float:
        return self.start + self.duration

    @property
    def center(self) -> float:
        return self.start + self.duration / 2.0

    @property
    def resolution(self) -> int:
        return self.selector.current

    def set_window(self, start: float, duration: float) -> bool:
        self.start, self.duration = clamp_window(start, duration, total=self.total, limits=self.limits)
        self.resolution_changed = self.selector.update(self.duration)
        return self.resolution_changed

    def pan(self, delta: float) -> None:
        self.start, self.duration = pan_window(
            self.start, self.duration, delta, total=self.total, limits=self.limits
        )
        self.resolution_changed = False

    def pan_pages(self, pages: float) -> None:
        """Pan by whole screen widths (arrow keys / scroll wheel)."""
        self.pan(pages * self.duration)

    def zoom(self, factor: float, *, anchor: Optional[float] = None) -> bool:
        anchor = self.center if anchor is None else anchor
        start, duration = zoom_window(
            self.start, self.duration, factor, anchor=anchor, total=self.total, limits=self.limits
        )
        return self.set_window(start, duration)

    def cycle_channel(self, step: int = 1) -> int:
        """Move to the next/previous channel, wrapping around."""
        self.channel = (self.channel + step) % self.n_channels
        return self.channel

    def set_channel(self, channel: int) -> bool:
        if not 0 <= channel < self.n_channels:
            return False
        self.channel = channel
        return True
