"""Pick which precomputed spectrogram resolution to show for a window width."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from mtscore.errors import NoMatchingLevelError

LOG = logging.getLogger(__name__)

DEFAULT_THRESHOLDS: Tuple[float, ...] = (math.inf, 1.5 * 3600, 5 * 60, -math.inf)


@dataclass(frozen=True)
class MultitaperParams:
    """Estimation settings for one resolution level.

    These are handed to the external spectrogram estimator unchanged except
    for the upper frequency, which is clipped to Nyquist per channel.
    """

    name: str
    frequency_range: Tuple[float, float] = (0.5, 35.0)
    taper_params: Tuple[float, int] = (15.0, 29)
    window_params: Tuple[float, float] = (30.0, 15.0)
    min_nfft: Optional[int] = None
    detrend: str = "linear"
    weighting: str = "unity"

    def clipped(self, fs: float) -> "MultitaperParams":
        low, high = self.frequency_range
        nyquist = float(fs) / 2.0
        if high <= nyquist:
            return self
        return MultitaperParams(
            self.name,
            (low, nyquist),
            self.taper_params,
            self.window_params,
            self.min_nfft,
            self.detrend,
            self.weighting,
        )


DEFAULT_LEVELS: Tuple[MultitaperParams, ...] = (
    MultitaperParams("full night", (0.5, 35.0), (15.0, 29), (30.0, 15.0), None, "linear", "unity"),
    MultitaperParams("stage", (0.5, 35.0), (3.0, 5), (6.0, 1.0), None, "linear", "unity"),
    MultitaperParams("microevent", (0.5, 35.0), (2.0, 3), (1.0, 0.1), 2 ** 10, "constant", "unity"),
)


def validate_thresholds(thresholds: Sequence[float]) -> Tuple[float, ...]:
    """Check a threshold table once at startup and return it as a tuple.

    The table must start at +inf, end at -inf and decrease strictly so every
    finite width falls into exactly one level.
    """
    try:
        values = tuple(float(v) for v in thresholds)
    except (TypeError, ValueError) as exc:
        raise NoMatchingLevelError(f"thresholds must be numeric: {thresholds!r}") from exc
    if len(values) < 2:
        raise NoMatchingLevelError("threshold table needs at least the two sentinels")
    if values[0] != math.inf or values[-1] != -math.inf:
        raise NoMatchingLevelError("threshold table must start at +inf and end at -inf")
    for upper, lower in zip(values[:-1], values[1:]):
        if not upper > lower:
            raise NoMatchingLevelError(f"thresholds not strictly decreasing at {upper} -> {lower}")
    return values


def _check_width(window_width: float) -> float:
    width = float(window_width)
    if not math.isfinite(width) or width <= 0:
        raise ValueError(f"window width must be finite and positive, got {window_width!r}")
    return width


def select_level(window_width: float, thresholds: Sequence[float]) -> int:
    """Index ``i`` such that ``thresholds[i] > width >= thresholds[i + 1]``.

    ``thresholds`` is assumed validated; a width sitting on a boundary goes to
    the coarser level at every boundary, so with ``(inf, 5400, 300, -inf)``
    both 5400 and 300 stay on the wider level (0 and 1). This differs from the
    legacy scorer's ``upper >= width > lower`` rule, which sent 5400 to
    level 1 and 300 to level 2.
    """
    width = _check_width(window_width)
    for idx in range(len(thresholds) - 1):
        if thresholds[idx] > width >= thresholds[idx + 1]:
            return idx
    raise NoMatchingLevelError(f"no level matches window width {width}")


class ResolutionTable:
    """Resolution levels paired with their validated threshold table."""

    def __init__(
        self,
        levels: Sequence[MultitaperParams] = DEFAULT_LEVELS,
        thresholds: Sequence[float] = DEFAULT_THRESHOLDS,
    ):
        self.thresholds = validate_thresholds(thresholds)
        self.levels = tuple(levels)
        if len(self.levels) != len(self.thresholds) - 1:
            raise NoMatchingLevelError(
                f"{len(self.levels)} levels need {len(self.levels) + 1} thresholds, "
                f"got {len(self.thresholds)}"
            )

    def __len__(self) -> int:
        return len(self.levels)

    def select(self, window_width: float) -> int:
        return select_level(window_width, self.thresholds)

    def bounds(self, level: int) -> Tuple[float, float]:
        """(upper, lower) width thresholds of ``level``."""
        return self.thresholds[level], self.thresholds[level + 1]


class ResolutionSelector:
    """Tracks the displayed level as the window width changes.

    ``dead_band`` is a fraction of the crossed threshold the width must move
    past before switching away from the current level. Zero reproduces the
    bare table lookup.
    """

    def __init__(self, table: ResolutionTable, *, dead_band: float = 0.0, initial: int = 0):
        if dead_band < 0:
            raise ValueError("dead_band must be non-negative")
        if not 0 <= initial < len(table):
            raise ValueError(f"initial level {initial} out of range")
        self.table = table
        self.dead_band = float(dead_band)
        self.current = int(initial)

    def update(self, window_width: float) -> bool:
        """Select the level for ``window_width``; True when it changed."""
        candidate = self.table.select(window_width)
        if candidate == self.current:
            return False
        if self.dead_band > 0 and abs(candidate - self.current) == 1:
            upper, lower = self.table.bounds(self.current)
            width = float(window_width)
            if candidate < self.current and width < upper * (1.0 + self.dead_band):
                return False
            if candidate > self.current and width >= lower * (1.0 - self.dead_band):
                return False
        LOG.debug(
            "Resolution %s -> %s for window %.3f s",
            self.table.levels[self.current].name,
            self.table.levels[candidate].name,
            float(window_width),
        )
        self.current = candidate
        return True

    @property
    def level(self) -> MultitaperParams:
        return self.table.levels[self.current]


__all__ = [
    "DEFAULT_THRESHOLDS",
    "DEFAULT_LEVELS",
    "MultitaperParams",
    "validate_thresholds",
    "select_level",
    "ResolutionTable",
    "ResolutionSelector",
]
