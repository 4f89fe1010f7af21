# ui/time_axis.py
from math import isfinite

import pyqtgraph as pg

from mtscore.timebase import format_clock, tick_step


class TimeAxis(pg.AxisItem):
    """Clock labels on a step chosen for the visible range.

    ``relative`` shows time since recording start, ``absolute`` the wall
    clock via the recording timebase.
    """

    def __init__(self, *, timebase=None, mode: str = "relative", **kwargs):
        kwargs.setdefault("orientation", "bottom")
        super().__init__(**kwargs)
        self._timebase = timebase
        self._mode = "absolute" if str(mode).lower() == "absolute" else "relative"

    @property
    def mode(self) -> str:
        return self._mode

    def set_timebase(self, timebase):
        self._timebase = timebase
        self._refresh()

    def set_mode(self, mode: str):
        self._mode = "absolute" if str(mode).lower() == "absolute" else "relative"
        self._refresh()

    def _refresh(self):
        view = self.linkedView()
        if view is not None:
            self.linkedViewChanged(view, None)
        else:
            self.update()

    def tickSpacing(self, minVal, maxVal, size):
        span = maxVal - minVal
        if not isfinite(span) or span <= 0:
            return super().tickSpacing(minVal, maxVal, size)
        return [(tick_step(span), 0)]

    def tickStrings(self, values, scale, spacing):
        return self.format_ticks(values, spacing)

    def format_ticks(self, values, spacing: float = 1.0) -> list[str]:
        millis = spacing < 1.0
        out = []
        for value in values:
            try:
                numeric = float(value)
            except (TypeError, ValueError):
                out.append("")
                continue
            if not isfinite(numeric):
                out.append("")
            elif self._mode == "absolute" and self._timebase is not None:
                out.append(self._timebase.to_datetime(numeric).strftime("%H:%M:%S"))
            else:
                out.append(format_clock(numeric, millis=millis))
        return out
