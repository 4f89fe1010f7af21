"""Core package of the multitaper sleep scorer."""

# Re-export commonly used modules for convenience.
from . import (
    catalog,
    detectors,
    edf_loader,
    errors,
    events,
    hypnogram,
    persistence,
    resolution,
    session,
    spectrogram_cache,
    stage_import,
    timebase,
    view_window,
)

__all__ = [
    "catalog",
    "detectors",
    "edf_loader",
    "errors",
    "events",
    "hypnogram",
    "persistence",
    "resolution",
    "session",
    "spectrogram_cache",
    "stage_import",
    "timebase",
    "view_window",
]
