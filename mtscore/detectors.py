"""Glue between external event detectors and the event store.

Detectors are black boxes: an artifact detector maps ``(signal, fs)`` to a
per-sample boolean mask. Runs of flagged samples become region events
through :meth:`EventStore.insert_batch`.
"""
from __future__ import annotations

import logging
from typing import Callable, List, Tuple

import numpy as np

from mtscore.catalog import ARTIFACT_ID
from mtscore.events import Event, EventStore

LOG = logging.getLogger(__name__)

MaskDetector = Callable[[np.ndarray, float], np.ndarray]

__all__ = ["MaskDetector", "consecutive_runs", "mask_to_intervals", "detect_and_insert"]


def consecutive_runs(mask: np.ndarray, min_length: int = 2) -> List[Tuple[int, int]]:
    """Half-open ``(start, stop)`` sample ranges of True runs.

    Runs shorter than ``min_length`` samples are dropped.
    """
    if min_length < 1:
        raise ValueError("min_length must be at least 1")
    flags = np.asarray(mask, dtype=bool).ravel()
    if flags.size == 0:
        return []
    padded = np.concatenate(([False], flags, [False]))
    edges = np.flatnonzero(np.diff(padded.astype(np.int8)))
    starts = edges[0::2]
    stops = edges[1::2]
    keep = (stops - starts) >= min_length
    return [(int(a), int(b)) for a, b in zip(starts[keep], stops[keep])]


def mask_to_intervals(mask: np.ndarray, fs: float, *, min_length: int = 2) -> List[Tuple[float, float]]:
    if fs <= 0:
        raise ValueError("fs must be positive")
    return [(start / fs, stop / fs) for start, stop in consecutive_runs(mask, min_length)]


def detect_and_insert(
    store: EventStore,
    detector: MaskDetector,
    signal: np.ndarray,
    fs: float,
    *,
    type_id: int = ARTIFACT_ID,
    min_length: int = 2,
) -> List[Event]:
    """Run ``detector`` on one channel and add every flagged run as an event."""
    signal = np.asarray(signal)
    mask = np.asarray(detector(signal, fs), dtype=bool)
    if mask.shape != signal.shape:
        raise ValueError(f"detector mask shape {mask.shape} does not match signal {signal.shape}")
    intervals = mask_to_intervals(mask, fs, min_length=min_length)
    added = store.insert_batch(type_id, intervals)
    LOG.info("Detector flagged %d intervals", len(added))
    return added
