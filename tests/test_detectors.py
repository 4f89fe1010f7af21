import numpy as np
import pytest

from mtscore.catalog import ARTIFACT_ID, SPINDLE_ID, EventCatalog
from mtscore.detectors import consecutive_runs, detect_and_insert, mask_to_intervals
from mtscore.events import EventKind, EventStore


def test_consecutive_runs_drops_short_runs():
    mask = np.array([1, 1, 0, 1, 0, 0, 1, 1, 1], dtype=bool)
    assert consecutive_runs(mask) == [(0, 2), (6, 9)]
    assert consecutive_runs(mask, min_length=1) == [(0, 2), (3, 4), (6, 9)]
    assert consecutive_runs(mask, min_length=3) == [(6, 9)]


def test_consecutive_runs_edge_cases():
    assert consecutive_runs(np.zeros(0, dtype=bool)) == []
    assert consecutive_runs(np.zeros(5, dtype=bool)) == []
    assert consecutive_runs(np.ones(4, dtype=bool)) == [(0, 4)]
    with pytest.raises(ValueError):
        consecutive_runs(np.ones(3, dtype=bool), min_length=0)


def test_mask_to_intervals_in_seconds():
    mask = np.zeros(400, dtype=bool)
    mask[100:200] = True
    assert mask_to_intervals(mask, 100.0) == [(1.0, 2.0)]
    with pytest.raises(ValueError):
        mask_to_intervals(mask, 0.0)


def test_detect_and_insert_adds_regions():
    store = EventStore(EventCatalog(3))
    signal = np.zeros(1000)
    signal[250:300] = 500.0
    signal[700:710] = -500.0

    def amplitude_detector(x, fs):
        return np.abs(x) > 100.0

    added = detect_and_insert(store, amplitude_detector, signal, 100.0)
    assert [ev.bounds for ev in added] == [(2.5, 3.0), (7.0, 7.1)]
    assert all(ev.kind is EventKind.REGION and ev.type_id == ARTIFACT_ID for ev in added)
    assert len(store) == 2


def test_detect_and_insert_other_type_and_shape_check():
    store = EventStore(EventCatalog(5))
    signal = np.zeros(100)
    added = detect_and_insert(store, lambda x, fs: np.ones_like(x, dtype=bool), signal, 10.0, type_id=SPINDLE_ID)
    assert [ev.bounds for ev in added] == [(0.0, 10.0)]
    with pytest.raises(ValueError):
        detect_and_insert(store, lambda x, fs: np.ones(5, dtype=bool), signal, 10.0)
    assert len(store) == 1
