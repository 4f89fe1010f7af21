# mtscore/stage_import.py
"""Bring existing stage scorings into an event store.

Two sources are understood: epoch-per-row stage CSV files and EDF+
annotations. Labels are normalised to stage ids of the active catalog
(N1/N2/N3 all become NREM in 3-stage mode) and consecutive epochs with the
same stage collapse to a single change point.
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import csv
import logging
import math
import re

from mtscore.catalog import (
    N1_ID,
    N2_ID,
    N3_ID,
    NREM_ID,
    REM_ID,
    WAKE_ID,
    EventCatalog,
)
from mtscore.events import Event, EventStore

LOG = logging.getLogger(__name__)

_FLOAT_PATTERN = re.compile(r"[-+]?\d*\.?\d+(?:[eE][-+]?\d+)?")

_STAGE_ALIAS_MAP = {
    "w": WAKE_ID,
    "wake": WAKE_ID,
    "awake": WAKE_ID,
    "n1": N1_ID,
    "s1": N1_ID,
    "stage1": N1_ID,
    "1": N1_ID,
    "n2": N2_ID,
    "s2": N2_ID,
    "stage2": N2_ID,
    "2": N2_ID,
    "light": N2_ID,
    "n3": N3_ID,
    "s3": N3_ID,
    "stage3": N3_ID,
    "3": N3_ID,
    "n4": N3_ID,
    "s4": N3_ID,
    "4": N3_ID,
    "deep": N3_ID,
    "sws": N3_ID,
    "n": NREM_ID,
    "rem": REM_ID,
    "r": REM_ID,
    "5": REM_ID,
}

_GENERIC_NREM_KEYS = frozenset({"n"})

# numeric stage codes used by common scoring exports
DEFAULT_CODE_MAP = {
    "11": WAKE_ID,
    "12": N1_ID,
    "13": N2_ID,
    "14": REM_ID,
    "15": N3_ID,
}


def _extract_first_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    text = str(value).strip()
    match = _FLOAT_PATTERN.search(text)
    if not match:
        return None
    try:
        number = float(match.group())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _stage_key(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    lowered = str(value).strip().lower()
    if not lowered:
        return None
    for old, new in (
        ("non-rem", "nrem"),
        ("non rem", "nrem"),
        ("rapid eye movement", "rem"),
        ("sleep stage", ""),
        ("stage ", ""),
        ("stage:", ""),
        ("sleep", ""),
        ("nrem", "n"),
    ):
        lowered = lowered.replace(old, new)
    normalized = re.sub(r"[^a-z0-9]+", "", lowered).lstrip("0")
    return normalized or None


def normalise_stage_label(value: Optional[str]) -> Optional[int]:
    """Map a free-text stage label to a stage id, or ``None``.

    Generic NREM labels map to ``NREM_ID``, which only has that meaning in
    3-stage scoring; use :func:`catalog_stage_for_label` to resolve a label
    against a catalog.
    """
    key = _stage_key(value)
    if key is None:
        return None
    return _STAGE_ALIAS_MAP.get(key)


def to_catalog_stage(stage_id: int, catalog: EventCatalog) -> int:
    """Fold 5-stage ids onto the active catalog."""
    if catalog.numstages == 3 and stage_id in (N1_ID, N2_ID, N3_ID):
        return NREM_ID
    return stage_id


def catalog_stage_for_label(value: Optional[str], catalog: EventCatalog) -> Optional[int]:
    """Stage id of ``value`` in ``catalog``; generic NREM is dropped in 5-stage mode."""
    key = _stage_key(value)
    if key is None:
        return None
    if key in _GENERIC_NREM_KEYS and catalog.numstages == 5:
        LOG.debug("Skipping generic NREM label %r in 5-stage scoring", value)
        return None
    stage = _STAGE_ALIAS_MAP.get(key)
    return None if stage is None else to_catalog_stage(stage, catalog)


def collapse_epochs(
    stages: Sequence[Optional[int]], *, epoch_length_s: float, offset_s: float = 0.0
) -> List[Tuple[float, int]]:
    """Change points ``(time, stage)`` from a per-epoch stage sequence.

    Unrecognised epochs (``None``) keep the previous stage.
    """
    out: List[Tuple[float, int]] = []
    for idx, stage in enumerate(stages):
        if stage is None:
            continue
        if out and out[-1][1] == stage:
            continue
        out.append((offset_s + idx * epoch_length_s, stage))
    return out


def read_stage_csv(
    path: str | Path,
    *,
    code_map: Optional[Dict[str, int]] = None,
    column: int = 0,
    catalog: Optional[EventCatalog] = None,
) -> List[Optional[int]]:
    """One stage per row; numeric codes go through ``code_map``, text through the alias table.

    With a ``catalog`` the ids are resolved for that scoring mode.
    """
    path = Path(path)
    code_map = DEFAULT_CODE_MAP if code_map is None else code_map
    stages: List[Optional[int]] = []
    with path.open("r", newline="") as f:
        reader = csv.reader(f)
        for row_idx, row in enumerate(reader):
            if not row or len(row) <= column:
                continue
            cell = row[column].strip()
            numeric = _extract_first_float(cell)
            if cell in code_map:
                stage = code_map[cell]
            elif numeric is not None and str(int(numeric)) in code_map:
                stage = code_map[str(int(numeric))]
            elif catalog is not None:
                stage = catalog_stage_for_label(cell, catalog)
                if stage is None and row_idx == 0:
                    continue  # header
            else:
                stage = normalise_stage_label(cell)
                if stage is None and row_idx == 0:
                    continue  # header
            if stage is None:
                LOG.debug("Unrecognised stage %r on row %d of %s", cell, row_idx, path)
            elif catalog is not None:
                stage = to_catalog_stage(stage, catalog)
            stages.append(stage)
    return stages


def stage_events_from_csv(
    store: EventStore,
    path: str | Path,
    *,
    epoch_length_s: float = 30.0,
    offset_s: float = 0.0,
    code_map: Optional[Dict[str, int]] = None,
) -> List[Event]:
    if epoch_length_s <= 0:
        raise ValueError("epoch_length_s must be positive")
    stages = read_stage_csv(path, code_map=code_map, catalog=store.catalog)
    return _insert_change_points(store, collapse_epochs(stages, epoch_length_s=epoch_length_s, offset_s=offset_s))


def stage_events_from_edfplus(
    store: EventStore,
    annotations: Tuple[Iterable[float], Iterable[float], Iterable[str]],
) -> List[Event]:
    """Add stage changes from ``(onsets, durations, texts)`` EDF+ annotations."""
    onsets, _durations, texts = annotations
    points: List[Tuple[float, int]] = []
    for onset, text in sorted(zip(onsets, texts), key=lambda pair: float(pair[0])):
        stage = catalog_stage_for_label(text, store.catalog)
        if stage is None:
            continue
        if points and points[-1][1] == stage:
            continue
        points.append((float(onset), stage))
    return _insert_change_points(store, points)


def _insert_change_points(store: EventStore, points: List[Tuple[float, int]]) -> List[Event]:
    added: List[Event] = []
    by_stage: Dict[int, List[float]] = {}
    for t, stage in points:
        by_stage.setdefault(stage, []).append(t)
    for stage, times in by_stage.items():
        added.extend(store.insert_batch(stage, times))
    added.sort(key=lambda ev: ev.start)
    LOG.info("Imported %d stage changes", len(added))
    return added


__all__ = [
    "DEFAULT_CODE_MAP",
    "normalise_stage_label",
    "to_catalog_stage",
    "catalog_stage_for_label",
    "collapse_epochs",
    "read_stage_csv",
    "stage_events_from_csv",
    "stage_events_from_edfplus",
]
