"""Save and restore scoring records.

A record is an ordered list of ``{"typeId", "kind", "t"}`` entries where
``t`` is a float for point events and ``{"start", "end"}`` for regions.
Files wrap the list in a small JSON document that also stores the scoring
mode, so a record cannot be reopened under the wrong catalog.
"""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from mtscore.catalog import WAKE_ID, EventCatalog
from mtscore.errors import CorruptRecordError, InvalidBoundsError, UnknownTypeError
from mtscore.events import EventKind, EventStore, kind_for

LOG = logging.getLogger(__name__)

RECORD_FORMAT = "mtscore.scoring/1"

__all__ = [
    "RECORD_FORMAT",
    "to_record",
    "from_record",
    "record_path",
    "save_scoring",
    "load_scoring",
    "open_scoring",
]


def to_record(store: EventStore) -> List[Dict[str, Any]]:
    """Encode every event, time ordered, without selection state."""
    records: List[Dict[str, Any]] = []
    for event in store.list_events():
        if event.kind is EventKind.REGION:
            t: Any = {"start": event.start, "end": event.end}
        else:
            t = event.start
        records.append({"typeId": event.type_id, "kind": event.kind.value, "t": t})
    return records


def _parse_entry(idx: int, entry: Any, catalog: EventCatalog):
    if not isinstance(entry, Mapping):
        raise CorruptRecordError(f"record {idx}: expected an object, got {type(entry).__name__}")
    try:
        type_id = entry["typeId"]
        kind_raw = entry["kind"]
        t = entry["t"]
    except KeyError as exc:
        raise CorruptRecordError(f"record {idx}: missing field {exc.args[0]!r}") from None
    if isinstance(type_id, bool) or not isinstance(type_id, int):
        raise CorruptRecordError(f"record {idx}: typeId must be an integer, got {type_id!r}")
    try:
        kind = EventKind(kind_raw)
    except ValueError:
        raise CorruptRecordError(f"record {idx}: unknown kind {kind_raw!r}") from None
    try:
        event_type = catalog.get(type_id)
    except UnknownTypeError as exc:
        raise CorruptRecordError(f"record {idx}: {exc}") from exc
    if kind_for(event_type) is not kind:
        raise CorruptRecordError(f"record {idx}: type {type_id} cannot be a {kind.value} event")

    if kind is EventKind.REGION:
        if not isinstance(t, Mapping) or "start" not in t or "end" not in t:
            raise CorruptRecordError(f"record {idx}: region needs start and end")
        bounds: Any = (t["start"], t["end"])
    else:
        if isinstance(t, (Mapping, list, tuple)):
            raise CorruptRecordError(f"record {idx}: point needs a single time")
        bounds = t
    values = bounds if isinstance(bounds, tuple) else (bounds,)
    if not all(_is_number(v) for v in values):
        raise CorruptRecordError(f"record {idx}: event times must be numbers, got {t!r}")
    return type_id, bounds


def from_record(records: Sequence[Any], catalog: EventCatalog) -> EventStore:
    """Rebuild a store; any invalid entry rejects the whole record."""
    if not isinstance(records, (list, tuple)):
        raise CorruptRecordError("scoring record must be a list of events")
    store = EventStore(catalog)
    for idx, entry in enumerate(records):
        type_id, bounds = _parse_entry(idx, entry, catalog)
        try:
            store.add_event(type_id, bounds)
        except InvalidBoundsError as exc:
            raise CorruptRecordError(f"record {idx}: {exc}") from exc
    return store


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def record_path(save_dir: str | Path, initials: str, recording: str | Path) -> Path:
    """Deterministic record location for a scorer and a source recording."""
    scorer = _UNSAFE.sub("_", str(initials).strip()) or "anon"
    stem = Path(recording).stem
    return Path(save_dir) / f"scored_{scorer}_{stem}.json"


def save_scoring(path: str | Path, store: EventStore) -> Path:
    path = Path(path)
    payload = {
        "format": RECORD_FORMAT,
        "numstages": store.catalog.numstages,
        "events": to_record(store),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=1, allow_nan=False)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    LOG.info("Saved %d events to %s", len(payload["events"]), path)
    return path


def load_scoring(path: str | Path, catalog: EventCatalog) -> Optional[EventStore]:
    """Load a record file; ``None`` means no record exists yet."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise CorruptRecordError(f"{path}: not a scoring record ({exc})") from exc

    if isinstance(payload, list):
        events = payload
    elif isinstance(payload, Mapping):
        numstages = payload.get("numstages", catalog.numstages)
        if numstages != catalog.numstages:
            raise CorruptRecordError(
                f"{path}: scored with {numstages} stages, session uses {catalog.numstages}"
            )
        events = payload.get("events")
    else:
        raise CorruptRecordError(f"{path}: unexpected top-level {type(payload).__name__}")

    store = from_record(events, catalog)
    LOG.info("Loaded %d events from %s", len(store), path)
    return store


def open_scoring(path: str | Path, catalog: EventCatalog) -> EventStore:
    """Load an existing record or start a fresh one seeded with Wake at t=0."""
    store = load_scoring(path, catalog)
    if store is not None:
        return store
    LOG.info("No scoring at %s; starting a fresh session", path)
    store = EventStore(catalog)
    store.add_event(WAKE_ID, 0.0)
    return store
