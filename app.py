# app.py
import argparse
import csv
import importlib
import logging
import sys
from pathlib import Path

from config import ScorerConfig
from mtscore.edf_loader import EdfLoader
from mtscore.errors import ScoringError
from mtscore.events import EventStore
from mtscore.hypnogram import reconcile
from mtscore.persistence import load_scoring, save_scoring
from mtscore.spectrogram_cache import SpectrogramCache
from mtscore.stage_import import stage_events_from_csv, stage_events_from_edfplus
from mtscore.timebase import format_clock

LOG = logging.getLogger("mtscore")


def _record_for(cfg: ScorerConfig, args) -> Path:
    if getattr(args, "record", None):
        return Path(args.record)
    return cfg.record_path(args.edf_path)


def _duration(args) -> float:
    if getattr(args, "duration", None) is not None:
        return float(args.duration)
    with EdfLoader(args.edf_path) as loader:
        return loader.duration_s


def cmd_hypnogram(cfg: ScorerConfig, args) -> int:
    catalog = cfg.catalog()
    path = _record_for(cfg, args)
    store = load_scoring(path, catalog)
    if store is None:
        print(f"No scoring record at {path}", file=sys.stderr)
        return 1
    timeline = reconcile(store.list_events(), _duration(args), artifact_overlap=cfg.artifact_overlap)
    if args.csv:
        with open(args.csv, "w", newline="") as fh:
            writer = csv.writer(fh)
            writer.writerow(["start_s", "end_s", "stage"])
            for start, end, value in timeline.segments():
                writer.writerow([f"{start:.3f}", f"{end:.3f}", catalog.name_for(value)])
        LOG.info("Wrote %d segments to %s", len(timeline.segments()), args.csv)
    else:
        for t, value in timeline:
            print(f"{format_clock(t)}\t{t:.3f}\t{catalog.name_for(value)}")
    return 0


def cmd_import_stages(cfg: ScorerConfig, args) -> int:
    catalog = cfg.catalog()
    path = _record_for(cfg, args)
    store = load_scoring(path, catalog) if args.append else None
    if store is None:
        store = EventStore(catalog)
    if args.stages:
        added = stage_events_from_csv(
            store, args.stages, epoch_length_s=args.epoch, offset_s=args.offset
        )
    else:
        with EdfLoader(args.edf_path) as loader:
            added = stage_events_from_edfplus(store, loader.read_annotations())
    save_scoring(path, store)
    print(f"Imported {len(added)} stage changes into {path}")
    return 0


def cmd_level(cfg: ScorerConfig, args) -> int:
    table = cfg.resolution_table()
    idx = table.select(args.width)
    print(f"{idx}\t{table.levels[idx].name}")
    return 0


def cmd_info(cfg: ScorerConfig, args) -> int:
    with EdfLoader(args.edf_path) as loader:
        print(f"Recording: {loader.path}")
        print(f"Start:     {loader.start_dt}")
        print(f"Duration:  {format_clock(loader.duration_s)} ({loader.duration_s:.1f} s)")
        for info in loader.info:
            print(f"  {info.name:<16} {info.fs:8.2f} Hz  {info.n_samples} samples  {info.unit}")
        duration = loader.duration_s
    path = _record_for(cfg, args)
    store = load_scoring(path, cfg.catalog())
    if store is None:
        print(f"Record:    none ({path})")
        return 0
    timeline = reconcile(store.list_events(), duration, artifact_overlap=cfg.artifact_overlap)
    print(f"Record:    {path} ({len(store)} events)")
    catalog = cfg.catalog()
    for value, seconds in sorted(timeline.durations().items()):
        print(f"  {catalog.name_for(value):<9} {format_clock(seconds)}")
    return 0


def _load_estimator(target: str):
    """``package.module:function`` -> the spectrogram estimator callable."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ValueError(f"estimator must look like 'module:function', got {target!r}")
    return getattr(importlib.import_module(module_name), attr)


def _open_cache(cfg: ScorerConfig, loader: EdfLoader, estimator_name: str | None):
    path = cfg.spectrogram_path(loader.path)
    if path.exists():
        return SpectrogramCache.open(path)
    if not estimator_name:
        LOG.info("No spectrogram cache at %s; scoring without spectrogram", path)
        return None
    builder = cfg.cache_builder(
        loader,
        _load_estimator(estimator_name),
        progress_callback=lambda done, total: LOG.info("Spectrograms %d/%d", done, total),
    )
    return builder.build()


def cmd_score(cfg: ScorerConfig, args) -> int:
    from PySide6 import QtWidgets

    from ui.scoring_window import ScoringWindow

    app = QtWidgets.QApplication.instance() or QtWidgets.QApplication(sys.argv[:1])
    with EdfLoader(args.edf_path) as loader:
        cache = _open_cache(cfg, loader, args.estimator)
        session = cfg.open_session(loader, cache=cache)
        w = ScoringWindow(session, timebase=loader.timebase)
        w.setWindowTitle(f"MTScore - {loader.name}")
        w.resize(1200, 700)
        w.show()
        app.exec()
    path = session.save()
    if path is not None:
        print(f"Saved scoring to {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mtscore", description="Multitaper sleep scoring tools")
    p.add_argument("--config")
    p.add_argument("--log-level", default="WARNING")
    sub = p.add_subparsers(dest="command", required=True)

    hyp = sub.add_parser("hypnogram", help="print or export the reconciled hypnogram")
    hyp.add_argument("edf_path")
    hyp.add_argument("--record")
    hyp.add_argument("--duration", type=float)
    hyp.add_argument("--csv")
    hyp.set_defaults(func=cmd_hypnogram)

    imp = sub.add_parser("import-stages", help="import stage changes from a CSV or EDF+ annotations")
    imp.add_argument("edf_path")
    imp.add_argument("--stages", help="epoch-per-row stage CSV; EDF+ annotations are used otherwise")
    imp.add_argument("--record")
    imp.add_argument("--epoch", type=float, default=30.0)
    imp.add_argument("--offset", type=float, default=0.0)
    imp.add_argument("--append", action="store_true", help="add to an existing record")
    imp.set_defaults(func=cmd_import_stages)

    lvl = sub.add_parser("level", help="resolution level for a window width in seconds")
    lvl.add_argument("width", type=float)
    lvl.set_defaults(func=cmd_level)

    info = sub.add_parser("info", help="recording and scoring summary")
    info.add_argument("edf_path")
    info.add_argument("--record")
    info.set_defaults(func=cmd_info)

    score = sub.add_parser("score", help="open the scoring window")
    score.add_argument("edf_path")
    score.add_argument("--estimator", help="module:function computing spectrograms when no cache exists")
    score.set_defaults(func=cmd_score)
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        cfg = ScorerConfig.load(args.config)
        return args.func(cfg, args)
    except (ScoringError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
