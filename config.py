from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
import math
import re

from mtscore.catalog import EventCatalog
from mtscore.edf_loader import EdfLoader
from mtscore.hypnogram import ArtifactOverlap
from mtscore.persistence import record_path as scoring_record_path
from mtscore.resolution import DEFAULT_LEVELS, DEFAULT_THRESHOLDS, MultitaperParams, ResolutionTable
from mtscore.session import ScoringSession
from mtscore.spectrogram_cache import Estimator, SpectrogramCache, SpectrogramCacheBuilder
from mtscore.view_window import WindowLimits


def _parse_float_list(raw: str) -> tuple[float, ...] | None:
    values = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            values.append(float(part))
        except ValueError:
            return None
    return tuple(values) or None


def _format_float_list(values) -> str:
    return ",".join(_format_float(v) for v in values)


def _format_float(value: float) -> str:
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return repr(float(value))


@dataclass
class ScorerConfig:
    numstages: int = 5
    initials: str = ""
    data_path: Path = Path("data")
    save_path: Path = Path("scored")
    autosave: bool = True
    thresholds: tuple[float, ...] = DEFAULT_THRESHOLDS
    dead_band: float = 0.0
    levels: tuple[MultitaperParams, ...] = DEFAULT_LEVELS
    min_window_s: float = 10.0
    max_window_s: float | None = None
    artifact_overlap: ArtifactOverlap = ArtifactOverlap.MERGE
    spectrogram_dir: Path = Path("processed")
    parallel: bool = False
    max_workers: int | None = None
    min_run: int = 2
    ini_path: Path | None = field(default=None, compare=False)

    @classmethod
    def load(cls, ini_path: str | Path | None = None) -> "ScorerConfig":
        cfg = cls()
        path = Path(ini_path or "mtscore.ini")
        if path.exists():
            import configparser

            parser = configparser.ConfigParser()
            parser.read(path)
            session = parser["session"] if "session" in parser else None
            if session:
                if "numstages" in session:
                    # the scoring mode is not defaulted: unsupported counts fail here
                    cfg.numstages = EventCatalog(session["numstages"].strip()).numstages
                cfg.initials = session.get("initials", fallback=cfg.initials).strip()
                cfg.data_path = Path(session.get("data_path", fallback=str(cfg.data_path)))
                cfg.save_path = Path(session.get("save_path", fallback=str(cfg.save_path)))
                cfg.autosave = session.getboolean("autosave", fallback=cfg.autosave)

            resolution = parser["resolution"] if "resolution" in parser else None
            if resolution:
                thresholds = _parse_float_list(resolution.get("thresholds", fallback=""))
                if thresholds:
                    cfg.thresholds = thresholds
                dead_band = resolution.getfloat("dead_band", fallback=cfg.dead_band)
                if dead_band >= 0:
                    cfg.dead_band = dead_band

            levels = list(cfg.levels)
            level_sections = sorted(
                (int(name.split(".", 1)[1]), name)
                for name in parser.sections()
                if re.fullmatch(r"level\.\d+", name)
            )
            for idx, name in level_sections:
                if idx < len(levels):
                    levels[idx] = _parse_level(parser[name], levels[idx])
                elif idx == len(levels):
                    levels.append(_parse_level(parser[name], MultitaperParams(f"level {idx}")))
            cfg.levels = tuple(levels)

            view = parser["view"] if "view" in parser else None
            if view:
                min_window = view.getfloat("min_window_s", fallback=cfg.min_window_s)
                if min_window > 0:
                    cfg.min_window_s = min_window
                max_window = view.getfloat("max_window_s", fallback=0.0)
                cfg.max_window_s = max_window if max_window > 0 else None

            hypnogram = parser["hypnogram"] if "hypnogram" in parser else None
            if hypnogram:
                raw = hypnogram.get("artifact_overlap", fallback=cfg.artifact_overlap.value)
                try:
                    cfg.artifact_overlap = ArtifactOverlap(raw.strip().lower())
                except ValueError:
                    pass

            cache = parser["cache"] if "cache" in parser else None
            if cache:
                cfg.spectrogram_dir = Path(cache.get("spectrogram_dir", fallback=str(cfg.spectrogram_dir)))
                cfg.parallel = cache.getboolean("parallel", fallback=cfg.parallel)
                max_workers = cache.getint("max_workers", fallback=0)
                cfg.max_workers = max_workers if max_workers > 0 else None

            detect = parser["detect"] if "detect" in parser else None
            if detect:
                min_run = detect.getint("min_run", fallback=cfg.min_run)
                if min_run >= 1:
                    cfg.min_run = min_run
        cfg.ini_path = path
        return cfg

    def catalog(self) -> EventCatalog:
        return EventCatalog(self.numstages)

    def resolution_table(self) -> ResolutionTable:
        """Validated level/threshold pairing; malformed tables fail here."""
        return ResolutionTable(self.levels, self.thresholds)

    def window_limits(self) -> WindowLimits:
        return WindowLimits(self.min_window_s, self.max_window_s or math.inf)

    def record_path(self, recording: str | Path) -> Path:
        return scoring_record_path(self.save_path, self.initials, recording)

    def open_session(self, loader: EdfLoader, *, cache: SpectrogramCache | None = None) -> ScoringSession:
        """Scoring session for ``loader`` with every setting of this config applied."""
        return ScoringSession.open(
            self.record_path(loader.path),
            self.catalog(),
            loader.duration_s,
            n_channels=max(1, loader.n_channels),
            table=self.resolution_table(),
            dead_band=self.dead_band,
            limits=self.window_limits(),
            autosave=self.autosave,
            cache=cache,
            artifact_overlap=self.artifact_overlap,
            min_run=self.min_run,
        )

    def spectrogram_path(self, recording: str | Path) -> Path:
        return self.spectrogram_dir / f"{Path(recording).stem}.spect.zarr"

    def cache_builder(self, loader: EdfLoader, estimator: Estimator, *, progress_callback=None) -> SpectrogramCacheBuilder:
        return SpectrogramCacheBuilder(
            loader,
            self.levels,
            estimator,
            out_path=self.spectrogram_path(loader.path),
            parallel=self.parallel,
            max_workers=self.max_workers,
            progress_callback=progress_callback,
        )

    def save(self) -> None:
        if self.ini_path is None:
            return
        import configparser

        parser = configparser.ConfigParser()
        parser["session"] = {
            "numstages": str(self.numstages),
            "initials": self.initials,
            "data_path": str(self.data_path),
            "save_path": str(self.save_path),
            "autosave": "true" if self.autosave else "false",
        }
        parser["resolution"] = {
            "thresholds": _format_float_list(self.thresholds),
            "dead_band": f"{self.dead_band:.3f}",
        }
        for idx, level in enumerate(self.levels):
            parser[f"level.{idx}"] = {
                "name": level.name,
                "frequency_range": _format_float_list(level.frequency_range),
                "taper_params": f"{_format_float(level.taper_params[0])},{int(level.taper_params[1])}",
                "window_params": _format_float_list(level.window_params),
                "min_nfft": str(level.min_nfft or 0),
                "detrend": level.detrend,
                "weighting": level.weighting,
            }
        parser["view"] = {
            "min_window_s": f"{self.min_window_s:.3f}",
            "max_window_s": f"{self.max_window_s or 0:.3f}",
        }
        parser["hypnogram"] = {"artifact_overlap": self.artifact_overlap.value}
        parser["cache"] = {
            "spectrogram_dir": str(self.spectrogram_dir),
            "parallel": "true" if self.parallel else "false",
            "max_workers": str(self.max_workers or 0),
        }
        parser["detect"] = {"min_run": str(self.min_run)}
        with self.ini_path.open("w") as fh:
            parser.write(fh)


def _parse_level(section, base: MultitaperParams) -> MultitaperParams:
    """Overlay one ``[level.N]`` section onto ``base``; bad values keep the base."""
    updates = {"name": section.get("name", fallback=base.name)}
    freq = _parse_float_list(section.get("frequency_range", fallback=""))
    if freq and len(freq) == 2 and freq[1] > freq[0] >= 0:
        updates["frequency_range"] = freq
    taper = _parse_float_list(section.get("taper_params", fallback=""))
    if taper and len(taper) == 2 and taper[0] > 0 and taper[1] >= 1:
        updates["taper_params"] = (taper[0], int(taper[1]))
    window = _parse_float_list(section.get("window_params", fallback=""))
    if window and len(window) == 2 and window[0] > 0 and window[1] > 0:
        updates["window_params"] = window
    min_nfft = section.getint("min_nfft", fallback=base.min_nfft or 0)
    updates["min_nfft"] = min_nfft if min_nfft > 0 else None
    detrend = section.get("detrend", fallback=base.detrend).strip().lower()
    if detrend in ("linear", "constant", "off"):
        updates["detrend"] = detrend
    weighting = section.get("weighting", fallback=base.weighting).strip().lower()
    if weighting in ("unity", "eigen", "adapt"):
        updates["weighting"] = weighting
    return replace(base, **updates)
