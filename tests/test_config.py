import math
from pathlib import Path
from types import SimpleNamespace

import pytest

from config import ScorerConfig
from mtscore.errors import NoMatchingLevelError, UnsupportedStageCountError
from mtscore.hypnogram import ArtifactOverlap
from mtscore.resolution import DEFAULT_LEVELS


def test_scorer_config_defaults(tmp_path: Path):
    cfg = ScorerConfig.load(tmp_path / "missing.ini")
    assert cfg.numstages == 5
    assert cfg.thresholds == (math.inf, 5400.0, 300.0, -math.inf)
    assert cfg.levels == DEFAULT_LEVELS
    assert cfg.artifact_overlap is ArtifactOverlap.MERGE
    assert cfg.catalog().numstages == 5
    assert len(cfg.resolution_table()) == 3
    assert cfg.window_limits().duration_min == 10.0
    assert cfg.window_limits().duration_max == math.inf


def test_scorer_config_parse(tmp_path: Path):
    ini_path = tmp_path / "mtscore.ini"
    ini_path.write_text(
        """
[session]
numstages = 3
initials = AB
save_path = out
autosave = false

[resolution]
thresholds = inf, 3600, 120, -inf
dead_band = 0.05

[level.1]
name = stage
taper_params = 4, 7
window_params = 8, 2

[view]
min_window_s = 5
max_window_s = 7200

[hypnogram]
artifact_overlap = Sequential

[cache]
parallel = yes
max_workers = 4

[detect]
min_run = 5
""".strip()
    )

    cfg = ScorerConfig.load(ini_path)
    assert cfg.numstages == 3
    assert cfg.initials == "AB"
    assert cfg.save_path == Path("out")
    assert cfg.autosave is False
    assert cfg.thresholds == (math.inf, 3600.0, 120.0, -math.inf)
    assert cfg.dead_band == pytest.approx(0.05)
    assert cfg.levels[1].taper_params == (4.0, 7)
    assert cfg.levels[1].window_params == (8.0, 2.0)
    assert cfg.levels[1].frequency_range == DEFAULT_LEVELS[1].frequency_range
    assert cfg.levels[0] == DEFAULT_LEVELS[0]
    assert cfg.window_limits().duration_max == 7200.0
    assert cfg.artifact_overlap is ArtifactOverlap.SEQUENTIAL
    assert cfg.parallel is True
    assert cfg.max_workers == 4
    assert cfg.min_run == 5
    assert cfg.resolution_table().select(200.0) == 1


def test_scorer_config_ignores_bad_values(tmp_path: Path):
    ini_path = tmp_path / "mtscore.ini"
    ini_path.write_text(
        """
[hypnogram]
artifact_overlap = random

[level.0]
frequency_range = 30, 10
""".strip()
    )
    cfg = ScorerConfig.load(ini_path)
    assert cfg.artifact_overlap is ArtifactOverlap.MERGE
    assert cfg.levels[0].frequency_range == DEFAULT_LEVELS[0].frequency_range


@pytest.mark.parametrize("raw", ["4", "seven", ""])
def test_unsupported_stage_count_is_rejected(tmp_path: Path, raw):
    ini_path = tmp_path / "mtscore.ini"
    ini_path.write_text(f"[session]\nnumstages = {raw}\n")
    with pytest.raises(UnsupportedStageCountError):
        ScorerConfig.load(ini_path)


def test_malformed_thresholds_fail_at_table_build(tmp_path: Path):
    ini_path = tmp_path / "mtscore.ini"
    ini_path.write_text("[resolution]\nthresholds = 100, 50, 10\n")
    cfg = ScorerConfig.load(ini_path)
    with pytest.raises(NoMatchingLevelError):
        cfg.resolution_table()


def test_scorer_config_save_round_trip(tmp_path: Path):
    ini_path = tmp_path / "mtscore.ini"
    cfg = ScorerConfig.load(ini_path)
    cfg.initials = "CD"
    cfg.artifact_overlap = ArtifactOverlap.SEQUENTIAL
    cfg.max_window_s = 3600.0
    cfg.save()

    written = ini_path.read_text()
    assert "thresholds = inf,5400.0,300.0,-inf" in written
    assert "artifact_overlap = sequential" in written

    again = ScorerConfig.load(ini_path)
    assert again.initials == "CD"
    assert again.thresholds == cfg.thresholds
    assert again.levels == cfg.levels
    assert again.max_window_s == 3600.0
    assert again.artifact_overlap is ArtifactOverlap.SEQUENTIAL


def test_open_session_applies_settings(tmp_path: Path):
    ini_path = tmp_path / "mtscore.ini"
    ini_path.write_text(
        f"""
[session]
numstages = 3
initials = AB
save_path = {tmp_path / "scored"}
autosave = false

[view]
min_window_s = 30

[hypnogram]
artifact_overlap = sequential

[detect]
min_run = 4
""".strip()
    )
    cfg = ScorerConfig.load(ini_path)
    loader = SimpleNamespace(path="/data/night01.edf", duration_s=3600.0, n_channels=2)
    session = cfg.open_session(loader)
    assert session.record_path == tmp_path / "scored" / "scored_AB_night01.json"
    assert session.catalog.numstages == 3
    assert session.autosave is False
    assert session.min_run == 4
    assert session.artifact_overlap is ArtifactOverlap.SEQUENTIAL
    assert session.view.n_channels == 2
    session.set_window(0.0, 1.0)
    assert session.view.duration == 30.0


def test_cache_builder_uses_cache_section(tmp_path: Path):
    ini_path = tmp_path / "mtscore.ini"
    ini_path.write_text(f"[cache]\nspectrogram_dir = {tmp_path}\nparallel = true\nmax_workers = 3\n")
    cfg = ScorerConfig.load(ini_path)
    builder = cfg.cache_builder(SimpleNamespace(path="data/night01.edf"), estimator=lambda x, fs, p: None)
    assert builder.parallel is True
    assert builder.max_workers == 3
    assert builder.out_path == tmp_path / "night01.spect.zarr"
    assert builder.levels == cfg.levels
