import math

import pytest

from mtscore.errors import NoMatchingLevelError
from mtscore.resolution import (
    DEFAULT_LEVELS,
    DEFAULT_THRESHOLDS,
    MultitaperParams,
    ResolutionSelector,
    ResolutionTable,
    select_level,
    validate_thresholds,
)

INF = math.inf


@pytest.mark.parametrize(
    "width, expected",
    [
        (6000.0, 0),
        (5400.0, 0),
        (5399.9, 1),
        (1000.0, 1),
        (300.0, 1),
        (299.0, 2),
        (10.0, 2),
        (1e-6, 2),
    ],
)
def test_select_level_default_table(width, expected):
    assert select_level(width, DEFAULT_THRESHOLDS) == expected


@pytest.mark.parametrize("width", [0.0, -1.0, math.nan, math.inf])
def test_select_level_rejects_bad_widths(width):
    with pytest.raises(ValueError):
        select_level(width, DEFAULT_THRESHOLDS)


@pytest.mark.parametrize(
    "thresholds",
    [
        [INF],
        [100.0, -INF],
        [INF, 100.0],
        [INF, 100.0, 200.0, -INF],
        [INF, 100.0, 100.0, -INF],
        [INF, "x", -INF],
    ],
)
def test_validate_thresholds_rejects_malformed(thresholds):
    with pytest.raises(NoMatchingLevelError):
        validate_thresholds(thresholds)


def test_single_level_table():
    assert validate_thresholds([INF, -INF]) == (INF, -INF)
    assert select_level(1.0, [INF, -INF]) == 0


def test_table_requires_matching_level_count():
    with pytest.raises(NoMatchingLevelError):
        ResolutionTable(DEFAULT_LEVELS[:2], DEFAULT_THRESHOLDS)
    table = ResolutionTable()
    assert len(table) == 3
    assert table.bounds(1) == (5400.0, 300.0)


def test_selector_switches_without_dead_band():
    selector = ResolutionSelector(ResolutionTable())
    assert selector.current == 0
    assert selector.update(1000.0) is True
    assert selector.current == 1
    assert selector.level.name == "stage"
    assert selector.update(1200.0) is False
    assert selector.update(5400.0) is True
    assert selector.current == 0


def test_selector_dead_band_holds_near_boundary():
    selector = ResolutionSelector(ResolutionTable(), dead_band=0.1, initial=1)
    # just above the 5400 boundary, inside the band
    assert selector.update(5500.0) is False
    assert selector.current == 1
    assert selector.update(6000.0) is True
    assert selector.current == 0
    # back down: only switches once clearly inside level 1
    selector = ResolutionSelector(ResolutionTable(), dead_band=0.1, initial=1)
    assert selector.update(290.0) is False
    assert selector.update(200.0) is True
    assert selector.current == 2


def test_selector_validation():
    with pytest.raises(ValueError):
        ResolutionSelector(ResolutionTable(), dead_band=-0.1)
    with pytest.raises(ValueError):
        ResolutionSelector(ResolutionTable(), initial=3)


def test_multitaper_params_clipped_to_nyquist():
    params = MultitaperParams("full night", frequency_range=(0.5, 35.0))
    assert params.clipped(100.0) is params
    clipped = params.clipped(50.0)
    assert clipped.frequency_range == (0.5, 25.0)
    assert clipped.taper_params == params.taper_params


def test_default_levels_match_scales():
    full, stage, micro = DEFAULT_LEVELS
    assert full.window_params == (30.0, 15.0)
    assert stage.taper_params == (3.0, 5)
    assert micro.min_nfft == 1024
    assert micro.detrend == "constant"
