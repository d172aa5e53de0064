import json

import pytest

from download_errors import ValidationError
from run_config import (
    LARGE_GALLERY_THRESHOLD,
    MIN_SEQUENTIAL_THROTTLE_MS,
    RunConfig,
    derive_for_item_count,
    load_config_file,
    normalize_concurrency,
    normalize_throttle,
)


@pytest.mark.parametrize(
    "raw,expected",
    [(None, 4), ("abc", 4), (float("nan"), 4), (0, 1), (-3, 1), (2.9, 2), ("7", 7), (50, 10), (True, 4)],
)
def test_normalize_concurrency(raw, expected) -> None:
    assert normalize_concurrency(raw) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [(None, 0), ("x", 0), (-1, 0), (99.7, 99), (5000, 5000), (9000, 5000)],
)
def test_normalize_throttle(raw, expected) -> None:
    assert normalize_throttle(raw) == expected


def test_from_preferences_sequential_forces_single_slot_and_floor() -> None:
    cfg = RunConfig.from_preferences(concurrency=8, sequential=True, throttle_ms=20)
    assert cfg.concurrency == 1
    assert cfg.sequential
    assert cfg.throttle_delay_ms == MIN_SEQUENTIAL_THROTTLE_MS


def test_from_preferences_parallel_keeps_requested_throttle() -> None:
    cfg = RunConfig.from_preferences(concurrency=5, sequential=False, throttle_ms=0)
    assert cfg.concurrency == 5
    assert cfg.throttle_delay_ms == 0


def test_single_slot_gets_throttle_floor_even_without_sequential_flag() -> None:
    cfg = RunConfig.from_preferences(concurrency=1, throttle_ms=300)
    assert cfg.throttle_delay_ms == 300
    cfg = RunConfig.from_preferences(concurrency=1, throttle_ms=10)
    assert cfg.throttle_delay_ms == MIN_SEQUENTIAL_THROTTLE_MS


@pytest.mark.parametrize(
    "kwargs",
    [
        {"concurrency": 0},
        {"concurrency": 11},
        {"concurrency": 2.0},
        {"retry_attempts": 0},
        {"throttle_delay_ms": -1},
        {"retry_base_delay_ms": -5},
        {"timeout_sec": 0},
        {"sequential": True, "concurrency": 3},
    ],
)
def test_invalid_config_fails_fast(kwargs) -> None:
    with pytest.raises(ValidationError):
        RunConfig(**kwargs)


def test_backoff_is_exponential() -> None:
    cfg = RunConfig(retry_base_delay_ms=500)
    assert [cfg.backoff_sec(a) for a in (1, 2, 3)] == [0.5, 1.0, 2.0]


def test_large_gallery_derives_new_config_without_touching_original() -> None:
    original = RunConfig(concurrency=5, throttle_delay_ms=0)
    derived, notice = derive_for_item_count(original, 1000)

    assert derived.concurrency == 1
    assert derived.throttle_delay_ms >= MIN_SEQUENTIAL_THROTTLE_MS
    assert "1000" in notice
    assert original.concurrency == 5
    assert original.throttle_delay_ms == 0


def test_large_gallery_keeps_higher_throttle() -> None:
    derived, _ = derive_for_item_count(RunConfig(concurrency=3, throttle_delay_ms=900), LARGE_GALLERY_THRESHOLD)
    assert derived.throttle_delay_ms == 900


@pytest.mark.parametrize("count,concurrency", [(LARGE_GALLERY_THRESHOLD - 1, 5), (5000, 1)])
def test_no_downgrade_below_threshold_or_when_already_single(count, concurrency) -> None:
    cfg = RunConfig(concurrency=concurrency)
    derived, notice = derive_for_item_count(cfg, count)
    assert derived is cfg
    assert notice is None


def test_load_config_file(tmp_path) -> None:
    path = tmp_path / "gallery.json"
    path.write_text(json.dumps({"concurrency": 6, "output": "out"}))
    assert load_config_file(str(path)) == {"concurrency": 6, "output": "out"}

    bad = tmp_path / "bad.json"
    bad.write_text("[1, 2]")
    with pytest.raises(ValidationError):
        load_config_file(str(bad))

    with pytest.raises(ValidationError):
        load_config_file(str(tmp_path / "missing.json"))
