"""
Gallery Downloader Run Configuration

A RunConfig is built once per run from validated, clamped user preferences and
is never mutated afterwards. Large-gallery protection derives a second config
with dataclasses.replace() instead of touching the original.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

from download_errors import ValidationError


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_CONCURRENCY = 4
MAX_CONCURRENCY = 10
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY_MS = 500
DEFAULT_TIMEOUT_SEC = 30
MIN_SEQUENTIAL_THROTTLE_MS = 150
MAX_THROTTLE_MS = 5000
LARGE_GALLERY_THRESHOLD = 800


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    return parsed


def normalize_concurrency(value: Any) -> int:
    """Coerce raw UI input to an int in [1, MAX_CONCURRENCY]."""
    parsed = _as_number(value)
    if parsed is None:
        return DEFAULT_CONCURRENCY
    return min(MAX_CONCURRENCY, max(1, math.floor(parsed)))


def normalize_throttle(value: Any) -> int:
    """Coerce raw UI input to whole milliseconds in [0, MAX_THROTTLE_MS]."""
    parsed = _as_number(value)
    if parsed is None or parsed < 0:
        return 0
    return min(math.floor(parsed), MAX_THROTTLE_MS)


def _require_int(name: str, value: Any, minimum: int, maximum: Optional[int] = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ValidationError(f"{name} must be <= {maximum}, got {value}")


@dataclass(frozen=True)
class RunConfig:
    """Settings for one run. Delays are in milliseconds."""
    concurrency: int = DEFAULT_CONCURRENCY
    sequential: bool = False
    throttle_delay_ms: int = 0
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_base_delay_ms: int = DEFAULT_RETRY_BASE_DELAY_MS
    timeout_sec: int = DEFAULT_TIMEOUT_SEC

    def __post_init__(self) -> None:
        _require_int("concurrency", self.concurrency, 1, MAX_CONCURRENCY)
        _require_int("throttle_delay_ms", self.throttle_delay_ms, 0, MAX_THROTTLE_MS)
        _require_int("retry_attempts", self.retry_attempts, 1)
        _require_int("retry_base_delay_ms", self.retry_base_delay_ms, 0)
        _require_int("timeout_sec", self.timeout_sec, 1)
        if self.sequential and self.concurrency != 1:
            raise ValidationError("sequential mode requires concurrency == 1")

    @classmethod
    def from_preferences(
        cls,
        concurrency: Any = None,
        sequential: Any = False,
        throttle_ms: Any = None,
        **overrides: Any,
    ) -> "RunConfig":
        """
        Build a config from raw panel preferences.

        Sequential mode forces concurrency to 1, and any single-slot run waits
        at least MIN_SEQUENTIAL_THROTTLE_MS after each successful download.
        """
        is_sequential = bool(sequential)
        effective = 1 if is_sequential else normalize_concurrency(concurrency)
        throttle = normalize_throttle(throttle_ms)
        if effective == 1:
            throttle = max(throttle, MIN_SEQUENTIAL_THROTTLE_MS)
        return cls(
            concurrency=effective,
            sequential=is_sequential,
            throttle_delay_ms=throttle,
            **overrides,
        )

    @property
    def throttle_delay_sec(self) -> float:
        return self.throttle_delay_ms / 1000.0

    def backoff_sec(self, attempt: int) -> float:
        """Delay before the attempt following `attempt` (1-based)."""
        return self.retry_base_delay_ms * (2 ** (attempt - 1)) / 1000.0


def derive_for_item_count(cfg: RunConfig, item_count: int) -> tuple[RunConfig, Optional[str]]:
    """
    Downgrade to a single slot for large galleries.

    Returns the effective config and, when a downgrade happened, the notice to
    show the user. The passed config is left untouched.
    """
    if item_count >= LARGE_GALLERY_THRESHOLD and cfg.concurrency > 1:
        derived = replace(
            cfg,
            concurrency=1,
            throttle_delay_ms=max(cfg.throttle_delay_ms, MIN_SEQUENTIAL_THROTTLE_MS),
        )
        notice = (
            f"Large gallery detected ({item_count} screenshots). "
            "Switching to sequential mode for stability."
        )
        return derived, notice
    return cfg, None


def load_config_file(path: str) -> dict[str, Any]:
    """Read a JSON config file, keeping only keys the CLI understands."""
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise ValidationError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Config file {cfg_path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError(f"Config file {cfg_path} must contain a JSON object")
    return data
