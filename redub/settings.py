"""Tunable settings for a re-dubbing run, with per-project overrides."""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields

from redub import constants as C

logger = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"


@dataclass
class SyncSettings:
    # Working format
    sample_rate: int = C.WORK_SAMPLE_RATE
    channels: int = C.WORK_CHANNELS

    # Synthesis
    backend: str = "edge"
    voice: str = C.DEFAULT_VOICE
    piper_model: str = ""
    max_concurrent_synthesis: int = C.MAX_CONCURRENT_SYNTHESIS

    # Controller
    length_scale_min: float = C.LENGTH_SCALE_MIN
    length_scale_max: float = C.LENGTH_SCALE_MAX
    max_attempts: int = C.MAX_SYNTHESIS_ATTEMPTS
    volume_floor: float = C.VOLUME_FLOOR_DB
    quality_floor: float = C.QUALITY_FLOOR
    speed_factor_min: float = C.SPEED_FACTOR_MIN
    speed_factor_max: float = C.SPEED_FACTOR_MAX
    reprocess_overruns: bool = True

    # Calibration
    max_iterations: int = C.MAX_CALIBRATION_ITERATIONS
    target_precision: float = C.TARGET_PRECISION
    target_quality: float = C.TARGET_QUALITY
    min_audible_volume: float = C.MIN_AUDIBLE_VOLUME
    min_voice_fraction: float = C.MIN_VOICE_FRACTION
    dynamic_boost_max: float = C.DYNAMIC_BOOST_MAX

    # Enhancement
    enhance: bool = True

    # Pipeline
    video_budget: float = C.VIDEO_BUDGET_SECONDS

    def to_dict(self) -> dict:
        return asdict(self)


def _coerce(value, current):
    """Convert a raw override to the type of the current value."""
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(current, int):
        return int(float(value))
    if isinstance(current, float):
        return float(value)
    return str(value)


def apply_overrides(settings: SyncSettings, overrides: dict) -> SyncSettings:
    """Apply key/value overrides in place. Unknown keys are ignored with a warning."""
    known = {f.name for f in fields(settings)}
    for key, value in overrides.items():
        name = key.replace("-", "_")
        if name not in known:
            logger.warning("Ignoring unknown setting %r", key)
            continue
        setattr(settings, name, _coerce(value, getattr(settings, name)))
    return settings


def load_settings(project_dir: str | None = None) -> SyncSettings:
    """Build settings from the defaults plus project_dir/settings.json, if present."""
    settings = SyncSettings()
    if not project_dir:
        return settings
    path = os.path.join(project_dir, SETTINGS_FILE)
    if not os.path.exists(path):
        return settings
    with open(path) as f:
        overrides = json.load(f)
    return apply_overrides(settings, overrides)


def save_override(project_dir: str, key: str, value) -> dict:
    """Persist one override to settings.json. Returns the stored overrides."""
    name = key.replace("-", "_")
    defaults = SyncSettings()
    if not hasattr(defaults, name):
        raise KeyError(key)
    path = os.path.join(project_dir, SETTINGS_FILE)
    overrides = {}
    if os.path.exists(path):
        with open(path) as f:
            overrides = json.load(f)
    overrides[name] = _coerce(value, getattr(defaults, name))
    with open(path, "w") as f:
        json.dump(overrides, f, indent=2)
    return overrides
