"""
SSOT Configuration Loader for the crowd energy engine

Loads config/engine.yml and exposes it as a typed EngineConfig. Scoring
constants, timeline clamps, cache timing and storage timeouts all come from
this file; environment variables may override the operational knobs.
"""

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional
import logging
import os

import yaml

from crowdenergy.utils import constants as C
from crowdenergy.utils.env import env_bool, env_float

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
CONFIG_ENV_VAR = "CROWDENERGY_CONFIG"


@dataclass(frozen=True)
class ScoringConfig:
    decay: float = C.DEFAULT_DECAY
    step_weight: float = C.DEFAULT_STEP_WEIGHT
    max_magnitude: float = C.DEFAULT_MAX_MAGNITUDE
    stillness_threshold: float = C.DEFAULT_STILLNESS_THRESHOLD
    idle_decay_enabled: bool = C.DEFAULT_IDLE_DECAY_ENABLED
    idle_decay_interval_seconds: float = C.DEFAULT_IDLE_DECAY_INTERVAL_SECONDS

    def __post_init__(self):
        if not 0.0 < self.decay < 1.0:
            raise ValueError(f"scoring.decay must be in (0, 1) (got {self.decay}).")
        if self.step_weight < 0 or self.max_magnitude < 0:
            raise ValueError("scoring.step_weight and scoring.max_magnitude must be non-negative.")
        if self.idle_decay_interval_seconds <= 0:
            raise ValueError("scoring.idle_decay.interval_seconds must be positive.")


@dataclass(frozen=True)
class TimelineConfig:
    min_resolution_seconds: int = C.MIN_RESOLUTION_SECONDS
    max_resolution_seconds: int = C.MAX_RESOLUTION_SECONDS
    default_resolution_seconds: int = C.DEFAULT_RESOLUTION_SECONDS
    min_window_minutes: int = C.MIN_WINDOW_MINUTES
    max_window_minutes: int = C.MAX_WINDOW_MINUTES
    default_window_minutes: int = C.DEFAULT_WINDOW_MINUTES
    max_peaks: int = C.DEFAULT_MAX_PEAKS


@dataclass(frozen=True)
class EngineConfig:
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    timeline: TimelineConfig = field(default_factory=TimelineConfig)
    leaderboard_cache_size: int = C.DEFAULT_LEADERBOARD_CACHE_SIZE
    cache_ttl_seconds: float = C.DEFAULT_CACHE_TTL_SECONDS
    refresh_interval_seconds: float = C.DEFAULT_REFRESH_INTERVAL_SECONDS
    refresh_enabled: bool = False
    snapshot_idle_seconds: float = C.DEFAULT_SNAPSHOT_IDLE_SECONDS
    storage_timeout_seconds: float = C.DEFAULT_STORAGE_TIMEOUT_SECONDS


def config_path() -> Path:
    """Resolve the engine.yml path, honouring the CROWDENERGY_CONFIG override."""
    override = os.getenv(CONFIG_ENV_VAR)
    return Path(override) if override else CONFIG_DIR / "engine.yml"


def load_engine_yaml(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load engine.yml with no hardcoded fallbacks.

    Raises:
        FileNotFoundError: If engine.yml is not found
        yaml.YAMLError: If YAML parsing fails
    """
    path = path or config_path()
    if not path.exists():
        logger.error(f"engine.yml not found at {path.absolute()}")
        raise FileNotFoundError(
            f"engine.yml not found at {path}. "
            f"Ensure config/ directory exists or set {CONFIG_ENV_VAR}."
        )
    with path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    logger.info(f"Loaded engine config from {path} (version {raw.get('version', 'unknown')})")
    return raw


def parse_engine_config(raw: Dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig from parsed YAML, applying environment overrides."""
    scoring = raw.get("scoring", {})
    idle = scoring.get("idle_decay", {})
    timeline = raw.get("timeline", {})
    resolution = timeline.get("resolution_seconds", {})
    window = timeline.get("window_minutes", {})
    cache = raw.get("cache", {})
    storage = raw.get("storage", {})

    scoring_cfg = ScoringConfig(
        decay=float(scoring["decay"]),
        step_weight=float(scoring["step_weight"]),
        max_magnitude=float(scoring["max_magnitude"]),
        stillness_threshold=float(scoring.get("stillness_threshold", C.DEFAULT_STILLNESS_THRESHOLD)),
        idle_decay_enabled=bool(idle.get("enabled", C.DEFAULT_IDLE_DECAY_ENABLED)),
        idle_decay_interval_seconds=float(idle.get("interval_seconds", C.DEFAULT_IDLE_DECAY_INTERVAL_SECONDS)),
    )
    timeline_cfg = TimelineConfig(
        min_resolution_seconds=int(resolution.get("min", C.MIN_RESOLUTION_SECONDS)),
        max_resolution_seconds=int(resolution.get("max", C.MAX_RESOLUTION_SECONDS)),
        default_resolution_seconds=int(resolution.get("default", C.DEFAULT_RESOLUTION_SECONDS)),
        min_window_minutes=int(window.get("min", C.MIN_WINDOW_MINUTES)),
        max_window_minutes=int(window.get("max", C.MAX_WINDOW_MINUTES)),
        default_window_minutes=int(window.get("default", C.DEFAULT_WINDOW_MINUTES)),
        max_peaks=int(timeline.get("max_peaks", C.DEFAULT_MAX_PEAKS)),
    )
    return EngineConfig(
        scoring=scoring_cfg,
        timeline=timeline_cfg,
        leaderboard_cache_size=int(raw.get("leaderboard", {}).get("cache_size", C.DEFAULT_LEADERBOARD_CACHE_SIZE)),
        cache_ttl_seconds=float(cache.get("ttl_seconds", C.DEFAULT_CACHE_TTL_SECONDS)),
        refresh_interval_seconds=float(cache.get("refresh_interval_seconds", C.DEFAULT_REFRESH_INTERVAL_SECONDS)),
        refresh_enabled=env_bool("REFRESH_ENABLED", bool(cache.get("refresh_enabled", False))),
        snapshot_idle_seconds=float(cache.get("idle_seconds", C.DEFAULT_SNAPSHOT_IDLE_SECONDS)),
        storage_timeout_seconds=env_float(
            "STORAGE_TIMEOUT_SECONDS",
            float(storage.get("timeout_seconds", C.DEFAULT_STORAGE_TIMEOUT_SECONDS)),
        ),
    )


@lru_cache(maxsize=1)
def load_engine_config() -> EngineConfig:
    """Load and cache the engine configuration for the process."""
    return parse_engine_config(load_engine_yaml())
