"""
Unit tests for engine configuration loading.
"""

from pathlib import Path

import pytest

from crowdenergy.common.config import (
    CONFIG_DIR,
    ScoringConfig,
    load_engine_yaml,
    parse_engine_config,
)


class TestEngineConfig:
    """Test config/engine.yml loading and overrides."""

    def test_repository_config(self):
        cfg = parse_engine_config(load_engine_yaml(CONFIG_DIR / "engine.yml"))
        assert cfg.scoring.decay == 0.98
        assert cfg.scoring.step_weight == 3.0
        assert cfg.scoring.max_magnitude == 50.0
        assert cfg.timeline.min_resolution_seconds == 10
        assert cfg.timeline.max_resolution_seconds == 600
        assert cfg.timeline.max_peaks == 5
        assert cfg.leaderboard_cache_size == 100
        assert cfg.snapshot_idle_seconds == 60.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_engine_yaml(tmp_path / "missing.yml")

    def test_env_override_path(self, tmp_path, monkeypatch):
        path = tmp_path / "engine.yml"
        path.write_text("scoring:\n  decay: 0.9\n  step_weight: 1\n  max_magnitude: 10\n")
        monkeypatch.setenv("CROWDENERGY_CONFIG", str(path))
        cfg = parse_engine_config(load_engine_yaml())
        assert cfg.scoring.decay == 0.9
        assert cfg.timeline.default_resolution_seconds == 30

    def test_operational_env_overrides(self, monkeypatch):
        monkeypatch.setenv("REFRESH_ENABLED", "true")
        monkeypatch.setenv("STORAGE_TIMEOUT_SECONDS", "0.5")
        cfg = parse_engine_config(load_engine_yaml(CONFIG_DIR / "engine.yml"))
        assert cfg.refresh_enabled is True
        assert cfg.storage_timeout_seconds == 0.5

    @pytest.mark.parametrize("decay", [0.0, 1.0, 1.5])
    def test_decay_must_be_fraction(self, decay):
        with pytest.raises(ValueError):
            ScoringConfig(decay=decay)

    def test_config_dir_exists(self):
        assert Path(CONFIG_DIR, "engine.yml").exists()
