"""
Tests for Configuration Management
==================================
"""

import json

import pytest

from autonomy_governor.config import (
    DEFAULT_DB_PATH,
    GovernorConfig,
    PromotionThresholds,
)
from autonomy_governor.errors import ConfigurationError
from autonomy_governor.levels import AutonomyLevel


ENV_VARS = [
    "GOVERNOR_DB_PATH",
    "GOVERNOR_MODEL",
    "GOVERNOR_EXTERNAL_TIMEOUT",
    "GOVERNOR_COMPARISON_THRESHOLD",
    "GOVERNOR_LEARNING_BATCH_SIZE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, temp_dir):
    """Isolate tests from the caller's environment and any local .env."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(temp_dir)


class TestDefaults:
    def test_defaults(self):
        config = GovernorConfig()
        assert config.db_path == DEFAULT_DB_PATH
        assert config.promotion.shadow_to_supervised.min_interactions == 100
        assert config.promotion.shadow_to_supervised.min_match_rate == 0.7
        assert config.promotion.supervised_to_autonomous.min_approvals == 200
        assert config.demotion.error_rate_max == 0.15
        assert config.demotion.complaints_max == 3
        assert config.shadow.comparison_threshold == 0.7
        assert config.shadow.learning_batch_size == 10
        assert len(config.shadow.capture_types) == 5

    def test_min_durations(self):
        thresholds = PromotionThresholds()
        assert thresholds.min_hours(AutonomyLevel.ONBOARDING) == 1
        assert thresholds.min_hours(AutonomyLevel.SHADOW_MODE) == 168
        assert thresholds.min_hours(AutonomyLevel.SUPERVISED) == 336

    def test_defaults_validate(self):
        GovernorConfig().validate()


class TestFromDict:
    """Tests for GovernorConfig.from_dict."""

    def test_round_trip(self):
        config = GovernorConfig()
        config.demotion.error_rate_max = 0.2
        restored = GovernorConfig.from_dict(config.to_dict())
        assert restored.to_dict() == config.to_dict()

    def test_partial_overrides(self):
        config = GovernorConfig.from_dict({
            "promotion": {
                "shadow_to_supervised": {"min_interactions": 50},
                "min_duration_hours": {"shadow_mode": 24},
            },
            "shadow": {"learning_batch_size": 5},
        })
        assert config.promotion.shadow_to_supervised.min_interactions == 50
        assert config.promotion.shadow_to_supervised.min_match_rate == 0.7
        assert config.promotion.min_hours(AutonomyLevel.SHADOW_MODE) == 24
        assert config.promotion.min_hours(AutonomyLevel.SUPERVISED) == 336
        assert config.shadow.learning_batch_size == 5

    def test_unknown_level(self):
        with pytest.raises(ConfigurationError, match="Unknown autonomy level"):
            GovernorConfig.from_dict({"promotion": {"min_duration_hours": {"trusted": 1}}})

    def test_unknown_field(self):
        with pytest.raises(ConfigurationError):
            GovernorConfig.from_dict({"demotion": {"max_typos": 3}})

    @pytest.mark.parametrize("data", [
        {"demotion": {"error_rate_max": 1.5}},
        {"shadow": {"comparison_threshold": -0.1}},
        {"shadow": {"learning_batch_size": 0}},
        {"shadow": {"capture_types": ["carrier_pigeon"]}},
        {"external_call_timeout_seconds": 0},
    ])
    def test_invalid_values(self, data):
        with pytest.raises(ConfigurationError):
            GovernorConfig.from_dict(data)


class TestLoad:
    """Tests for GovernorConfig.load."""

    def test_load_without_file(self):
        assert GovernorConfig.load().to_dict() == GovernorConfig().to_dict()

    def test_load_from_file(self, temp_dir):
        path = temp_dir / "custom.json"
        path.write_text(json.dumps({"model": "claude-test", "shadow": {"comparison_threshold": 0.8}}))

        config = GovernorConfig.load(path)
        assert config.model == "claude-test"
        assert config.shadow.comparison_threshold == 0.8

    def test_default_file_name(self, temp_dir):
        (temp_dir / "governor_config.json").write_text(json.dumps({"db_path": "data/gov.db"}))
        assert GovernorConfig.load().db_path == "data/gov.db"

    def test_unreadable_file_uses_defaults(self, temp_dir):
        (temp_dir / "governor_config.json").write_text("{not json")
        assert GovernorConfig.load().model == GovernorConfig().model

    def test_env_overrides_file(self, temp_dir, monkeypatch):
        (temp_dir / "governor_config.json").write_text(json.dumps({
            "db_path": "from-file.db",
            "shadow": {"comparison_threshold": 0.8, "learning_batch_size": 4},
        }))
        monkeypatch.setenv("GOVERNOR_DB_PATH", "from-env.db")
        monkeypatch.setenv("GOVERNOR_COMPARISON_THRESHOLD", "0.65")
        monkeypatch.setenv("GOVERNOR_EXTERNAL_TIMEOUT", "15")

        config = GovernorConfig.load()
        assert config.db_path == "from-env.db"
        assert config.shadow.comparison_threshold == 0.65
        assert config.shadow.learning_batch_size == 4
        assert config.external_call_timeout_seconds == 15.0

    def test_bad_env_value(self, monkeypatch):
        monkeypatch.setenv("GOVERNOR_LEARNING_BATCH_SIZE", "ten")
        with pytest.raises(ConfigurationError, match="Invalid environment override"):
            GovernorConfig.load()
