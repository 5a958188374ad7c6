"""
Configuration Management
========================

Handles loading governance configuration from defaults, an optional JSON
config file and environment variables.

Precedence (highest first):
1. Environment variables (GOVERNOR_*), after .env is loaded
2. Local config file (governor_config.json)
3. Default values
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from autonomy_governor.errors import ConfigurationError
from autonomy_governor.interactions import CaptureType
from autonomy_governor.levels import AutonomyLevel

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_DB_PATH = ".governor/governor.db"
CONFIG_FILENAME = "governor_config.json"

# Hours a tenant must spend in a level before it can be promoted out of it
DEFAULT_MIN_DURATION_HOURS: dict[AutonomyLevel, float] = {
    AutonomyLevel.ONBOARDING: 1,
    AutonomyLevel.SHADOW_MODE: 168,   # 7 days
    AutonomyLevel.SUPERVISED: 336,    # 14 days
    AutonomyLevel.AUTONOMOUS: 0,
    AutonomyLevel.PAUSED: 0,
}


@dataclass
class ShadowPromotionThresholds:
    """Gates for SHADOW_MODE -> SUPERVISED."""
    min_interactions: int = 100
    min_match_rate: float = 0.7


@dataclass
class SupervisedPromotionThresholds:
    """Gates for SUPERVISED -> AUTONOMOUS."""
    min_approvals: int = 200
    approval_rate: float = 0.9
    error_rate_max: float = 0.05
    response_rate_min: float = 0.1


@dataclass
class PromotionThresholds:
    shadow_to_supervised: ShadowPromotionThresholds = field(default_factory=ShadowPromotionThresholds)
    supervised_to_autonomous: SupervisedPromotionThresholds = field(
        default_factory=SupervisedPromotionThresholds
    )
    min_duration_hours: dict[AutonomyLevel, float] = field(
        default_factory=lambda: dict(DEFAULT_MIN_DURATION_HOURS)
    )

    def min_hours(self, level: AutonomyLevel) -> float:
        return self.min_duration_hours.get(level, 0)

    def to_dict(self) -> dict:
        return {
            "shadow_to_supervised": {
                "min_interactions": self.shadow_to_supervised.min_interactions,
                "min_match_rate": self.shadow_to_supervised.min_match_rate,
            },
            "supervised_to_autonomous": {
                "min_approvals": self.supervised_to_autonomous.min_approvals,
                "approval_rate": self.supervised_to_autonomous.approval_rate,
                "error_rate_max": self.supervised_to_autonomous.error_rate_max,
                "response_rate_min": self.supervised_to_autonomous.response_rate_min,
            },
            "min_duration_hours": {
                level.name: hours for level, hours in self.min_duration_hours.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PromotionThresholds":
        durations = dict(DEFAULT_MIN_DURATION_HOURS)
        for name, hours in data.get("min_duration_hours", {}).items():
            try:
                durations[AutonomyLevel.parse(name)] = float(hours)
            except KeyError:
                raise ConfigurationError(f"Unknown autonomy level in min_duration_hours: {name}")
        return cls(
            shadow_to_supervised=ShadowPromotionThresholds(**data.get("shadow_to_supervised", {})),
            supervised_to_autonomous=SupervisedPromotionThresholds(
                **data.get("supervised_to_autonomous", {})
            ),
            min_duration_hours=durations,
        )


@dataclass
class DemotionThresholds:
    """Breach limits that trigger a demotion (weekly window)."""
    error_rate_max: float = 0.15
    rejection_rate_max: float = 0.3
    complaints_max: int = 3
    response_rate_min: float = 0.05

    def to_dict(self) -> dict:
        return {
            "error_rate_max": self.error_rate_max,
            "rejection_rate_max": self.rejection_rate_max,
            "complaints_max": self.complaints_max,
            "response_rate_min": self.response_rate_min,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DemotionThresholds":
        return cls(**data)


@dataclass
class ShadowDefaults:
    """Defaults applied to new shadow-mode runners."""
    capture_types: list[str] = field(default_factory=lambda: [
        "outreach_message",
        "follow_up_message",
        "screening_decision",
        "scheduling_action",
        "candidate_response_handling",
    ])
    comparison_threshold: float = 0.7
    learning_batch_size: int = 10


@dataclass
class GovernorConfig:
    """Governance engine configuration."""
    db_path: str = DEFAULT_DB_PATH
    model: str = DEFAULT_MODEL
    # Upper bound for any single generation/evaluation call
    external_call_timeout_seconds: float = 60.0
    promotion: PromotionThresholds = field(default_factory=PromotionThresholds)
    demotion: DemotionThresholds = field(default_factory=DemotionThresholds)
    shadow: ShadowDefaults = field(default_factory=ShadowDefaults)

    def validate(self) -> None:
        """Reject values that would make the gates meaningless."""
        rates = {
            "promotion.shadow_to_supervised.min_match_rate": self.promotion.shadow_to_supervised.min_match_rate,
            "promotion.supervised_to_autonomous.approval_rate": self.promotion.supervised_to_autonomous.approval_rate,
            "promotion.supervised_to_autonomous.error_rate_max": self.promotion.supervised_to_autonomous.error_rate_max,
            "promotion.supervised_to_autonomous.response_rate_min": self.promotion.supervised_to_autonomous.response_rate_min,
            "demotion.error_rate_max": self.demotion.error_rate_max,
            "demotion.rejection_rate_max": self.demotion.rejection_rate_max,
            "demotion.response_rate_min": self.demotion.response_rate_min,
            "shadow.comparison_threshold": self.shadow.comparison_threshold,
        }
        for name, value in rates.items():
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
        known_types = {t.value for t in CaptureType}
        for name in self.shadow.capture_types:
            if name not in known_types:
                raise ConfigurationError(f"Unknown capture type: {name}")
        if self.shadow.learning_batch_size < 1:
            raise ConfigurationError("shadow.learning_batch_size must be at least 1")
        if self.external_call_timeout_seconds <= 0:
            raise ConfigurationError("external_call_timeout_seconds must be positive")

    def to_dict(self) -> dict:
        return {
            "db_path": self.db_path,
            "model": self.model,
            "external_call_timeout_seconds": self.external_call_timeout_seconds,
            "promotion": self.promotion.to_dict(),
            "demotion": self.demotion.to_dict(),
            "shadow": {
                "capture_types": list(self.shadow.capture_types),
                "comparison_threshold": self.shadow.comparison_threshold,
                "learning_batch_size": self.shadow.learning_batch_size,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GovernorConfig":
        try:
            config = cls(
                db_path=data.get("db_path", DEFAULT_DB_PATH),
                model=data.get("model", DEFAULT_MODEL),
                external_call_timeout_seconds=float(data.get("external_call_timeout_seconds", 60.0)),
                promotion=PromotionThresholds.from_dict(data.get("promotion", {})),
                demotion=DemotionThresholds.from_dict(data.get("demotion", {})),
                shadow=ShadowDefaults(**data.get("shadow", {})),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}")
        config.validate()
        return config

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "GovernorConfig":
        """
        Load configuration from multiple sources in precedence order.

        Args:
            config_path: Explicit config file; defaults to ./governor_config.json

        Returns:
            Validated GovernorConfig
        """
        load_dotenv()

        data: dict[str, Any] = {}

        path = Path(config_path) if config_path else Path(CONFIG_FILENAME)
        if path.exists():
            try:
                with open(path, "r") as f:
                    data.update(json.load(f))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config file %s: %s", path, e)

        env_overrides = {
            "GOVERNOR_DB_PATH": ("db_path", str),
            "GOVERNOR_MODEL": ("model", str),
            "GOVERNOR_EXTERNAL_TIMEOUT": ("external_call_timeout_seconds", float),
        }
        shadow = dict(data.get("shadow", {}))
        shadow_overrides = {
            "GOVERNOR_COMPARISON_THRESHOLD": ("comparison_threshold", float),
            "GOVERNOR_LEARNING_BATCH_SIZE": ("learning_batch_size", int),
        }

        try:
            for env_name, (key, cast) in env_overrides.items():
                value = os.environ.get(env_name)
                if value:
                    data[key] = cast(value)
            for env_name, (key, cast) in shadow_overrides.items():
                value = os.environ.get(env_name)
                if value:
                    shadow[key] = cast(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment override: {e}")

        if shadow:
            data["shadow"] = shadow

        return cls.from_dict(data)
