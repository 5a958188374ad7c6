"""
Autonomy Level Registry
=======================

Defines the graduated autonomy levels a tenant moves through and the static
capability descriptor attached to each level.

Progression:
1. ONBOARDING  - setup phase, no autonomy
2. SHADOW_MODE - observe only, the agent's outputs are scored but never executed
3. SUPERVISED  - effectful work needs approval
4. AUTONOMOUS  - escalation-only oversight
0. PAUSED      - temporarily disabled, reachable from any level

The registry is read-only at runtime. Changing what a level may do is a
deployment change to AUTONOMY_LEVELS, not a data operation.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional


class AutonomyLevel(IntEnum):
    """
    Autonomy levels ordered from least to most autonomous.

    PAUSED ranks below every working level so that "at or above" checks
    never grant a paused tenant anything.
    """
    PAUSED = 0
    ONBOARDING = 1
    SHADOW_MODE = 2
    SUPERVISED = 3
    AUTONOMOUS = 4

    @classmethod
    def parse(cls, value: "str | int | AutonomyLevel") -> "AutonomyLevel":
        """Accept a level, its name (any case) or its integer value."""
        if isinstance(value, AutonomyLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[str(value).strip().upper()]


@dataclass(frozen=True)
class ApprovalRequirements:
    """Which classes of action need human sign-off at a level."""
    all_tasks: bool
    effectful_tasks: bool
    first_contact: bool
    sensitive_topics: bool
    high_value_candidates: bool

    def to_dict(self) -> dict:
        return {
            "all_tasks": self.all_tasks,
            "effectful_tasks": self.effectful_tasks,
            "first_contact": self.first_contact,
            "sensitive_topics": self.sensitive_topics,
            "high_value_candidates": self.high_value_candidates,
        }


_ALL_REQUIRED = ApprovalRequirements(
    all_tasks=True,
    effectful_tasks=True,
    first_contact=True,
    sensitive_topics=True,
    high_value_candidates=True,
)


@dataclass(frozen=True)
class LevelCapabilities:
    """Capability descriptor owned by one autonomy level."""
    level: AutonomyLevel
    approval_required: ApprovalRequirements
    allowed_actions: frozenset[str] = field(default_factory=frozenset)
    blocked_actions: frozenset[str] = field(default_factory=frozenset)
    # Escalation rule names that are skipped at this level
    escalation_overrides: frozenset[str] = field(default_factory=frozenset)

    def is_blocked(self, action: str) -> bool:
        return action in self.blocked_actions

    def to_dict(self) -> dict:
        return {
            "level": self.level.name,
            "approval_required": self.approval_required.to_dict(),
            "allowed_actions": sorted(self.allowed_actions),
            "blocked_actions": sorted(self.blocked_actions),
            "escalation_overrides": sorted(self.escalation_overrides),
        }


AUTONOMY_LEVELS: dict[AutonomyLevel, LevelCapabilities] = {
    AutonomyLevel.ONBOARDING: LevelCapabilities(
        level=AutonomyLevel.ONBOARDING,
        approval_required=_ALL_REQUIRED,
        allowed_actions=frozenset({"read", "analyze", "draft"}),
        blocked_actions=frozenset({"send", "schedule", "update_ats", "delete"}),
    ),
    AutonomyLevel.SHADOW_MODE: LevelCapabilities(
        level=AutonomyLevel.SHADOW_MODE,
        approval_required=_ALL_REQUIRED,
        allowed_actions=frozenset({"read", "analyze", "draft", "compare"}),
        blocked_actions=frozenset({"send", "schedule", "update_ats", "delete"}),
    ),
    AutonomyLevel.SUPERVISED: LevelCapabilities(
        level=AutonomyLevel.SUPERVISED,
        approval_required=ApprovalRequirements(
            all_tasks=False,
            effectful_tasks=True,
            first_contact=True,
            sensitive_topics=True,
            high_value_candidates=True,
        ),
        allowed_actions=frozenset({"read", "analyze", "draft", "send", "schedule"}),
        blocked_actions=frozenset({"delete", "bulk_update"}),
    ),
    AutonomyLevel.AUTONOMOUS: LevelCapabilities(
        level=AutonomyLevel.AUTONOMOUS,
        approval_required=ApprovalRequirements(
            all_tasks=False,
            effectful_tasks=False,
            first_contact=False,
            sensitive_topics=True,
            high_value_candidates=True,
        ),
        allowed_actions=frozenset({"read", "analyze", "draft", "send", "schedule", "update_ats"}),
        blocked_actions=frozenset({"delete"}),
        escalation_overrides=frozenset({"routine_followup", "standard_screening"}),
    ),
    AutonomyLevel.PAUSED: LevelCapabilities(
        level=AutonomyLevel.PAUSED,
        approval_required=_ALL_REQUIRED,
        allowed_actions=frozenset({"read"}),
        blocked_actions=frozenset({"analyze", "draft", "send", "schedule", "update_ats", "delete"}),
    ),
}

# Promotion ladder; PAUSED and AUTONOMOUS have no successor
_PROMOTION_PATH: dict[AutonomyLevel, AutonomyLevel] = {
    AutonomyLevel.ONBOARDING: AutonomyLevel.SHADOW_MODE,
    AutonomyLevel.SHADOW_MODE: AutonomyLevel.SUPERVISED,
    AutonomyLevel.SUPERVISED: AutonomyLevel.AUTONOMOUS,
}

_DEMOTION_PATH: dict[AutonomyLevel, AutonomyLevel] = {
    AutonomyLevel.AUTONOMOUS: AutonomyLevel.SUPERVISED,
    AutonomyLevel.SUPERVISED: AutonomyLevel.SHADOW_MODE,
}


def level_of(level: AutonomyLevel) -> LevelCapabilities:
    """Get the capability descriptor for a level."""
    return AUTONOMY_LEVELS[level]


def is_at_or_above(current: AutonomyLevel, required: AutonomyLevel) -> bool:
    """Check whether `current` grants at least the autonomy of `required`."""
    return current >= required


def next_level(level: AutonomyLevel) -> Optional[AutonomyLevel]:
    """The level a tenant is promoted to, or None at the top or while paused."""
    return _PROMOTION_PATH.get(level)


def demotion_target(level: AutonomyLevel) -> Optional[AutonomyLevel]:
    """The level a tenant falls back to, or None if the level is not demotable."""
    return _DEMOTION_PATH.get(level)
