"""
Promotion / Demotion Evaluator
==============================

Pure gate checks that decide whether a tenant has earned the next autonomy
level or has breached the limits of its current one. Every gate is checked
and every failing gate is reported; nothing short-circuits.

The async wrappers that gather inputs live on AutonomyController.
"""

from dataclasses import dataclass, field
from typing import Optional

from autonomy_governor.config import DemotionThresholds, PromotionThresholds
from autonomy_governor.levels import AutonomyLevel, demotion_target, next_level
from autonomy_governor.metrics import AutonomyMetrics


@dataclass
class ShadowMetrics:
    """Shadow-mode alignment totals across all of a tenant's sessions."""
    interactions: int = 0
    compared: int = 0
    matches: int = 0

    @property
    def match_rate(self) -> float:
        if self.compared <= 0:
            return 0.0
        return min(1.0, self.matches / self.compared)

    def to_dict(self) -> dict:
        return {
            "interactions": self.interactions,
            "compared": self.compared,
            "matches": self.matches,
            "match_rate": self.match_rate,
        }


@dataclass
class PromotionEvaluation:
    eligible: bool
    current_level: AutonomyLevel
    next_level: Optional[AutonomyLevel] = None
    blockers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "eligible": self.eligible,
            "current_level": self.current_level.name,
            "next_level": self.next_level.name if self.next_level is not None else None,
            "blockers": list(self.blockers),
        }


@dataclass
class DemotionEvaluation:
    should_demote: bool
    current_level: AutonomyLevel
    suggested_level: Optional[AutonomyLevel] = None
    reasons: list[str] = field(default_factory=list)
    metrics: Optional[AutonomyMetrics] = None

    def to_dict(self) -> dict:
        return {
            "should_demote": self.should_demote,
            "current_level": self.current_level.name,
            "suggested_level": self.suggested_level.name if self.suggested_level is not None else None,
            "reasons": list(self.reasons),
        }


def _pct(rate: float) -> str:
    return f"{rate * 100:.1f}%"


def assess_promotion(
    level: AutonomyLevel,
    hours_in_level: float,
    thresholds: PromotionThresholds,
    shadow: Optional[ShadowMetrics] = None,
    metrics: Optional[AutonomyMetrics] = None,
) -> PromotionEvaluation:
    """
    Check every promotion gate for a tenant at `level`.

    Args:
        level: Current autonomy level
        hours_in_level: Time since the last transition
        thresholds: Promotion thresholds
        shadow: Shadow totals, consulted at SHADOW_MODE
        metrics: Weekly metrics, consulted at SUPERVISED

    Returns:
        PromotionEvaluation listing every failing gate
    """
    if level == AutonomyLevel.AUTONOMOUS:
        return PromotionEvaluation(
            eligible=False, current_level=level, blockers=["Already at maximum autonomy level"]
        )
    if level == AutonomyLevel.PAUSED:
        return PromotionEvaluation(
            eligible=False, current_level=level, blockers=["Tenant is paused - must be resumed first"]
        )

    blockers: list[str] = []

    min_hours = thresholds.min_hours(level)
    if hours_in_level < min_hours:
        blockers.append(f"Minimum time not met: {hours_in_level:.0f}h / {min_hours:g}h required")

    if level == AutonomyLevel.SHADOW_MODE:
        gates = thresholds.shadow_to_supervised
        if shadow is None:
            blockers.append("No shadow metrics available")
            shadow = ShadowMetrics()
        if shadow.interactions < gates.min_interactions:
            blockers.append(f"Interactions: {shadow.interactions} / {gates.min_interactions} required")
        if shadow.match_rate < gates.min_match_rate:
            blockers.append(
                f"Match rate: {_pct(shadow.match_rate)} / {gates.min_match_rate * 100:g}% required"
            )

    elif level == AutonomyLevel.SUPERVISED:
        gates = thresholds.supervised_to_autonomous
        if metrics is None:
            blockers.append("No metrics available")
        else:
            if metrics.approved_tasks < gates.min_approvals:
                blockers.append(
                    f"Approved tasks: {metrics.approved_tasks} / {gates.min_approvals} required"
                )
            if metrics.approval_rate < gates.approval_rate:
                blockers.append(
                    f"Approval rate: {_pct(metrics.approval_rate)} / {gates.approval_rate * 100:g}% required"
                )
            if metrics.error_rate > gates.error_rate_max:
                blockers.append(
                    f"Error rate: {_pct(metrics.error_rate)} / {gates.error_rate_max * 100:g}% max"
                )
            if metrics.response_samples == 0:
                blockers.append("Response rate: no candidate responses tracked")
            elif metrics.response_rate < gates.response_rate_min:
                blockers.append(
                    f"Response rate: {_pct(metrics.response_rate)} / {gates.response_rate_min * 100:g}% required"
                )

    return PromotionEvaluation(
        eligible=not blockers,
        current_level=level,
        next_level=next_level(level),
        blockers=blockers,
    )


def assess_demotion(
    level: AutonomyLevel,
    thresholds: DemotionThresholds,
    metrics: Optional[AutonomyMetrics],
) -> DemotionEvaluation:
    """
    Check a SUPERVISED or AUTONOMOUS tenant's metrics against the breach limits.

    Other levels are never demoted.
    """
    target = demotion_target(level)
    if target is None or metrics is None:
        return DemotionEvaluation(should_demote=False, current_level=level, metrics=metrics)

    reasons: list[str] = []
    if metrics.error_rate > thresholds.error_rate_max:
        reasons.append(f"Error rate too high: {_pct(metrics.error_rate)}")
    if metrics.rejection_rate > thresholds.rejection_rate_max:
        reasons.append(f"Rejection rate too high: {_pct(metrics.rejection_rate)}")
    if metrics.complaints > thresholds.complaints_max:
        reasons.append(f"Too many complaints: {metrics.complaints}")
    if metrics.response_samples > 0 and metrics.response_rate < thresholds.response_rate_min:
        reasons.append(f"Response rate too low: {_pct(metrics.response_rate)}")

    if not reasons:
        return DemotionEvaluation(should_demote=False, current_level=level, metrics=metrics)

    return DemotionEvaluation(
        should_demote=True,
        current_level=level,
        suggested_level=target,
        reasons=reasons,
        metrics=metrics,
    )
