"""
Autonomy Controller
===================

Operator-facing API over the level registry, escalation engine, metrics
aggregator, promotion/demotion evaluator and transition controller.

Tenants are read through a small cache. The cached entry for a tenant is
dropped on every transition and on every concurrency conflict, so the next
read goes to the store.

Usage:
    controller = AutonomyController(tenant_store, transition_store, task_store, shadow_store)
    evaluation = await controller.evaluate_promotion("tenant-1")
    if evaluation.eligible:
        await controller.promote_tenant("tenant-1", approved_by="ops@example.com")
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional, Protocol, Sequence

from autonomy_governor.config import GovernorConfig
from autonomy_governor.errors import ConfigurationError, ConflictError, ExternalServiceError, InvalidStateError
from autonomy_governor.escalation import (
    ActionContext,
    ApprovalDecision,
    CustomEvaluator,
    EscalationEngine,
    EscalationRule,
    EscalationRuleStore,
)
from autonomy_governor.evaluator import (
    DemotionEvaluation,
    PromotionEvaluation,
    ShadowMetrics,
    assess_demotion,
    assess_promotion,
)
from autonomy_governor.levels import AutonomyLevel, demotion_target, level_of
from autonomy_governor.metrics import AutonomyMetrics, MetricsAggregator, MetricsPeriod, TaskStore
from autonomy_governor.transitions import (
    AutonomyTransition,
    InitiatedBy,
    Tenant,
    TenantStore,
    TransitionController,
    TransitionStore,
    requires_approver,
)

logger = logging.getLogger(__name__)

PROMOTION_REASON = "Promotion based on performance metrics"


class ShadowMetricsSource(Protocol):
    async def get_shadow_metrics(self, tenant_id: str) -> ShadowMetrics: ...


@dataclass
class ReviewOutcome:
    """Result of one governance review of a tenant."""
    tenant_id: str
    demotion: DemotionEvaluation
    promotion: Optional[PromotionEvaluation] = None
    transition: Optional[AutonomyTransition] = None

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "demotion": self.demotion.to_dict(),
            "promotion": self.promotion.to_dict() if self.promotion else None,
            "transition": self.transition.to_dict() if self.transition else None,
        }


class AutonomyController:
    """Evaluates and changes tenant autonomy levels."""

    def __init__(
        self,
        tenant_store: TenantStore,
        transition_store: TransitionStore,
        task_store: TaskStore,
        shadow_metrics: ShadowMetricsSource,
        config: Optional[GovernorConfig] = None,
        rules: Optional[Sequence[EscalationRule]] = None,
        custom_evaluators: Optional[Mapping[str, CustomEvaluator]] = None,
        rule_store: Optional[EscalationRuleStore] = None,
    ):
        self.config = config or GovernorConfig()
        self._tenant_store = tenant_store
        self._shadow_metrics = shadow_metrics
        self._tenants: dict[str, Tenant] = {}

        self.transitions = TransitionController(tenant_store, transition_store)
        self.metrics = MetricsAggregator(task_store)
        self.escalation = EscalationEngine(
            self.get_autonomy_level,
            rules=rules,
            custom_evaluators=custom_evaluators,
            rule_store=rule_store,
        )

    # =========================================================================
    # Tenant Cache
    # =========================================================================

    async def get_tenant(self, tenant_id: str) -> Tenant:
        """
        Raises:
            ConfigurationError: unknown tenant
        """
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            tenant = await self._tenant_store.get_tenant(tenant_id)
            if tenant is None:
                raise ConfigurationError(f"Tenant not found: {tenant_id}")
            self._tenants[tenant_id] = tenant
        return tenant

    def invalidate(self, tenant_id: str) -> None:
        self._tenants.pop(tenant_id, None)

    def reset(self) -> None:
        """Drop every cached tenant."""
        self._tenants.clear()

    async def register_tenant(
        self,
        tenant_id: str,
        name: str,
        level: AutonomyLevel = AutonomyLevel.ONBOARDING,
    ) -> Tenant:
        if await self._tenant_store.get_tenant(tenant_id) is not None:
            raise ConfigurationError(f"Tenant already exists: {tenant_id}")
        now = datetime.now(timezone.utc)
        tenant = await self._tenant_store.create_tenant(
            Tenant(id=tenant_id, name=name, level=level, level_since=now, created_at=now)
        )
        logger.info("Registered tenant %s at %s", tenant_id, level.name)
        return tenant

    async def list_tenants(self) -> list[Tenant]:
        return await self._tenant_store.list_tenants()

    # =========================================================================
    # Level Queries
    # =========================================================================

    async def get_autonomy_level(self, tenant_id: str) -> AutonomyLevel:
        return (await self.get_tenant(tenant_id)).level

    async def get_status(self, tenant_id: str) -> dict:
        """Tenant record plus the capabilities of its current level."""
        tenant = await self.get_tenant(tenant_id)
        return {
            **tenant.to_dict(),
            "hours_in_level": round(tenant.hours_in_level(), 1),
            "capabilities": level_of(tenant.level).to_dict(),
        }

    async def requires_approval(
        self,
        tenant_id: str,
        action: str,
        context: ActionContext,
    ) -> ApprovalDecision:
        return await self.escalation.requires_approval(tenant_id, action, context)

    async def calculate_metrics(
        self,
        tenant_id: str,
        period: MetricsPeriod = MetricsPeriod.WEEK,
    ) -> AutonomyMetrics:
        await self.get_tenant(tenant_id)
        return await self.metrics.calculate_metrics(tenant_id, period)

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def _weekly_metrics(self, tenant_id: str) -> Optional[AutonomyMetrics]:
        try:
            return await self.metrics.calculate_metrics(tenant_id, MetricsPeriod.WEEK)
        except ExternalServiceError as e:
            logger.warning("Metrics unavailable for %s, evaluating without them: %s", tenant_id, e)
            return None

    async def _shadow_totals(self, tenant_id: str) -> Optional[ShadowMetrics]:
        try:
            return await self._shadow_metrics.get_shadow_metrics(tenant_id)
        except Exception as e:
            logger.warning("Shadow metrics unavailable for %s, evaluating without them: %s", tenant_id, e)
            return None

    async def evaluate_promotion(self, tenant_id: str) -> PromotionEvaluation:
        """
        Check the promotion gates for a tenant.

        Metrics that cannot be read never raise; they leave the tenant
        blocked.
        """
        tenant = await self.get_tenant(tenant_id)

        shadow = None
        metrics = None
        if tenant.level == AutonomyLevel.SHADOW_MODE:
            shadow = await self._shadow_totals(tenant_id)
        elif tenant.level == AutonomyLevel.SUPERVISED:
            metrics = await self._weekly_metrics(tenant_id)

        return assess_promotion(
            tenant.level,
            tenant.hours_in_level(),
            self.config.promotion,
            shadow=shadow,
            metrics=metrics,
        )

    async def evaluate_demotion(self, tenant_id: str) -> DemotionEvaluation:
        """Check the demotion limits; without readable metrics nothing is demoted."""
        tenant = await self.get_tenant(tenant_id)
        if demotion_target(tenant.level) is None:
            return assess_demotion(tenant.level, self.config.demotion, None)

        metrics = await self._weekly_metrics(tenant_id)
        return assess_demotion(tenant.level, self.config.demotion, metrics)

    # =========================================================================
    # Transitions
    # =========================================================================

    async def _transition(
        self,
        tenant: Tenant,
        to_level: AutonomyLevel,
        reason: str,
        initiated_by: InitiatedBy,
        approved_by: Optional[str],
    ) -> AutonomyTransition:
        try:
            record = await self.transitions.transition(
                tenant.id, tenant.level, to_level, reason, initiated_by, approved_by
            )
        except ConflictError:
            self.invalidate(tenant.id)
            raise
        self.invalidate(tenant.id)
        return record

    async def promote_tenant(
        self,
        tenant_id: str,
        approved_by: Optional[str] = None,
    ) -> AutonomyTransition:
        """
        Move a tenant to the next level.

        Raises:
            InvalidStateError: not eligible, or an approver is required
            ConflictError: the level changed concurrently
        """
        evaluation = await self.evaluate_promotion(tenant_id)
        if not evaluation.eligible or evaluation.next_level is None:
            raise InvalidStateError(
                f"Tenant not eligible for promotion: {', '.join(evaluation.blockers)}"
            )

        tenant = await self.get_tenant(tenant_id)
        return await self._transition(
            tenant,
            evaluation.next_level,
            PROMOTION_REASON,
            InitiatedBy.OPERATOR if approved_by else InitiatedBy.SYSTEM,
            approved_by,
        )

    async def demote_tenant(
        self,
        tenant_id: str,
        reason: str,
        initiated_by: InitiatedBy = InitiatedBy.SYSTEM,
        approved_by: Optional[str] = None,
    ) -> AutonomyTransition:
        """Move a SUPERVISED or AUTONOMOUS tenant one step down."""
        tenant = await self.get_tenant(tenant_id)
        target = demotion_target(tenant.level)
        if target is None:
            raise InvalidStateError(
                f"Cannot determine demotion target level for {tenant.level.name}"
            )
        return await self._transition(tenant, target, reason, initiated_by, approved_by)

    async def pause_tenant(
        self,
        tenant_id: str,
        reason: str,
        paused_by: Optional[str] = None,
    ) -> AutonomyTransition:
        tenant = await self.get_tenant(tenant_id)
        return await self._transition(
            tenant,
            AutonomyLevel.PAUSED,
            reason,
            InitiatedBy.OPERATOR if paused_by else InitiatedBy.SYSTEM,
            paused_by,
        )

    async def resume_tenant(
        self,
        tenant_id: str,
        level: AutonomyLevel,
        approved_by: str,
    ) -> AutonomyTransition:
        """
        Bring a paused tenant back to a working level.

        Raises:
            InvalidStateError: the tenant is not paused, or no approver given
        """
        tenant = await self.get_tenant(tenant_id)
        if tenant.level != AutonomyLevel.PAUSED:
            raise InvalidStateError(f"Tenant {tenant_id} is not paused")
        return await self._transition(
            tenant, level, "Resumed by operator", InitiatedBy.OPERATOR, approved_by
        )

    async def get_transition_history(self, tenant_id: str) -> list[AutonomyTransition]:
        await self.get_tenant(tenant_id)
        return await self.transitions.history(tenant_id)

    # =========================================================================
    # Governance Review
    # =========================================================================

    async def review_tenant(self, tenant_id: str) -> ReviewOutcome:
        """
        Demote on breach; otherwise promote when eligible and the target
        level needs no approver.
        """
        demotion = await self.evaluate_demotion(tenant_id)
        if demotion.should_demote:
            transition = await self.demote_tenant(
                tenant_id, "; ".join(demotion.reasons), InitiatedBy.SYSTEM
            )
            logger.warning("Tenant %s demoted: %s", tenant_id, "; ".join(demotion.reasons))
            return ReviewOutcome(tenant_id=tenant_id, demotion=demotion, transition=transition)

        promotion = await self.evaluate_promotion(tenant_id)
        transition = None
        if (
            promotion.eligible
            and promotion.next_level is not None
            and not requires_approver(promotion.current_level, promotion.next_level)
        ):
            transition = await self.promote_tenant(tenant_id)
        elif promotion.eligible:
            logger.info(
                "Tenant %s eligible for %s, awaiting operator approval",
                tenant_id, promotion.next_level.name,
            )

        return ReviewOutcome(
            tenant_id=tenant_id,
            demotion=demotion,
            promotion=promotion,
            transition=transition,
        )
