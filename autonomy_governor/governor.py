"""
Governor
========

Service container and facade for the governance engine. A Governor owns the
database, the stores, the autonomy controller and one shadow-mode runner
per tenant. There are no module-level singletons; tests build their own
Governor and call `reset()` or `close()` between cases.

Usage:
    governor = await build_governor(GovernorConfig.load())
    await governor.register_tenant("acme", "Acme Corp")
    decision = await governor.requires_approval("acme", "send", ActionContext(is_effectful=True))
"""

import logging
from typing import Mapping, Optional, Sequence

from autonomy_governor.alternatives import AlternativeGenerator
from autonomy_governor.autonomy import AutonomyController, ReviewOutcome
from autonomy_governor.comparator import Comparator
from autonomy_governor.config import GovernorConfig
from autonomy_governor.db.connection import Database, init_db
from autonomy_governor.db.stores import (
    SqlEscalationRuleStore,
    SqlGuidelinesStore,
    SqlShadowStore,
    SqlTaskStore,
    SqlTenantStore,
    SqlTransitionStore,
)
from autonomy_governor.errors import InvalidStateError
from autonomy_governor.escalation import ActionContext, ApprovalDecision, CustomEvaluator, EscalationRule
from autonomy_governor.evaluator import DemotionEvaluation, PromotionEvaluation
from autonomy_governor.interactions import CaptureType, CapturedInteraction, HumanAction, InteractionContext
from autonomy_governor.learning import LearningAggregator, ShadowLearning
from autonomy_governor.levels import AutonomyLevel
from autonomy_governor.metrics import AutonomyMetrics, MetricsPeriod
from autonomy_governor.services import (
    ClaudeGenerationService,
    EvaluationService,
    GenerationService,
    LLMEvaluationService,
)
from autonomy_governor.shadow import ShadowModeConfig, ShadowModeRunner, ShadowSession
from autonomy_governor.transitions import AutonomyTransition, InitiatedBy, Tenant

logger = logging.getLogger(__name__)


class Governor:
    """Facade over every governance operation."""

    def __init__(
        self,
        config: GovernorConfig,
        db: Database,
        generation: GenerationService,
        evaluation: Optional[EvaluationService] = None,
        rules: Optional[Sequence[EscalationRule]] = None,
        custom_evaluators: Optional[Mapping[str, CustomEvaluator]] = None,
    ):
        self.config = config
        self.db = db

        self.tenant_store = SqlTenantStore(db)
        self.transition_store = SqlTransitionStore(db)
        self.task_store = SqlTaskStore(db)
        self.rule_store = SqlEscalationRuleStore(db)
        self.shadow_store = SqlShadowStore(db)
        self.guidelines_store = SqlGuidelinesStore(db)

        self.controller = AutonomyController(
            self.tenant_store,
            self.transition_store,
            self.task_store,
            self.shadow_store,
            config=config,
            rules=rules,
            custom_evaluators=custom_evaluators,
            rule_store=self.rule_store,
        )

        timeout = config.external_call_timeout_seconds
        self._generation = generation
        self._evaluation = evaluation or LLMEvaluationService(generation)
        self.generator = AlternativeGenerator(generation, timeout=timeout)
        self.aggregator = LearningAggregator(generation, timeout=timeout)

        self._shadow_configs: dict[str, ShadowModeConfig] = {}
        self._runners: dict[str, ShadowModeRunner] = {}

    async def start(self) -> "Governor":
        """Load persisted custom escalation rules."""
        await self.controller.escalation.load_custom_rules()
        return self

    def reset(self) -> None:
        """
        Drop cached shadow runners and cached tenants.

        Raises:
            InvalidStateError: a runner still has generations in flight
        """
        busy = [tenant_id for tenant_id, runner in self._runners.items() if runner.inflight_count]
        if busy:
            raise InvalidStateError(
                f"Shadow runners busy for {', '.join(sorted(busy))}; await wait_idle() first"
            )
        self._runners.clear()
        self.controller.reset()

    async def close(self) -> None:
        for runner in list(self._runners.values()):
            await runner.wait_idle()
        self.reset()
        await self.db.dispose()

    # =========================================================================
    # Tenants and Autonomy
    # =========================================================================

    async def register_tenant(
        self,
        tenant_id: str,
        name: str,
        level: AutonomyLevel = AutonomyLevel.ONBOARDING,
    ) -> Tenant:
        return await self.controller.register_tenant(tenant_id, name, level)

    async def get_autonomy_level(self, tenant_id: str) -> AutonomyLevel:
        return await self.controller.get_autonomy_level(tenant_id)

    async def requires_approval(self, tenant_id: str, action: str, context: ActionContext) -> ApprovalDecision:
        return await self.controller.requires_approval(tenant_id, action, context)

    async def evaluate_promotion(self, tenant_id: str) -> PromotionEvaluation:
        return await self.controller.evaluate_promotion(tenant_id)

    async def evaluate_demotion(self, tenant_id: str) -> DemotionEvaluation:
        return await self.controller.evaluate_demotion(tenant_id)

    async def promote_tenant(self, tenant_id: str, approved_by: Optional[str] = None) -> AutonomyTransition:
        return await self.controller.promote_tenant(tenant_id, approved_by)

    async def demote_tenant(
        self,
        tenant_id: str,
        reason: str,
        initiated_by: InitiatedBy = InitiatedBy.SYSTEM,
        approved_by: Optional[str] = None,
    ) -> AutonomyTransition:
        return await self.controller.demote_tenant(tenant_id, reason, initiated_by, approved_by)

    async def pause_tenant(self, tenant_id: str, reason: str, paused_by: Optional[str] = None) -> AutonomyTransition:
        return await self.controller.pause_tenant(tenant_id, reason, paused_by)

    async def resume_tenant(self, tenant_id: str, level: AutonomyLevel, approved_by: str) -> AutonomyTransition:
        return await self.controller.resume_tenant(tenant_id, level, approved_by)

    async def calculate_metrics(
        self,
        tenant_id: str,
        period: MetricsPeriod = MetricsPeriod.WEEK,
    ) -> AutonomyMetrics:
        return await self.controller.calculate_metrics(tenant_id, period)

    async def get_transition_history(self, tenant_id: str) -> list[AutonomyTransition]:
        return await self.controller.get_transition_history(tenant_id)

    async def review_tenant(self, tenant_id: str) -> ReviewOutcome:
        return await self.controller.review_tenant(tenant_id)

    # =========================================================================
    # Shadow Mode
    # =========================================================================

    async def configure_shadow(self, config: ShadowModeConfig) -> None:
        """
        Set a tenant's shadow-mode config.

        The tenant's current runner finishes its in-flight generations before
        it is dropped, so the next runner restores the session with final
        counters.
        """
        old = self._runners.get(config.tenant_id)
        if old is not None:
            await old.wait_idle()
        self._shadow_configs[config.tenant_id] = config
        self._runners.pop(config.tenant_id, None)

    def _shadow_config(self, tenant_id: str) -> ShadowModeConfig:
        config = self._shadow_configs.get(tenant_id)
        if config is None:
            defaults = self.config.shadow
            config = ShadowModeConfig.from_names(
                tenant_id,
                defaults.capture_types,
                comparison_threshold=defaults.comparison_threshold,
                learning_batch_size=defaults.learning_batch_size,
            )
        return config

    async def runner(self, tenant_id: str) -> ShadowModeRunner:
        """The tenant's shadow-mode runner, restoring any open session on first use."""
        runner = self._runners.get(tenant_id)
        if runner is not None:
            return runner

        await self.controller.get_tenant(tenant_id)
        config = self._shadow_config(tenant_id)
        runner = ShadowModeRunner(
            tenant_id,
            config,
            self.shadow_store,
            self.generator,
            Comparator(
                self._evaluation,
                comparison_threshold=config.comparison_threshold,
                timeout=self.config.external_call_timeout_seconds,
            ),
            self.aggregator,
            guidelines_store=self.guidelines_store,
        )
        await runner.restore()
        self._runners[tenant_id] = runner
        return runner

    async def start_session(self, tenant_id: str) -> ShadowSession:
        return await (await self.runner(tenant_id)).start_session()

    async def pause_session(self, tenant_id: str) -> ShadowSession:
        return await (await self.runner(tenant_id)).pause_session()

    async def resume_session(self, tenant_id: str) -> ShadowSession:
        return await (await self.runner(tenant_id)).resume_session()

    async def end_session(self, tenant_id: str) -> ShadowLearning:
        return await (await self.runner(tenant_id)).end_session()

    async def get_session(self, tenant_id: str) -> Optional[ShadowSession]:
        return (await self.runner(tenant_id)).get_session()

    async def capture_interaction(
        self,
        tenant_id: str,
        capture_type: CaptureType,
        context: InteractionContext,
        human_action: HumanAction,
    ) -> CapturedInteraction:
        runner = await self.runner(tenant_id)
        return await runner.capture_interaction(capture_type, context, human_action)

    async def get_interactions_for_review(self, tenant_id: str) -> list[CapturedInteraction]:
        return (await self.runner(tenant_id)).get_interactions_for_review()

    async def retry_pending(self, tenant_id: str) -> int:
        return await (await self.runner(tenant_id)).retry_pending()

    async def wait_idle(self) -> None:
        for runner in list(self._runners.values()):
            await runner.wait_idle()

    async def list_learnings(self, tenant_id: str) -> list[ShadowLearning]:
        await self.controller.get_tenant(tenant_id)
        return await self.shadow_store.list_learnings(tenant_id)


async def build_governor(
    config: Optional[GovernorConfig] = None,
    generation: Optional[GenerationService] = None,
    evaluation: Optional[EvaluationService] = None,
    custom_evaluators: Optional[Mapping[str, CustomEvaluator]] = None,
) -> Governor:
    """
    Create a Governor with an initialized database.

    Args:
        config: Configuration (defaults to GovernorConfig.load())
        generation: Generation service (defaults to Claude via the Code SDK)
        evaluation: Evaluation service (defaults to one built on `generation`)
        custom_evaluators: Named predicates for custom escalation conditions

    Returns:
        Started Governor
    """
    config = config or GovernorConfig.load()
    db = await init_db(config.db_path)
    governor = Governor(
        config,
        db,
        generation or ClaudeGenerationService(config.model),
        evaluation=evaluation,
        custom_evaluators=custom_evaluators,
    )
    return await governor.start()
