"""
SQL Stores
==========

SQLAlchemy implementations of the store protocols used by the engine.

Every operation opens its own AsyncSession from the Database, so stores are
safe to use from concurrent tasks. SQLite drops timezone information, so all
timestamps are written in UTC and read back as UTC-aware datetimes.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import case, func, select, update

from autonomy_governor.db.connection import Database
from autonomy_governor.db.models import (
    AutonomyTransitionModel,
    CapturedInteractionModel,
    EscalationRuleModel,
    GuidelineUpdateModel,
    ShadowLearningModel,
    ShadowSessionModel,
    TaskModel,
    TenantModel,
)
from autonomy_governor.errors import ConfigurationError, ConflictError
from autonomy_governor.escalation import EscalationRule, RuleAction, condition_from_dict
from autonomy_governor.evaluator import ShadowMetrics
from autonomy_governor.interactions import (
    AgentAlternative,
    CaptureType,
    CapturedInteraction,
    ComparisonResult,
    HumanAction,
    InteractionContext,
)
from autonomy_governor.learning import GuidelineUpdate, LearnedPattern, ShadowLearning
from autonomy_governor.levels import AutonomyLevel
from autonomy_governor.metrics import TaskRecord, TaskStatus
from autonomy_governor.shadow import SessionStatus, ShadowSession, ShadowStats
from autonomy_governor.transitions import AutonomyTransition, InitiatedBy, Tenant


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Tenants and Transitions
# =============================================================================

def _tenant_from_row(row: TenantModel) -> Tenant:
    return Tenant(
        id=row.id,
        name=row.name,
        level=AutonomyLevel(row.level),
        level_since=_utc(row.level_since),
        created_at=_utc(row.created_at) or datetime.now(timezone.utc),
    )


def _transition_from_row(row: AutonomyTransitionModel) -> AutonomyTransition:
    return AutonomyTransition(
        id=row.id,
        tenant_id=row.tenant_id,
        from_level=AutonomyLevel(row.from_level),
        to_level=AutonomyLevel(row.to_level),
        reason=row.reason,
        initiated_by=InitiatedBy(row.initiated_by),
        approved_by=row.approved_by,
        timestamp=_utc(row.timestamp),
    )


class SqlTenantStore:
    def __init__(self, db: Database):
        self._db = db

    async def create_tenant(self, tenant: Tenant) -> Tenant:
        async with self._db.session() as session:
            session.add(TenantModel(
                id=tenant.id,
                name=tenant.name,
                level=int(tenant.level),
                level_since=tenant.level_since,
                created_at=tenant.created_at,
            ))
            await session.commit()
        return tenant

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        async with self._db.session() as session:
            row = await session.get(TenantModel, tenant_id)
            return _tenant_from_row(row) if row else None

    async def list_tenants(self) -> list[Tenant]:
        async with self._db.session() as session:
            result = await session.execute(select(TenantModel).order_by(TenantModel.id))
            return [_tenant_from_row(row) for row in result.scalars().all()]

    async def get_status(self, tenant_id: str) -> Optional[AutonomyLevel]:
        async with self._db.session() as session:
            level = await session.scalar(select(TenantModel.level).where(TenantModel.id == tenant_id))
            return AutonomyLevel(level) if level is not None else None

    async def set_status(self, tenant_id: str, expected: AutonomyLevel, new: AutonomyLevel) -> bool:
        """Conditionally set the level; False if the stored level is not `expected`."""
        async with self._db.session() as session:
            result = await session.execute(
                update(TenantModel)
                .where(TenantModel.id == tenant_id, TenantModel.level == int(expected))
                .values(level=int(new), level_since=datetime.now(timezone.utc))
            )
            await session.commit()
            return result.rowcount == 1

    async def apply_transition(self, transition: AutonomyTransition) -> Tenant:
        """
        Update the tenant level and append the transition record in one
        database transaction.

        Raises:
            ConfigurationError: unknown tenant
            ConflictError: the stored level is not `transition.from_level`
        """
        async with self._db.session() as session:
            async with session.begin():
                result = await session.execute(
                    update(TenantModel)
                    .where(
                        TenantModel.id == transition.tenant_id,
                        TenantModel.level == int(transition.from_level),
                    )
                    .values(level=int(transition.to_level), level_since=transition.timestamp)
                )
                if result.rowcount != 1:
                    current = await session.scalar(
                        select(TenantModel.level).where(TenantModel.id == transition.tenant_id)
                    )
                    if current is None:
                        raise ConfigurationError(f"Tenant not found: {transition.tenant_id}")
                    raise ConflictError(
                        transition.tenant_id,
                        transition.from_level.name,
                        AutonomyLevel(current).name,
                    )

                session.add(AutonomyTransitionModel(
                    id=transition.id,
                    tenant_id=transition.tenant_id,
                    from_level=int(transition.from_level),
                    to_level=int(transition.to_level),
                    reason=transition.reason,
                    initiated_by=transition.initiated_by.value,
                    approved_by=transition.approved_by,
                    timestamp=transition.timestamp,
                ))

            row = await session.get(TenantModel, transition.tenant_id, populate_existing=True)
            return _tenant_from_row(row)


class SqlTransitionStore:
    def __init__(self, db: Database):
        self._db = db

    async def list_transitions(self, tenant_id: str) -> list[AutonomyTransition]:
        async with self._db.session() as session:
            result = await session.execute(
                select(AutonomyTransitionModel)
                .where(AutonomyTransitionModel.tenant_id == tenant_id)
                .order_by(AutonomyTransitionModel.timestamp)
            )
            return [_transition_from_row(row) for row in result.scalars().all()]


# =============================================================================
# Tasks
# =============================================================================

def _task_from_row(row: TaskModel) -> TaskRecord:
    return TaskRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        task_type=row.task_type,
        status=TaskStatus(row.status),
        created_at=_utc(row.created_at),
        approved_at=_utc(row.approved_at),
        escalation_reason=row.escalation_reason,
        response_received=row.response_received,
        is_complaint=row.is_complaint,
    )


class SqlTaskStore:
    def __init__(self, db: Database):
        self._db = db

    async def add_task(self, task: TaskRecord) -> None:
        async with self._db.session() as session:
            session.add(TaskModel(
                id=task.id,
                tenant_id=task.tenant_id,
                task_type=task.task_type,
                status=task.status.value,
                created_at=task.created_at,
                approved_at=task.approved_at,
                escalation_reason=task.escalation_reason,
                response_received=task.response_received,
                is_complaint=task.is_complaint,
            ))
            await session.commit()

    async def query_tasks(self, tenant_id: str, since: datetime) -> list[TaskRecord]:
        async with self._db.session() as session:
            result = await session.execute(
                select(TaskModel)
                .where(TaskModel.tenant_id == tenant_id, TaskModel.created_at >= since)
                .order_by(TaskModel.created_at)
            )
            return [_task_from_row(row) for row in result.scalars().all()]


# =============================================================================
# Escalation Rules
# =============================================================================

class SqlEscalationRuleStore:
    def __init__(self, db: Database):
        self._db = db

    async def list_rules(self) -> list[EscalationRule]:
        async with self._db.session() as session:
            result = await session.execute(
                select(EscalationRuleModel)
                .where(EscalationRuleModel.is_enabled == True)  # noqa: E712
                .order_by(EscalationRuleModel.id)
            )
            return [
                EscalationRule(
                    name=row.name,
                    description=row.description,
                    condition=condition_from_dict(row.condition),
                    action=RuleAction(row.action),
                    override_level=AutonomyLevel(row.override_level) if row.override_level is not None else None,
                )
                for row in result.scalars().all()
            ]

    async def save_rule(self, rule: EscalationRule) -> None:
        values = dict(
            description=rule.description,
            condition=rule.condition.to_dict(),
            action=rule.action.value,
            override_level=int(rule.override_level) if rule.override_level is not None else None,
            is_enabled=True,
        )
        async with self._db.session() as session:
            existing = await session.scalar(
                select(EscalationRuleModel).where(EscalationRuleModel.name == rule.name)
            )
            if existing:
                await session.execute(
                    update(EscalationRuleModel)
                    .where(EscalationRuleModel.name == rule.name)
                    .values(**values)
                )
            else:
                session.add(EscalationRuleModel(name=rule.name, **values))
            await session.commit()

    async def disable_rule(self, name: str) -> bool:
        """Soft delete a rule. Returns False if no such rule was stored."""
        async with self._db.session() as session:
            result = await session.execute(
                update(EscalationRuleModel)
                .where(EscalationRuleModel.name == name)
                .values(is_enabled=False)
            )
            await session.commit()
            return result.rowcount > 0


# =============================================================================
# Shadow Mode
# =============================================================================

def _session_from_row(row: ShadowSessionModel) -> ShadowSession:
    return ShadowSession(
        id=row.id,
        tenant_id=row.tenant_id,
        started_at=_utc(row.started_at),
        status=SessionStatus(row.status),
        stats=ShadowStats.from_dict(row.stats or {}),
        ended_at=_utc(row.ended_at),
    )


def _interaction_from_row(row: CapturedInteractionModel) -> CapturedInteraction:
    return CapturedInteraction(
        id=row.id,
        session_id=row.session_id,
        tenant_id=row.tenant_id,
        type=CaptureType(row.type),
        timestamp=_utc(row.timestamp),
        context=InteractionContext.from_dict(row.context or {}),
        human_action=HumanAction.from_dict(row.human_action),
        alternative=AgentAlternative.from_dict(row.alternative) if row.alternative else None,
        comparison=ComparisonResult.from_dict(row.comparison) if row.comparison else None,
    )


def _learning_from_row(row: ShadowLearningModel) -> ShadowLearning:
    return ShadowLearning(
        id=row.id,
        session_id=row.session_id,
        interaction_ids=list(row.interaction_ids or []),
        patterns=[LearnedPattern.from_dict(p) for p in row.patterns or []],
        guideline_updates=[GuidelineUpdate.from_dict(u) for u in row.guideline_updates or []],
        created_at=_utc(row.created_at),
    )


class SqlShadowStore:
    def __init__(self, db: Database):
        self._db = db

    async def create_session(self, shadow_session: ShadowSession) -> None:
        async with self._db.session() as session:
            session.add(ShadowSessionModel(
                id=shadow_session.id,
                tenant_id=shadow_session.tenant_id,
                status=shadow_session.status.value,
                started_at=shadow_session.started_at,
                ended_at=shadow_session.ended_at,
                stats=shadow_session.stats.to_dict(),
            ))
            await session.commit()

    async def update_session(self, shadow_session: ShadowSession) -> None:
        async with self._db.session() as session:
            await session.execute(
                update(ShadowSessionModel)
                .where(ShadowSessionModel.id == shadow_session.id)
                .values(
                    status=shadow_session.status.value,
                    ended_at=shadow_session.ended_at,
                    stats=shadow_session.stats.to_dict(),
                )
            )
            await session.commit()

    async def get_session(self, session_id: str) -> Optional[ShadowSession]:
        async with self._db.session() as session:
            row = await session.get(ShadowSessionModel, session_id)
            return _session_from_row(row) if row else None

    async def get_open_session(self, tenant_id: str) -> Optional[ShadowSession]:
        async with self._db.session() as session:
            row = await session.scalar(
                select(ShadowSessionModel)
                .where(
                    ShadowSessionModel.tenant_id == tenant_id,
                    ShadowSessionModel.status.in_(
                        [SessionStatus.ACTIVE.value, SessionStatus.PAUSED.value]
                    ),
                )
                .order_by(ShadowSessionModel.started_at.desc())
                .limit(1)
            )
            return _session_from_row(row) if row else None

    async def save_interaction(self, interaction: CapturedInteraction) -> None:
        """Insert or replace an interaction."""
        comparison = interaction.comparison
        async with self._db.session() as session:
            await session.merge(CapturedInteractionModel(
                id=interaction.id,
                session_id=interaction.session_id,
                tenant_id=interaction.tenant_id,
                type=interaction.type.value,
                timestamp=interaction.timestamp,
                context=interaction.context.to_dict(),
                human_action=interaction.human_action.to_dict(),
                alternative=interaction.alternative.to_dict() if interaction.alternative else None,
                comparison=comparison.to_dict() if comparison else None,
                similarity=comparison.similarity if comparison else None,
                is_match=comparison.is_match if comparison else None,
            ))
            await session.commit()

    async def list_interactions(self, session_id: str) -> list[CapturedInteraction]:
        async with self._db.session() as session:
            result = await session.execute(
                select(CapturedInteractionModel)
                .where(CapturedInteractionModel.session_id == session_id)
                .order_by(CapturedInteractionModel.timestamp)
            )
            return [_interaction_from_row(row) for row in result.scalars().all()]

    async def save_learning(self, tenant_id: str, learning: ShadowLearning) -> None:
        async with self._db.session() as session:
            session.add(ShadowLearningModel(
                id=learning.id,
                session_id=learning.session_id,
                tenant_id=tenant_id,
                interaction_ids=list(learning.interaction_ids),
                patterns=[p.to_dict() for p in learning.patterns],
                guideline_updates=[u.to_dict() for u in learning.guideline_updates],
                created_at=learning.created_at,
            ))
            await session.commit()

    async def list_learnings(self, tenant_id: str) -> list[ShadowLearning]:
        async with self._db.session() as session:
            result = await session.execute(
                select(ShadowLearningModel)
                .where(ShadowLearningModel.tenant_id == tenant_id)
                .order_by(ShadowLearningModel.created_at)
            )
            return [_learning_from_row(row) for row in result.scalars().all()]

    async def get_shadow_metrics(self, tenant_id: str) -> ShadowMetrics:
        """Interaction, comparison and match totals across all of a tenant's sessions."""
        async with self._db.session() as session:
            result = await session.execute(
                select(
                    func.count(CapturedInteractionModel.id),
                    func.count(CapturedInteractionModel.is_match),
                    func.sum(case((CapturedInteractionModel.is_match == True, 1), else_=0)),  # noqa: E712
                ).where(CapturedInteractionModel.tenant_id == tenant_id)
            )
            interactions, compared, matches = result.one()
            return ShadowMetrics(
                interactions=interactions or 0,
                compared=compared or 0,
                matches=int(matches or 0),
            )


# =============================================================================
# Guidelines
# =============================================================================

class SqlGuidelinesStore:
    """Queues proposed guideline updates for human review."""

    def __init__(self, db: Database):
        self._db = db

    async def submit(self, tenant_id: str, learning_id: str, updates: list[GuidelineUpdate]) -> None:
        async with self._db.session() as session:
            for item in updates:
                session.add(GuidelineUpdateModel(
                    tenant_id=tenant_id,
                    learning_id=learning_id,
                    type=item.type.value,
                    path=item.path,
                    reason=item.reason,
                    suggested_change=item.suggested_change,
                ))
            await session.commit()

    async def list_pending(self, tenant_id: str) -> list[GuidelineUpdate]:
        async with self._db.session() as session:
            result = await session.execute(
                select(GuidelineUpdateModel)
                .where(
                    GuidelineUpdateModel.tenant_id == tenant_id,
                    GuidelineUpdateModel.status == "pending_review",
                )
                .order_by(GuidelineUpdateModel.id)
            )
            return [
                GuidelineUpdate.from_dict({
                    "type": row.type,
                    "path": row.path,
                    "reason": row.reason,
                    "suggested_change": row.suggested_change,
                })
                for row in result.scalars().all()
            ]
