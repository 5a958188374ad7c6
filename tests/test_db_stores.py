"""
Tests for the SQL Stores
========================
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from autonomy_governor.db import (
    Database,
    SqlEscalationRuleStore,
    SqlGuidelinesStore,
    SqlTaskStore,
    SqlTenantStore,
    SqlTransitionStore,
    init_db,
)
from autonomy_governor.errors import ConfigurationError, ConflictError
from autonomy_governor.escalation import (
    ActionContext,
    EscalationEngine,
    EscalationRule,
    KeywordCondition,
    RuleAction,
)
from autonomy_governor.learning import GuidelineUpdate, GuidelineUpdateType
from autonomy_governor.levels import AutonomyLevel
from autonomy_governor.metrics import TaskRecord, TaskStatus
from autonomy_governor.transitions import AutonomyTransition, InitiatedBy, Tenant


L = AutonomyLevel


def _transition(tenant_id, from_level, to_level, **kwargs) -> AutonomyTransition:
    return AutonomyTransition(
        id=str(uuid.uuid4()),
        tenant_id=tenant_id,
        from_level=from_level,
        to_level=to_level,
        reason=kwargs.get("reason", "test"),
        initiated_by=kwargs.get("initiated_by", InitiatedBy.SYSTEM),
        timestamp=kwargs.get("timestamp", datetime.now(timezone.utc)),
        approved_by=kwargs.get("approved_by"),
    )


async def _tenant(db, level=L.ONBOARDING) -> Tenant:
    now = datetime.now(timezone.utc)
    return await SqlTenantStore(db).create_tenant(
        Tenant(id="acme", name="Acme Corp", level=level, level_since=now, created_at=now)
    )


class TestDatabase:
    @pytest.mark.asyncio
    async def test_init_creates_file(self, temp_dir):
        db = await init_db(temp_dir / "nested" / "gov.db")
        try:
            assert (temp_dir / "nested" / "gov.db").exists()
            assert db.url.startswith("sqlite+aiosqlite:///")
        finally:
            await db.dispose()

    @pytest.mark.asyncio
    async def test_session_before_init(self, temp_dir):
        db = Database(temp_dir / "gov.db")
        with pytest.raises(RuntimeError):
            async with db.session():
                pass


class TestTenantStore:
    """Tests for SqlTenantStore."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, db):
        created = await _tenant(db, L.SHADOW_MODE)
        store = SqlTenantStore(db)

        loaded = await store.get_tenant("acme")
        assert loaded.name == "Acme Corp"
        assert loaded.level == L.SHADOW_MODE
        assert loaded.level_since.tzinfo is not None
        assert loaded.level_since == created.level_since
        assert await store.get_tenant("ghost") is None

    @pytest.mark.asyncio
    async def test_status(self, db):
        await _tenant(db)
        store = SqlTenantStore(db)

        assert await store.get_status("acme") == L.ONBOARDING
        assert await store.get_status("ghost") is None
        assert await store.set_status("acme", L.ONBOARDING, L.SHADOW_MODE)
        assert not await store.set_status("acme", L.ONBOARDING, L.PAUSED)
        assert await store.get_status("acme") == L.SHADOW_MODE

    @pytest.mark.asyncio
    async def test_apply_transition(self, db):
        await _tenant(db)
        store = SqlTenantStore(db)
        record = _transition("acme", L.ONBOARDING, L.SHADOW_MODE, reason="ready")

        tenant = await store.apply_transition(record)
        assert tenant.level == L.SHADOW_MODE
        assert tenant.level_since == record.timestamp

        history = await SqlTransitionStore(db).list_transitions("acme")
        assert history == [record]

    @pytest.mark.asyncio
    async def test_apply_transition_conflict(self, db):
        await _tenant(db, L.SUPERVISED)
        store = SqlTenantStore(db)

        with pytest.raises(ConflictError) as exc_info:
            await store.apply_transition(_transition("acme", L.AUTONOMOUS, L.SUPERVISED))
        assert exc_info.value.expected == "AUTONOMOUS"
        assert exc_info.value.actual == "SUPERVISED"

        assert await store.get_status("acme") == L.SUPERVISED
        assert await SqlTransitionStore(db).list_transitions("acme") == []

    @pytest.mark.asyncio
    async def test_apply_transition_unknown_tenant(self, db):
        with pytest.raises(ConfigurationError):
            await SqlTenantStore(db).apply_transition(_transition("ghost", L.ONBOARDING, L.SHADOW_MODE))

    @pytest.mark.asyncio
    async def test_transitions_ordered_by_time(self, db):
        await _tenant(db)
        store = SqlTenantStore(db)
        start = datetime.now(timezone.utc)
        await store.apply_transition(
            _transition("acme", L.ONBOARDING, L.PAUSED, timestamp=start, approved_by="ops")
        )
        await store.apply_transition(
            _transition("acme", L.PAUSED, L.ONBOARDING, timestamp=start + timedelta(seconds=1), approved_by="ops")
        )

        history = await SqlTransitionStore(db).list_transitions("acme")
        assert [t.to_level for t in history] == [L.PAUSED, L.ONBOARDING]
        assert history[1].approved_by == "ops"


class TestTaskStore:
    @pytest.mark.asyncio
    async def test_query_since(self, db):
        store = SqlTaskStore(db)
        now = datetime.now(timezone.utc)
        for n, age in enumerate([1, 30, 24 * 10]):
            await store.add_task(TaskRecord(
                id=f"task-{n}",
                tenant_id="acme",
                task_type="SEND_OUTREACH",
                status=TaskStatus.COMPLETED,
                created_at=now - timedelta(hours=age),
                response_received=None if n else True,
            ))
        await store.add_task(TaskRecord(
            id="other", tenant_id="globex", task_type="SEND_OUTREACH",
            status=TaskStatus.FAILED, created_at=now,
        ))

        tasks = await store.query_tasks("acme", now - timedelta(days=7))
        assert [t.id for t in tasks] == ["task-1", "task-0"]
        assert tasks[1].response_received is True
        assert tasks[0].response_received is None
        assert tasks[0].created_at.tzinfo is not None


class TestEscalationRuleStore:
    """Tests for SqlEscalationRuleStore."""

    @pytest.mark.asyncio
    async def test_save_list_disable(self, db):
        store = SqlEscalationRuleStore(db)
        rule = EscalationRule(
            name="Visa Sponsorship",
            description="Visa topics need legal review",
            condition=KeywordCondition(("visa", "sponsorship")),
            action=RuleAction.BLOCK,
            override_level=L.AUTONOMOUS,
        )
        await store.save_rule(rule)
        assert await store.list_rules() == [rule]

        updated = EscalationRule("Visa Sponsorship", "v2", KeywordCondition(("visa",)))
        await store.save_rule(updated)
        assert await store.list_rules() == [updated]

        assert await store.disable_rule("Visa Sponsorship")
        assert await store.list_rules() == []
        assert not await store.disable_rule("Unknown")

    @pytest.mark.asyncio
    async def test_engine_persists_rules(self, db):
        store = SqlEscalationRuleStore(db)

        async def resolve(tenant_id):
            return L.AUTONOMOUS

        engine = EscalationEngine(resolve, rule_store=store)
        await engine.add_rule(EscalationRule("Visa", "Visa needs review", KeywordCondition(("visa",))))

        fresh = EscalationEngine(resolve, rule_store=store)
        assert await fresh.load_custom_rules() == 1
        decision = await fresh.requires_approval("acme", "send", ActionContext(content="visa question"))
        assert decision.triggered_rule == "Visa"

        assert await fresh.remove_rule("Visa")
        assert await EscalationEngine(resolve, rule_store=store).load_custom_rules() == 0


class TestGuidelinesStore:
    @pytest.mark.asyncio
    async def test_submit_and_list_pending(self, db):
        store = SqlGuidelinesStore(db)
        updates = [
            GuidelineUpdate(GuidelineUpdateType.TEMPLATE, "templates.outreach.email", "Too long", "Shorten"),
            GuidelineUpdate(GuidelineUpdateType.WORKFLOW, "workflows.screening", "Skips step", "Add step"),
        ]
        await store.submit("acme", "learn-1", updates)

        assert await store.list_pending("acme") == updates
        assert await store.list_pending("globex") == []
