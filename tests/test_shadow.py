"""
Tests for the Shadow Mode Runner
================================

Runs against a real SQLite store with scripted model services.
"""

import asyncio
import json

import pytest

from autonomy_governor.errors import ConfigurationError, InvalidStateError
from autonomy_governor.interactions import CaptureType, HumanAction, InteractionContext, InteractionStatus
from autonomy_governor.learning import GUIDELINE_SYSTEM_PROMPT
from autonomy_governor.shadow import SessionStatus, ShadowModeConfig

from conftest import comparison_reply


TENANT = "acme"


async def _runner(governor, **config):
    await governor.register_tenant(TENANT, "Acme Corp")
    if config:
        await governor.configure_shadow(ShadowModeConfig(tenant_id=TENANT, **config))
    return await governor.runner(TENANT)


async def _capture(runner, n: int = 0):
    return await runner.capture_outreach_message(
        f"cand-{n}", "req-1", f"Hi candidate {n}, are you open to a chat?", "email", "recruiter-7"
    )


class TestSessionLifecycle:
    """Tests for session state transitions."""

    @pytest.mark.asyncio
    async def test_start_session(self, governor):
        runner = await _runner(governor)
        session = await runner.start_session()

        assert session.status == SessionStatus.ACTIVE
        assert session.tenant_id == TENANT
        stored = await governor.shadow_store.get_session(session.id)
        assert stored.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_only_one_open_session(self, governor):
        runner = await _runner(governor)
        await runner.start_session()
        with pytest.raises(InvalidStateError, match="Session already active"):
            await runner.start_session()

        await runner.pause_session()
        with pytest.raises(InvalidStateError, match="Session already active"):
            await runner.start_session()

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, governor):
        runner = await _runner(governor)
        session = await runner.start_session()

        await runner.pause_session()
        assert (await governor.shadow_store.get_session(session.id)).status == SessionStatus.PAUSED
        with pytest.raises(InvalidStateError):
            await runner.pause_session()

        await runner.resume_session()
        assert runner.get_session().status == SessionStatus.ACTIVE
        with pytest.raises(InvalidStateError):
            await runner.resume_session()

    @pytest.mark.asyncio
    async def test_end_session(self, governor):
        runner = await _runner(governor)
        session = await runner.start_session()
        learning = await runner.end_session()

        assert learning.session_id == session.id
        assert runner.get_session().status == SessionStatus.COMPLETED
        assert runner.get_session().ended_at is not None
        stored = await governor.shadow_store.get_session(session.id)
        assert stored.status == SessionStatus.COMPLETED
        assert stored.stats.learning_cycles == 1

    @pytest.mark.asyncio
    async def test_completed_session_is_terminal(self, governor):
        runner = await _runner(governor)
        await runner.start_session()
        await runner.end_session()

        for operation in (runner.pause_session, runner.resume_session, runner.end_session):
            with pytest.raises(InvalidStateError):
                await operation()

    @pytest.mark.asyncio
    async def test_new_session_after_completion(self, governor):
        runner = await _runner(governor)
        first = await runner.start_session()
        await runner.end_session()
        second = await runner.start_session()
        assert second.id != first.id
        assert runner.get_interactions() == []

    @pytest.mark.asyncio
    async def test_disabled_shadow_mode(self, governor):
        runner = await _runner(governor, enabled=False)
        with pytest.raises(InvalidStateError):
            await runner.start_session()

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, governor):
        with pytest.raises(ConfigurationError):
            await governor.runner("ghost")

    @pytest.mark.asyncio
    async def test_restore_open_session(self, governor):
        runner = await _runner(governor)
        session = await runner.start_session()
        await _capture(runner)
        await runner.wait_idle()

        governor.reset()
        restored = await governor.runner(TENANT)

        assert restored is not runner
        assert restored.get_session().id == session.id
        assert len(restored.get_interactions()) == 1
        assert restored.get_session().stats.total_interactions == 1
        with pytest.raises(InvalidStateError, match="Session already active"):
            await restored.start_session()


class TestCapture:
    """Tests for capturing human actions."""

    @pytest.mark.asyncio
    async def test_capture_outreach_message(self, governor, evaluation):
        runner = await _runner(governor)
        session = await runner.start_session()

        interaction = await _capture(runner)
        assert interaction.session_id == session.id
        assert interaction.type == CaptureType.OUTREACH_MESSAGE
        assert interaction.human_action.action_type == "send_email_message"
        assert interaction.human_action.metadata == {"channel": "email"}

        await runner.wait_idle()
        assert interaction.status == InteractionStatus.COMPARED
        assert interaction.alternative.content == "Agent outreach message"
        assert interaction.comparison.is_match

        stats = runner.get_session().stats
        assert stats.total_interactions == 1
        assert stats.messages_captured == 1
        assert stats.comparisons_generated == 1
        assert stats.match_rate == 1.0

        stored = await governor.shadow_store.list_interactions(session.id)
        assert stored[0].comparison.similarity == pytest.approx(0.8)
        assert (await governor.shadow_store.get_session(session.id)).stats.comparisons_generated == 1

    @pytest.mark.asyncio
    async def test_capture_screening_decision(self, governor):
        runner = await _runner(governor)
        await runner.start_session()
        interaction = await runner.capture_screening_decision(
            "cand-1", "req-1", "advance", "Strong Python background", "recruiter-7"
        )
        await runner.wait_idle()

        assert interaction.human_action.metadata == {"decision": "advance"}
        assert runner.get_session().stats.decisions_captured == 1

    @pytest.mark.asyncio
    async def test_unknown_screening_decision(self, governor):
        runner = await _runner(governor)
        await runner.start_session()
        with pytest.raises(ValueError):
            await runner.capture_screening_decision("cand-1", "req-1", "maybe", "unsure", "recruiter-7")

    @pytest.mark.asyncio
    async def test_capture_without_session(self, governor):
        runner = await _runner(governor)
        with pytest.raises(InvalidStateError, match="No active shadow session"):
            await _capture(runner)

    @pytest.mark.asyncio
    async def test_capture_while_paused(self, governor):
        runner = await _runner(governor)
        await runner.start_session()
        await runner.pause_session()
        with pytest.raises(InvalidStateError):
            await _capture(runner)

    @pytest.mark.asyncio
    async def test_capture_on_completed_session_records_nothing(self, governor):
        runner = await _runner(governor)
        session = await runner.start_session()
        await _capture(runner, 1)
        await runner.wait_idle()
        await runner.end_session()

        with pytest.raises(InvalidStateError):
            await _capture(runner, 2)

        assert len(runner.get_interactions()) == 1
        assert len(await governor.shadow_store.list_interactions(session.id)) == 1
        assert (await governor.shadow_store.get_session(session.id)).stats.total_interactions == 1

    @pytest.mark.asyncio
    async def test_capture_type_not_enabled(self, governor):
        runner = await _runner(governor, capture_types=frozenset({CaptureType.SCREENING_DECISION}))
        await runner.start_session()
        with pytest.raises(InvalidStateError, match="outreach_message not enabled"):
            await _capture(runner)

    @pytest.mark.asyncio
    async def test_manual_generation(self, governor, evaluation):
        runner = await _runner(governor, auto_generate_alternatives=False)
        await runner.start_session()
        interaction = await _capture(runner)

        assert runner.inflight_count == 0
        assert interaction.status == InteractionStatus.PENDING

        assert await runner.retry_pending() == 1
        await runner.wait_idle()
        assert interaction.status == InteractionStatus.COMPARED

    @pytest.mark.asyncio
    async def test_governor_capture_interaction(self, governor):
        await governor.register_tenant(TENANT, "Acme Corp")
        await governor.start_session(TENANT)
        interaction = await governor.capture_interaction(
            TENANT,
            CaptureType.SCHEDULING_ACTION,
            InteractionContext(candidate_id="cand-1"),
            HumanAction(action_type="schedule_interview", content="Tue 10am", performed_by="r-1"),
        )
        await governor.wait_idle()
        assert interaction.alternative.reasoning == "Generic alternative"


class TestBackgroundGeneration:
    """Tests for the detached generate-and-compare pipeline."""

    @pytest.mark.asyncio
    async def test_single_flight(self, governor, evaluation):
        gate = asyncio.Event()
        evaluation.gate = gate
        runner = await _runner(governor)
        await runner.start_session()

        interaction = await _capture(runner)
        assert runner.inflight_count == 1
        assert runner.schedule_generation(interaction) is None
        assert await runner.retry_pending() == 0

        gate.set()
        await runner.wait_idle()
        assert runner.inflight_count == 0
        assert len(evaluation.calls) == 1
        assert runner.get_session().stats.comparisons_generated == 1

    @pytest.mark.asyncio
    async def test_compared_interaction_is_not_rescheduled(self, governor):
        runner = await _runner(governor)
        await runner.start_session()
        interaction = await _capture(runner)
        await runner.wait_idle()
        assert runner.schedule_generation(interaction) is None

    @pytest.mark.asyncio
    async def test_generation_failure_is_counted(self, governor, generation):
        generation.error = RuntimeError("model overloaded")
        runner = await _runner(governor)
        session = await runner.start_session()

        interaction = await _capture(runner)
        await runner.wait_idle()

        assert interaction.status == InteractionStatus.PENDING
        stats = runner.get_session().stats
        assert stats.generation_failures == 1
        assert stats.comparisons_generated == 0
        assert (await governor.shadow_store.get_session(session.id)).stats.generation_failures == 1

    @pytest.mark.asyncio
    async def test_retry_pending_after_failure(self, governor, generation):
        generation.error = RuntimeError("model overloaded")
        runner = await _runner(governor)
        await runner.start_session()
        first = await _capture(runner, 1)
        second = await _capture(runner, 2)
        await runner.wait_idle()

        generation.error = None
        assert await runner.retry_pending() == 2
        await runner.wait_idle()

        assert first.status == InteractionStatus.COMPARED
        assert second.status == InteractionStatus.COMPARED
        assert runner.get_session().stats.comparisons_generated == 2

    @pytest.mark.asyncio
    async def test_retry_requires_active_session(self, governor):
        runner = await _runner(governor)
        await runner.start_session()
        await runner.pause_session()
        with pytest.raises(InvalidStateError):
            await runner.retry_pending()

    @pytest.mark.asyncio
    async def test_evaluation_failure_still_compares(self, governor, evaluation):
        evaluation.error = RuntimeError("evaluator down")
        runner = await _runner(governor)
        await runner.start_session()
        interaction = await _capture(runner)
        await runner.wait_idle()

        assert interaction.status == InteractionStatus.COMPARED
        assert interaction.comparison.similarity == 0.5
        assert not interaction.comparison.is_match
        assert runner.get_session().stats.generation_failures == 0

    @pytest.mark.asyncio
    async def test_match_rate(self, governor, evaluation):
        evaluation.replies = [comparison_reply(0.9), comparison_reply(0.2), comparison_reply(0.75), comparison_reply(0.5)]
        runner = await _runner(governor)
        await runner.start_session()
        for n in range(4):
            await _capture(runner, n)
            await runner.wait_idle()

        stats = runner.get_session().stats
        assert stats.comparisons_generated == 4
        assert stats.matches == 2
        assert stats.match_rate == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_interactions_for_review(self, governor, evaluation):
        evaluation.replies = [comparison_reply(0.9), comparison_reply(0.2), comparison_reply(0.5), comparison_reply(0.45)]
        runner = await _runner(governor)
        await runner.start_session()
        for n in range(4):
            await _capture(runner, n)
            await runner.wait_idle()

        review = await governor.get_interactions_for_review(TENANT)
        assert sorted(i.comparison.similarity for i in review) == [0.2, 0.45]


class TestLearningCycles:
    """Tests for batch-triggered and final learning passes."""

    @pytest.mark.asyncio
    async def test_learning_triggered_every_batch(self, governor, evaluation):
        evaluation.default = comparison_reply(0.3, ["Missed must-have skill"])
        runner = await _runner(governor, learning_batch_size=3)
        session = await runner.start_session()

        for n in range(7):
            await _capture(runner, n)
            await runner.wait_idle()

        assert runner.get_session().stats.learning_cycles == 2
        learnings = await governor.list_learnings(TENANT)
        assert len(learnings) == 2
        assert learnings[0].session_id == session.id
        assert learnings[0].patterns[0].frequency == 3
        assert learnings[1].patterns[0].frequency == 6

    @pytest.mark.asyncio
    async def test_concurrent_comparisons_trigger_one_pass_per_batch(self, governor, evaluation):
        gate = asyncio.Event()
        evaluation.gate = gate
        evaluation.default = comparison_reply(0.3, ["Missed must-have skill"])
        runner = await _runner(governor, learning_batch_size=2)
        await runner.start_session()

        for n in range(20):
            await _capture(runner, n)
        assert runner.inflight_count == 20

        gate.set()
        await runner.wait_idle()

        stats = runner.get_session().stats
        assert stats.comparisons_generated == 20
        assert stats.learning_cycles == 10
        assert len(await governor.list_learnings(TENANT)) == 10

    @pytest.mark.asyncio
    async def test_learning_failure_is_not_a_generation_failure(self, governor, monkeypatch):
        async def broken_learning(session_id, interactions):
            raise RuntimeError("aggregator crashed")

        monkeypatch.setattr(governor.aggregator, "generate_learnings", broken_learning)
        runner = await _runner(governor, learning_batch_size=1)
        session = await runner.start_session()

        interaction = await _capture(runner)
        await runner.wait_idle()

        assert interaction.status == InteractionStatus.COMPARED
        stats = (await governor.shadow_store.get_session(session.id)).stats
        assert stats.comparisons_generated == 1
        assert stats.generation_failures == 0
        assert stats.learning_cycles == 0

    @pytest.mark.asyncio
    async def test_guideline_updates_are_queued(self, governor, generation, evaluation):
        generation.responses[GUIDELINE_SYSTEM_PROMPT] = json.dumps([{
            "type": "constraint",
            "path": "screening.must_have_skills",
            "reason": "Agent overlooks required skills",
            "suggestedChange": "Check must-have skills first",
        }])
        evaluation.default = comparison_reply(0.3, ["Missed must-have skill"])
        runner = await _runner(governor)
        await runner.start_session()
        for n in range(2):
            await _capture(runner, n)
        await runner.wait_idle()

        learning = await runner.end_session()
        assert len(learning.guideline_updates) == 1

        pending = await governor.guidelines_store.list_pending(TENANT)
        assert [u.path for u in pending] == ["screening.must_have_skills"]

    @pytest.mark.asyncio
    async def test_generate_learnings_on_demand(self, governor, evaluation):
        evaluation.default = comparison_reply(0.3, ["Too formal"])
        runner = await _runner(governor)
        await runner.start_session()
        for n in range(2):
            await _capture(runner, n)
        await runner.wait_idle()

        learning = await runner.generate_learnings()
        assert learning.patterns[0].description == "too formal"
        assert runner.get_session().stats.learning_cycles == 1


class TestRunnerReplacement:
    """Replacing a tenant's runner keeps the session counters intact."""

    @pytest.mark.asyncio
    async def test_configure_waits_for_inflight_work(self, governor, evaluation):
        gate = asyncio.Event()
        evaluation.gate = gate
        old = await _runner(governor)
        session = await old.start_session()
        await _capture(old, 1)

        configuring = asyncio.create_task(
            governor.configure_shadow(ShadowModeConfig(tenant_id=TENANT, learning_batch_size=5))
        )
        await asyncio.sleep(0)
        assert not configuring.done()

        gate.set()
        await configuring

        new = await governor.runner(TENANT)
        assert new is not old
        assert new.config.learning_batch_size == 5
        await _capture(new, 2)
        await new.wait_idle()

        stats = (await governor.shadow_store.get_session(session.id)).stats
        assert stats.total_interactions == 2
        assert stats.comparisons_generated == 2
        assert stats.matches == 2

    @pytest.mark.asyncio
    async def test_reset_refuses_busy_runner(self, governor, evaluation):
        gate = asyncio.Event()
        evaluation.gate = gate
        runner = await _runner(governor)
        await runner.start_session()
        await _capture(runner)

        with pytest.raises(InvalidStateError, match="wait_idle"):
            governor.reset()
        assert await governor.runner(TENANT) is runner

        gate.set()
        await governor.wait_idle()
        governor.reset()
        assert await governor.runner(TENANT) is not runner


class TestShadowMetrics:
    @pytest.mark.asyncio
    async def test_totals_across_sessions(self, governor, evaluation):
        evaluation.replies = [comparison_reply(0.9), comparison_reply(0.1), comparison_reply(0.8)]
        runner = await _runner(governor, auto_generate_alternatives=False)

        await runner.start_session()
        await _capture(runner, 1)
        await runner.retry_pending()
        await runner.wait_idle()
        await runner.end_session()

        await runner.start_session()
        await _capture(runner, 2)
        await _capture(runner, 3)
        await runner.retry_pending()
        await runner.wait_idle()
        await _capture(runner, 4)

        metrics = await governor.shadow_store.get_shadow_metrics(TENANT)
        assert metrics.interactions == 4
        assert metrics.compared == 3
        assert metrics.matches == 2
        assert metrics.match_rate == pytest.approx(2 / 3)

    def test_config_from_names(self):
        config = ShadowModeConfig.from_names(TENANT, ["outreach_message", "screening_decision"], 0.8, 5)
        assert config.capture_types == frozenset({CaptureType.OUTREACH_MESSAGE, CaptureType.SCREENING_DECISION})
        assert config.comparison_threshold == 0.8
        assert config.learning_batch_size == 5
