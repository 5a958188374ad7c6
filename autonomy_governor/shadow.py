"""
Shadow Mode Runner
==================

Observes human recruiter actions and records what the agent would have done
instead, so the agent can be measured against humans before it acts on its
own. Shadow mode is read-only: the agent never takes the action.

Session lifecycle:
    active -> paused -> active
    active | paused -> completed    (terminal, runs a final learning pass)

Capture flow:
1. `capture_interaction` writes the interaction and updated counters
   through to the store and returns
2. A detached task generates the agent's alternative and compares it with
   the human action
3. The compared interaction and stats are written through
4. Every `learning_batch_size`-th comparison triggers a learning pass over a
   snapshot of the session's interactions

Each interaction has at most one generation in flight. Generation failures
are logged and counted in `generation_failures`; the interaction stays
pending and can be retried with `retry_pending`. Store and learning-pass
failures are logged but not counted.

Usage:
    runner = ShadowModeRunner("tenant-1", config, store, generator, comparator, aggregator)
    await runner.start_session()
    await runner.capture_outreach_message("cand-1", "req-1", "Hi Sam...", "email", "recruiter-7")
    await runner.wait_idle()
    learning = await runner.end_session()
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Protocol

from autonomy_governor.alternatives import AlternativeGenerator
from autonomy_governor.comparator import Comparator
from autonomy_governor.errors import ExternalServiceError, InvalidStateError
from autonomy_governor.evaluator import ShadowMetrics
from autonomy_governor.interactions import (
    CaptureType,
    CapturedInteraction,
    HumanAction,
    InteractionContext,
    InteractionStatus,
)
from autonomy_governor.learning import GuidelinesStore, LearningAggregator, ShadowLearning

logger = logging.getLogger(__name__)

# Compared interactions below this similarity are surfaced for human review
REVIEW_SIMILARITY_THRESHOLD = 0.5


class SessionStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


@dataclass
class ShadowModeConfig:
    tenant_id: str
    enabled: bool = True
    capture_types: frozenset[CaptureType] = field(default_factory=lambda: frozenset(CaptureType))
    comparison_threshold: float = 0.7
    learning_batch_size: int = 10
    auto_generate_alternatives: bool = True

    @classmethod
    def from_names(
        cls,
        tenant_id: str,
        capture_types: Iterable[str],
        comparison_threshold: float = 0.7,
        learning_batch_size: int = 10,
    ) -> "ShadowModeConfig":
        return cls(
            tenant_id=tenant_id,
            capture_types=frozenset(CaptureType(name) for name in capture_types),
            comparison_threshold=comparison_threshold,
            learning_batch_size=learning_batch_size,
        )


@dataclass
class ShadowStats:
    total_interactions: int = 0
    messages_captured: int = 0
    decisions_captured: int = 0
    comparisons_generated: int = 0
    matches: int = 0
    match_rate: float = 0.0
    learning_cycles: int = 0
    generation_failures: int = 0

    def to_dict(self) -> dict:
        return {
            "total_interactions": self.total_interactions,
            "messages_captured": self.messages_captured,
            "decisions_captured": self.decisions_captured,
            "comparisons_generated": self.comparisons_generated,
            "matches": self.matches,
            "match_rate": self.match_rate,
            "learning_cycles": self.learning_cycles,
            "generation_failures": self.generation_failures,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ShadowStats":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class ShadowSession:
    id: str
    tenant_id: str
    started_at: datetime
    status: SessionStatus = SessionStatus.ACTIVE
    stats: ShadowStats = field(default_factory=ShadowStats)
    ended_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "status": self.status.value,
            "stats": self.stats.to_dict(),
        }


class ShadowStore(Protocol):
    async def create_session(self, session: ShadowSession) -> None: ...

    async def update_session(self, session: ShadowSession) -> None: ...

    async def get_session(self, session_id: str) -> Optional[ShadowSession]: ...

    async def get_open_session(self, tenant_id: str) -> Optional[ShadowSession]:
        """The tenant's active or paused session, if any."""
        ...

    async def save_interaction(self, interaction: CapturedInteraction) -> None: ...

    async def list_interactions(self, session_id: str) -> list[CapturedInteraction]: ...

    async def save_learning(self, tenant_id: str, learning: ShadowLearning) -> None: ...

    async def list_learnings(self, tenant_id: str) -> list[ShadowLearning]: ...

    async def get_shadow_metrics(self, tenant_id: str) -> ShadowMetrics: ...


class ShadowModeRunner:
    """Runs shadow-mode sessions for one tenant."""

    def __init__(
        self,
        tenant_id: str,
        config: ShadowModeConfig,
        store: ShadowStore,
        generator: AlternativeGenerator,
        comparator: Comparator,
        aggregator: LearningAggregator,
        guidelines_store: Optional[GuidelinesStore] = None,
    ):
        self.tenant_id = tenant_id
        self.config = config
        self._store = store
        self._generator = generator
        self._comparator = comparator
        self._aggregator = aggregator
        self._guidelines_store = guidelines_store

        self._session: Optional[ShadowSession] = None
        self._interactions: list[CapturedInteraction] = []
        # Single-flight tokens: interaction id -> generation task
        self._inflight: dict[str, asyncio.Task] = {}
        self._stats_lock = asyncio.Lock()

    # =========================================================================
    # Session Management
    # =========================================================================

    async def restore(self) -> Optional[ShadowSession]:
        """Reload the tenant's open session and its interactions from the store."""
        session = await self._store.get_open_session(self.tenant_id)
        if session is not None:
            self._session = session
            self._interactions = await self._store.list_interactions(session.id)
            logger.info(
                "Restored shadow session %s (%s, %d interactions)",
                session.id, session.status.value, len(self._interactions),
            )
        return session

    def _is_open(self, session: Optional[ShadowSession]) -> bool:
        return session is not None and session.status != SessionStatus.COMPLETED

    async def start_session(self) -> ShadowSession:
        """
        Start a new session.

        Raises:
            InvalidStateError: the tenant already has an open session
        """
        if not self.config.enabled:
            raise InvalidStateError(f"Shadow mode is disabled for tenant {self.tenant_id}")
        if self._is_open(self._session):
            raise InvalidStateError("Session already active")
        if await self._store.get_open_session(self.tenant_id) is not None:
            raise InvalidStateError("Session already active")

        session = ShadowSession(
            id=str(uuid.uuid4()),
            tenant_id=self.tenant_id,
            started_at=datetime.now(timezone.utc),
        )
        await self._store.create_session(session)

        self._session = session
        self._interactions = []
        logger.info("Started shadow session %s for tenant %s", session.id, self.tenant_id)
        return session

    def _require_session(self, *statuses: SessionStatus) -> ShadowSession:
        if self._session is None or self._session.status not in statuses:
            current = self._session.status.value if self._session else "none"
            expected = "|".join(s.value for s in statuses)
            raise InvalidStateError(f"Shadow session is {current}, expected {expected}")
        return self._session

    async def pause_session(self) -> ShadowSession:
        session = self._require_session(SessionStatus.ACTIVE)
        session.status = SessionStatus.PAUSED
        await self._persist_session()
        logger.info("Paused shadow session %s", session.id)
        return session

    async def resume_session(self) -> ShadowSession:
        session = self._require_session(SessionStatus.PAUSED)
        session.status = SessionStatus.ACTIVE
        await self._persist_session()
        logger.info("Resumed shadow session %s", session.id)
        return session

    async def end_session(self) -> ShadowLearning:
        """
        Complete the session and run a final learning pass.

        In-flight generations keep running and still update their
        interactions; the final pass only sees what was compared by now.
        """
        session = self._require_session(SessionStatus.ACTIVE, SessionStatus.PAUSED)
        session.status = SessionStatus.COMPLETED
        session.ended_at = datetime.now(timezone.utc)
        await self._persist_session()

        learning = await self._run_learning(list(self._interactions))
        logger.info("Ended shadow session %s: %s", session.id, session.stats.to_dict())
        return learning

    def get_session(self) -> Optional[ShadowSession]:
        return self._session

    # =========================================================================
    # Interaction Capture
    # =========================================================================

    async def capture_interaction(
        self,
        capture_type: CaptureType,
        context: InteractionContext,
        human_action: HumanAction,
    ) -> CapturedInteraction:
        """
        Record a human action for shadow comparison.

        Returns once the interaction is stored; the alternative and
        comparison are produced in the background.

        Raises:
            InvalidStateError: no active session, or the type is not captured
        """
        session = self._session
        if session is None or session.status != SessionStatus.ACTIVE:
            raise InvalidStateError("No active shadow session")
        if capture_type not in self.config.capture_types:
            raise InvalidStateError(f"Capture type {capture_type.value} not enabled")

        interaction = CapturedInteraction(
            id=str(uuid.uuid4()),
            session_id=session.id,
            tenant_id=self.tenant_id,
            type=capture_type,
            timestamp=datetime.now(timezone.utc),
            context=context,
            human_action=human_action,
        )
        await self._store.save_interaction(interaction)
        self._interactions.append(interaction)

        session.stats.total_interactions += 1
        if capture_type.is_message:
            session.stats.messages_captured += 1
        else:
            session.stats.decisions_captured += 1
        await self._persist_session()

        if self.config.auto_generate_alternatives:
            self.schedule_generation(interaction)
        return interaction

    async def capture_outreach_message(
        self,
        candidate_id: str,
        requisition_id: str,
        content: str,
        channel: str,
        recruiter_id: str,
    ) -> CapturedInteraction:
        """Capture an outreach message sent by a human recruiter."""
        return await self.capture_interaction(
            CaptureType.OUTREACH_MESSAGE,
            InteractionContext(candidate_id=candidate_id, requisition_id=requisition_id),
            HumanAction(
                action_type=f"send_{channel}_message",
                content=content,
                performed_by=recruiter_id,
                metadata={"channel": channel},
            ),
        )

    async def capture_screening_decision(
        self,
        candidate_id: str,
        requisition_id: str,
        decision: str,
        reasoning: str,
        recruiter_id: str,
    ) -> CapturedInteraction:
        """Capture an advance/reject/hold decision made by a human recruiter."""
        if decision not in ("advance", "reject", "hold"):
            raise ValueError(f"Unknown screening decision: {decision}")
        return await self.capture_interaction(
            CaptureType.SCREENING_DECISION,
            InteractionContext(candidate_id=candidate_id, requisition_id=requisition_id),
            HumanAction(
                action_type="screening_decision",
                content=reasoning,
                performed_by=recruiter_id,
                metadata={"decision": decision},
            ),
        )

    def get_interactions(self) -> list[CapturedInteraction]:
        return list(self._interactions)

    def get_interactions_for_review(self) -> list[CapturedInteraction]:
        """Compared mismatches with similarity below 0.5."""
        return [
            i for i in self._interactions
            if i.comparison is not None
            and not i.comparison.is_match
            and i.comparison.similarity < REVIEW_SIMILARITY_THRESHOLD
        ]

    # =========================================================================
    # Background Generation
    # =========================================================================

    def schedule_generation(self, interaction: CapturedInteraction) -> Optional[asyncio.Task]:
        """
        Start generation for an interaction unless one is already in flight
        or the interaction is already compared.
        """
        if interaction.id in self._inflight or interaction.status == InteractionStatus.COMPARED:
            return None

        task = asyncio.create_task(self._process(interaction))
        self._inflight[interaction.id] = task
        task.add_done_callback(lambda _t, key=interaction.id: self._inflight.pop(key, None))
        return task

    async def retry_pending(self) -> int:
        """
        Re-schedule generation for every pending interaction of the active session.

        Returns:
            Number of generations started
        """
        self._require_session(SessionStatus.ACTIVE)
        started = 0
        for interaction in list(self._interactions):
            if interaction.status == InteractionStatus.PENDING and self.schedule_generation(interaction):
                started += 1
        if started:
            logger.info("Retrying %d pending interactions", started)
        return started

    async def wait_idle(self) -> None:
        """Wait until no generation is in flight."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def _process(self, interaction: CapturedInteraction) -> None:
        try:
            learning_due = await self._generate_and_compare(interaction)
        except ExternalServiceError as e:
            logger.warning("Alternative generation failed for %s: %s", interaction.id, e)
            await self._record_failure()
            return
        except Exception:
            logger.exception("Shadow pipeline failed for interaction %s", interaction.id)
            return

        if not learning_due:
            return
        try:
            await self._run_learning(list(self._interactions))
        except Exception:
            logger.exception("Batch learning pass failed for session %s", interaction.session_id)

    async def _record_failure(self) -> None:
        if self._session is None:
            return
        self._session.stats.generation_failures += 1
        await self._persist_session()

    async def _generate_and_compare(self, interaction: CapturedInteraction) -> bool:
        """
        Generate and compare one interaction.

        Returns:
            True when this comparison completes a learning batch
        """
        started = datetime.now(timezone.utc)
        alternative = await self._generator.generate(interaction)
        comparison = await self._comparator.compare(
            interaction.human_action, alternative, interaction.type.value
        )

        interaction.alternative = alternative
        interaction.comparison = comparison
        await self._store.save_interaction(interaction)

        session = self._session
        if session is None or session.id != interaction.session_id:
            return False

        stats = session.stats
        stats.comparisons_generated += 1
        if comparison.is_match:
            stats.matches += 1
        stats.match_rate = stats.matches / stats.comparisons_generated
        # Read before yielding; other comparisons move the counter meanwhile
        count = stats.comparisons_generated
        await self._persist_session()

        elapsed_ms = (datetime.now(timezone.utc) - started).total_seconds() * 1000
        logger.debug(
            "Generated alternative in %.0fms, similarity %.2f",
            elapsed_ms, comparison.similarity,
        )

        batch_size = max(1, self.config.learning_batch_size)
        return count % batch_size == 0 and session.status != SessionStatus.COMPLETED

    # =========================================================================
    # Learning
    # =========================================================================

    async def generate_learnings(self) -> ShadowLearning:
        """Run a learning pass now over the current session's interactions."""
        self._require_session(SessionStatus.ACTIVE, SessionStatus.PAUSED, SessionStatus.COMPLETED)
        return await self._run_learning(list(self._interactions))

    async def _run_learning(self, snapshot: list[CapturedInteraction]) -> ShadowLearning:
        session = self._session
        learning = await self._aggregator.generate_learnings(session.id, snapshot)
        await self._store.save_learning(self.tenant_id, learning)

        if learning.guideline_updates and self._guidelines_store is not None:
            await self._guidelines_store.submit(self.tenant_id, learning.id, learning.guideline_updates)

        session.stats.learning_cycles += 1
        await self._persist_session()
        return learning

    async def _persist_session(self) -> None:
        # Serialized so a later snapshot never lands before an earlier one
        async with self._stats_lock:
            await self._store.update_session(self._session)
