"""
Transition Controller
=====================

Guards the tenant autonomy state machine. Every level change goes through
`TransitionController.transition`, which checks the edge against the legal
graph, checks that an approver is present where one is needed, then applies
the change and its audit record as one atomic store operation.

Legal edges:
    ONBOARDING  -> SHADOW_MODE
    SHADOW_MODE -> SUPERVISED
    SUPERVISED  -> AUTONOMOUS
    AUTONOMOUS  -> SUPERVISED          (demotion)
    SUPERVISED  -> SHADOW_MODE         (demotion)
    any working level -> PAUSED
    PAUSED -> any working level        (resume)
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

from autonomy_governor.errors import InvalidStateError
from autonomy_governor.levels import AutonomyLevel

logger = logging.getLogger(__name__)


_WORKING_LEVELS = (
    AutonomyLevel.ONBOARDING,
    AutonomyLevel.SHADOW_MODE,
    AutonomyLevel.SUPERVISED,
    AutonomyLevel.AUTONOMOUS,
)

LEGAL_TRANSITIONS: dict[AutonomyLevel, frozenset[AutonomyLevel]] = {
    AutonomyLevel.ONBOARDING: frozenset({AutonomyLevel.SHADOW_MODE, AutonomyLevel.PAUSED}),
    AutonomyLevel.SHADOW_MODE: frozenset({AutonomyLevel.SUPERVISED, AutonomyLevel.PAUSED}),
    AutonomyLevel.SUPERVISED: frozenset({
        AutonomyLevel.AUTONOMOUS, AutonomyLevel.SHADOW_MODE, AutonomyLevel.PAUSED,
    }),
    AutonomyLevel.AUTONOMOUS: frozenset({AutonomyLevel.SUPERVISED, AutonomyLevel.PAUSED}),
    AutonomyLevel.PAUSED: frozenset(_WORKING_LEVELS),
}


class InitiatedBy(Enum):
    SYSTEM = "system"
    OPERATOR = "operator"


@dataclass
class Tenant:
    """A customer organization and its current autonomy level."""
    id: str
    name: str
    level: AutonomyLevel
    level_since: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def hours_in_level(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (now - self.level_since).total_seconds() / 3600)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level.name,
            "level_since": self.level_since.isoformat(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class AutonomyTransition:
    """Immutable audit record of one level change."""
    id: str
    tenant_id: str
    from_level: AutonomyLevel
    to_level: AutonomyLevel
    reason: str
    initiated_by: InitiatedBy
    timestamp: datetime
    approved_by: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "from_level": self.from_level.name,
            "to_level": self.to_level.name,
            "reason": self.reason,
            "initiated_by": self.initiated_by.value,
            "approved_by": self.approved_by,
            "timestamp": self.timestamp.isoformat(),
        }


class TenantStore(Protocol):
    async def create_tenant(self, tenant: Tenant) -> Tenant: ...

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]: ...

    async def list_tenants(self) -> list[Tenant]: ...

    async def get_status(self, tenant_id: str) -> Optional[AutonomyLevel]: ...

    async def set_status(
        self, tenant_id: str, expected: AutonomyLevel, new: AutonomyLevel
    ) -> bool: ...

    async def apply_transition(self, transition: AutonomyTransition) -> Tenant:
        """Conditionally update the level and append the record atomically."""
        ...


class TransitionStore(Protocol):
    async def list_transitions(self, tenant_id: str) -> list[AutonomyTransition]: ...


def is_legal_transition(from_level: AutonomyLevel, to_level: AutonomyLevel) -> bool:
    return to_level in LEGAL_TRANSITIONS.get(from_level, frozenset())


def requires_approver(from_level: AutonomyLevel, to_level: AutonomyLevel) -> bool:
    """Resumes and promotions into SUPERVISED or AUTONOMOUS need a named approver."""
    if from_level == AutonomyLevel.PAUSED:
        return True
    is_promotion = to_level > from_level and to_level != AutonomyLevel.PAUSED
    return is_promotion and to_level in (AutonomyLevel.SUPERVISED, AutonomyLevel.AUTONOMOUS)


def validate_transition(
    from_level: AutonomyLevel,
    to_level: AutonomyLevel,
    approved_by: Optional[str] = None,
) -> None:
    """
    Raise InvalidStateError unless the edge is legal and sufficiently approved.
    """
    if not is_legal_transition(from_level, to_level):
        raise InvalidStateError(
            f"Illegal autonomy transition: {from_level.name} -> {to_level.name}"
        )
    if requires_approver(from_level, to_level) and not approved_by:
        raise InvalidStateError(
            f"Transition {from_level.name} -> {to_level.name} requires an approver"
        )


class TransitionController:
    """Applies validated level changes and exposes the audit history."""

    def __init__(self, tenant_store: TenantStore, transition_store: TransitionStore):
        self._tenant_store = tenant_store
        self._transition_store = transition_store

    async def transition(
        self,
        tenant_id: str,
        from_level: AutonomyLevel,
        to_level: AutonomyLevel,
        reason: str,
        initiated_by: InitiatedBy,
        approved_by: Optional[str] = None,
    ) -> AutonomyTransition:
        """
        Move a tenant from `from_level` to `to_level`.

        `from_level` is the level the caller observed; the store applies the
        change only if the tenant is still there.

        Raises:
            InvalidStateError: illegal edge or missing approver
            ConflictError: the stored level no longer equals `from_level`
        """
        validate_transition(from_level, to_level, approved_by)

        record = AutonomyTransition(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            from_level=from_level,
            to_level=to_level,
            reason=reason,
            initiated_by=initiated_by,
            approved_by=approved_by,
            timestamp=datetime.now(timezone.utc),
        )
        await self._tenant_store.apply_transition(record)

        logger.info(
            "Tenant %s transitioned: %s -> %s (%s)",
            tenant_id, from_level.name, to_level.name, reason,
        )
        return record

    async def history(self, tenant_id: str) -> list[AutonomyTransition]:
        """Transition records for a tenant, oldest first."""
        records = await self._transition_store.list_transitions(tenant_id)
        return sorted(records, key=lambda t: t.timestamp)
