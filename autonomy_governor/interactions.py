"""
Shadow-Mode Interaction Records
===============================

Data types for one captured human action and everything derived from it:
the agent's independent alternative and the comparison between the two.

A CapturedInteraction is `pending` until both its alternative and its
comparison are set, then `compared`.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CaptureType(Enum):
    OUTREACH_MESSAGE = "outreach_message"
    FOLLOW_UP_MESSAGE = "follow_up_message"
    SCREENING_DECISION = "screening_decision"
    SCHEDULING_ACTION = "scheduling_action"
    CANDIDATE_RESPONSE_HANDLING = "candidate_response_handling"

    @property
    def is_message(self) -> bool:
        return "message" in self.value


class InteractionStatus(Enum):
    PENDING = "pending"
    COMPARED = "compared"


@dataclass
class InteractionContext:
    """What the human could see when acting."""
    candidate_id: Optional[str] = None
    requisition_id: Optional[str] = None
    conversation_id: Optional[str] = None
    previous_messages: list[dict] = field(default_factory=list)
    candidate_profile: dict[str, Any] = field(default_factory=dict)
    role_requirements: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "candidate_id": self.candidate_id,
            "requisition_id": self.requisition_id,
            "conversation_id": self.conversation_id,
            "previous_messages": list(self.previous_messages),
            "candidate_profile": dict(self.candidate_profile),
            "role_requirements": dict(self.role_requirements),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InteractionContext":
        return cls(
            candidate_id=data.get("candidate_id"),
            requisition_id=data.get("requisition_id"),
            conversation_id=data.get("conversation_id"),
            previous_messages=list(data.get("previous_messages") or []),
            candidate_profile=dict(data.get("candidate_profile") or {}),
            role_requirements=dict(data.get("role_requirements") or {}),
        )


@dataclass
class HumanAction:
    action_type: str
    content: str
    performed_by: str
    performed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "action_type": self.action_type,
            "content": self.content,
            "performed_by": self.performed_by,
            "performed_at": _iso(self.performed_at),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HumanAction":
        return cls(
            action_type=data["action_type"],
            content=data.get("content", ""),
            performed_by=data.get("performed_by", ""),
            performed_at=_parse_dt(data.get("performed_at")) or datetime.now(timezone.utc),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class AgentAlternative:
    """What the agent would have done in the human's place."""
    action_type: str
    content: str
    confidence: float
    reasoning: str
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "action_type": self.action_type,
            "content": self.content,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "generated_at": _iso(self.generated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentAlternative":
        return cls(
            action_type=data["action_type"],
            content=data.get("content", ""),
            confidence=float(data.get("confidence", 0.5)),
            reasoning=data.get("reasoning", ""),
            generated_at=_parse_dt(data.get("generated_at")) or datetime.now(timezone.utc),
        )


@dataclass
class DimensionComparison:
    dimension: str
    human_score: float
    agent_score: float
    notes: str = ""

    @property
    def difference(self) -> float:
        return abs(self.human_score - self.agent_score)

    def to_dict(self) -> dict:
        return {
            "dimension": self.dimension,
            "human_score": self.human_score,
            "agent_score": self.agent_score,
            "difference": self.difference,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DimensionComparison":
        return cls(
            dimension=data["dimension"],
            human_score=float(data["human_score"]),
            agent_score=float(data["agent_score"]),
            notes=data.get("notes", ""),
        )


@dataclass
class ComparisonResult:
    similarity: float
    is_match: bool
    dimensions: list[DimensionComparison] = field(default_factory=list)
    learnings: list[str] = field(default_factory=list)
    # Set when the evaluation could not be used and defaults were applied
    fallback_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "similarity": self.similarity,
            "is_match": self.is_match,
            "dimensions": [d.to_dict() for d in self.dimensions],
            "learnings": list(self.learnings),
            "fallback_reason": self.fallback_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ComparisonResult":
        return cls(
            similarity=float(data["similarity"]),
            is_match=bool(data["is_match"]),
            dimensions=[DimensionComparison.from_dict(d) for d in data.get("dimensions", [])],
            learnings=list(data.get("learnings", [])),
            fallback_reason=data.get("fallback_reason"),
        )


@dataclass
class CapturedInteraction:
    id: str
    session_id: str
    tenant_id: str
    type: CaptureType
    timestamp: datetime
    context: InteractionContext
    human_action: HumanAction
    alternative: Optional[AgentAlternative] = None
    comparison: Optional[ComparisonResult] = None

    @property
    def status(self) -> InteractionStatus:
        if self.alternative is not None and self.comparison is not None:
            return InteractionStatus.COMPARED
        return InteractionStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "tenant_id": self.tenant_id,
            "type": self.type.value,
            "timestamp": _iso(self.timestamp),
            "status": self.status.value,
            "context": self.context.to_dict(),
            "human_action": self.human_action.to_dict(),
            "alternative": self.alternative.to_dict() if self.alternative else None,
            "comparison": self.comparison.to_dict() if self.comparison else None,
        }
