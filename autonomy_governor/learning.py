"""
Shadow Learning Aggregator
==========================

Learns from where the agent and human recruiters disagree. Given a batch of
compared interactions, this module:

1. Normalizes every learning string the Comparator produced
2. Counts recurring learnings and keeps those seen at least twice as patterns
3. Asks the Generation Service for guideline updates that would close the
   gap, using the patterns and the worst mismatches as evidence

Guideline updates are proposals for human review. Nothing here edits
guidelines directly.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol, Sequence

from autonomy_governor.errors import ExternalServiceError
from autonomy_governor.interactions import CapturedInteraction
from autonomy_governor.parsing import Fallback, parse_json_list
from autonomy_governor.services import GenerationRequest, GenerationService, call_external

logger = logging.getLogger(__name__)

MIN_PATTERN_FREQUENCY = 2
MAX_PATTERN_EXAMPLES = 3
EXAMPLE_SNIPPET_CHARS = 100
MISMATCH_SAMPLE_SIZE = 5
MISMATCH_SNIPPET_CHARS = 200

GUIDELINE_SYSTEM_PROMPT = """You are analyzing shadow mode results to suggest guideline updates. Based on where the AI agent differs from human recruiters, suggest improvements.

Output as JSON array:
[
  {
    "type": "workflow|template|constraint",
    "path": "path to update (e.g., templates.outreach.email)",
    "reason": "Why this update is needed",
    "suggestedChange": "Description of the change"
  }
]"""


class GuidelineUpdateType(Enum):
    WORKFLOW = "workflow"
    TEMPLATE = "template"
    CONSTRAINT = "constraint"


@dataclass
class LearnedPattern:
    """A learning that recurred across compared interactions."""
    description: str
    frequency: int
    examples: list[str] = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "frequency": self.frequency,
            "examples": list(self.examples),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearnedPattern":
        return cls(
            description=data["description"],
            frequency=int(data["frequency"]),
            examples=list(data.get("examples", [])),
            confidence=float(data.get("confidence", 0.0)),
        )


@dataclass
class GuidelineUpdate:
    """A proposed change to the agent's guidelines, pending human review."""
    type: GuidelineUpdateType
    path: str
    reason: str
    suggested_change: str

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "path": self.path,
            "reason": self.reason,
            "suggested_change": self.suggested_change,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GuidelineUpdate":
        change = data.get("suggested_change", data.get("suggestedChange", ""))
        if not isinstance(change, str):
            change = json.dumps(change)
        return cls(
            type=GuidelineUpdateType(data["type"]),
            path=str(data["path"]),
            reason=str(data.get("reason", "")),
            suggested_change=change,
        )


@dataclass
class ShadowLearning:
    id: str
    session_id: str
    interaction_ids: list[str]
    patterns: list[LearnedPattern]
    guideline_updates: list[GuidelineUpdate]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "interaction_ids": list(self.interaction_ids),
            "patterns": [p.to_dict() for p in self.patterns],
            "guideline_updates": [u.to_dict() for u in self.guideline_updates],
            "created_at": self.created_at.isoformat(),
        }


class GuidelinesStore(Protocol):
    """Sink for proposed guideline updates."""

    async def submit(self, tenant_id: str, learning_id: str, updates: list[GuidelineUpdate]) -> None: ...


def normalize_learning(text: str) -> str:
    return text.strip().lower()


def extract_patterns(compared: Sequence[CapturedInteraction]) -> list[LearnedPattern]:
    """
    Count normalized learnings across compared interactions.

    Returns:
        Patterns seen at least twice, most frequent first
    """
    if not compared:
        return []

    counts: dict[str, int] = {}
    for interaction in compared:
        for learning in interaction.comparison.learnings:
            key = normalize_learning(learning)
            if key:
                counts[key] = counts.get(key, 0) + 1

    patterns: list[LearnedPattern] = []
    for description, count in counts.items():
        if count < MIN_PATTERN_FREQUENCY:
            continue
        examples = [
            i.human_action.content[:EXAMPLE_SNIPPET_CHARS]
            for i in compared
            if any(normalize_learning(l) == description for l in i.comparison.learnings)
        ][:MAX_PATTERN_EXAMPLES]
        patterns.append(LearnedPattern(
            description=description,
            frequency=count,
            examples=examples,
            confidence=min(count / len(compared), 1.0),
        ))

    # Stable sort keeps first-seen order among equal frequencies
    patterns.sort(key=lambda p: p.frequency, reverse=True)
    return patterns


def _guideline_update(item) -> Optional[GuidelineUpdate]:
    if not isinstance(item, dict):
        return None
    try:
        return GuidelineUpdate.from_dict(item)
    except (KeyError, ValueError):
        return None


class LearningAggregator:
    """Aggregates comparison learnings into patterns and guideline proposals."""

    def __init__(self, generation: GenerationService, timeout: Optional[float] = 60.0):
        self._generation = generation
        self.timeout = timeout

    async def generate_learnings(
        self,
        session_id: str,
        interactions: Sequence[CapturedInteraction],
    ) -> ShadowLearning:
        """
        Run one learning pass over a snapshot of a session's interactions.

        Only interactions that carry a comparison take part.
        """
        compared = [i for i in interactions if i.comparison is not None]
        patterns = extract_patterns(compared)
        updates = await self._guideline_updates(patterns, compared) if patterns else []

        learning = ShadowLearning(
            id=str(uuid.uuid4()),
            session_id=session_id,
            interaction_ids=[i.id for i in compared],
            patterns=patterns,
            guideline_updates=updates,
        )
        logger.info(
            "Generated learnings for session %s: %d patterns, %d updates",
            session_id, len(patterns), len(updates),
        )
        return learning

    async def _guideline_updates(
        self,
        patterns: list[LearnedPattern],
        compared: Sequence[CapturedInteraction],
    ) -> list[GuidelineUpdate]:
        mismatches = sorted(
            (i for i in compared if not i.comparison.is_match),
            key=lambda i: i.comparison.similarity,
        )[:MISMATCH_SAMPLE_SIZE]
        mismatch_summary = [
            {
                "type": i.type.value,
                "humanApproach": i.human_action.content[:MISMATCH_SNIPPET_CHARS],
                "agentApproach": i.alternative.content[:MISMATCH_SNIPPET_CHARS] if i.alternative else None,
                "similarity": i.comparison.similarity,
            }
            for i in mismatches
        ]

        request = GenerationRequest(
            system_prompt=GUIDELINE_SYSTEM_PROMPT,
            prompt=(
                f"Patterns observed:\n{json.dumps([p.to_dict() for p in patterns], indent=2)}\n\n"
                f"Key mismatches (agent vs human):\n{json.dumps(mismatch_summary, indent=2)}\n\n"
                "What guideline updates would help the agent better match human behavior?"
            ),
            temperature=0.3,
            max_tokens=2000,
        )

        try:
            text = await call_external("generation", self._generation.complete(request), self.timeout)
        except ExternalServiceError as e:
            logger.warning("Guideline suggestion failed: %s", e)
            return []

        result = parse_json_list(text)
        if isinstance(result, Fallback):
            logger.warning("Guideline suggestion unparseable: %s", result.reason)
            return []

        return [u for u in (_guideline_update(item) for item in result.value) if u is not None]


def get_learning_stats(learnings: Sequence[ShadowLearning]) -> dict:
    """Summary statistics over a set of learning passes."""
    patterns = [p for l in learnings for p in l.patterns]
    updates = [u for l in learnings for u in l.guideline_updates]

    by_type: dict[str, int] = {}
    for update in updates:
        by_type[update.type.value] = by_type.get(update.type.value, 0) + 1

    return {
        "learning_cycles": len(learnings),
        "total_patterns": len(patterns),
        "guideline_updates": len(updates),
        "updates_by_type": by_type,
        "avg_pattern_confidence": (
            sum(p.confidence for p in patterns) / len(patterns) if patterns else 0.0
        ),
    }


def format_pattern(pattern: LearnedPattern) -> str:
    """Format a pattern for display."""
    lines = [
        f"Pattern: {pattern.description}",
        f"  Frequency: {pattern.frequency}",
        f"  Confidence: {pattern.confidence:.0%}",
    ]
    for example in pattern.examples:
        lines.append(f"  Example: {example}")
    return "\n".join(lines)
