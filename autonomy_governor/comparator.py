"""
Comparator
==========

Scores how closely the agent's alternative matches the human action.

The Evaluation Service returns JSON with an overall similarity, per-dimension
scores and free-text learnings. The comparator clamps the similarity to
[0, 1], derives `is_match` from the configured threshold and computes each
dimension's difference itself.

If the service fails, times out or returns something unusable the result
is a neutral fallback: similarity 0.5, no match, no dimensions, no
learnings, with `fallback_reason` recording what went wrong.
"""

import logging
import math
from typing import Optional

from autonomy_governor.errors import ExternalServiceError
from autonomy_governor.interactions import (
    AgentAlternative,
    ComparisonResult,
    DimensionComparison,
    HumanAction,
)
from autonomy_governor.parsing import Fallback, map_parsed, parse_json_object
from autonomy_governor.services import EvaluationService, call_external

logger = logging.getLogger(__name__)

FALLBACK_SIMILARITY = 0.5


def _unit(value) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Score is not a finite number: {value!r}")
    return max(0.0, min(1.0, number))


def _dimension(data: dict) -> DimensionComparison:
    agent_score = data.get("agentScore", data.get("agent_score"))
    human_score = data.get("humanScore", data.get("human_score"))
    if agent_score is None or human_score is None:
        raise KeyError("dimension scores")
    return DimensionComparison(
        dimension=str(data.get("dimension", "unknown")),
        human_score=_unit(human_score),
        agent_score=_unit(agent_score),
        notes=str(data.get("notes", "")),
    )


class Comparator:
    """Turns Evaluation Service replies into ComparisonResults."""

    def __init__(
        self,
        evaluation: EvaluationService,
        comparison_threshold: float = 0.7,
        timeout: Optional[float] = 60.0,
    ):
        self._evaluation = evaluation
        self.comparison_threshold = comparison_threshold
        self.timeout = timeout

    def fallback(self, reason: str) -> ComparisonResult:
        return ComparisonResult(
            similarity=FALLBACK_SIMILARITY,
            is_match=False,
            dimensions=[],
            learnings=[],
            fallback_reason=reason,
        )

    def _build(self, data: dict) -> ComparisonResult:
        similarity = _unit(data["similarity"])
        return ComparisonResult(
            similarity=similarity,
            is_match=similarity >= self.comparison_threshold,
            dimensions=[_dimension(d) for d in data.get("dimensions") or []],
            learnings=[str(item) for item in data.get("learnings") or [] if str(item).strip()],
        )

    async def compare(
        self,
        human: HumanAction,
        alternative: AgentAlternative,
        action_type: str,
    ) -> ComparisonResult:
        """Compare a human action with the agent's alternative. Never raises."""
        try:
            text = await call_external(
                "evaluation",
                self._evaluation.compare(human.content, alternative.content, action_type),
                self.timeout,
            )
        except ExternalServiceError as e:
            logger.warning("Comparison fell back: %s", e)
            return self.fallback(str(e))

        result = map_parsed(parse_json_object(text), self._build)
        if isinstance(result, Fallback):
            logger.warning("Comparison fell back: %s", result.reason)
            return self.fallback(result.reason)

        comparison = result.value
        logger.debug(
            "Similarity %.2f for %s (match=%s)",
            comparison.similarity, action_type, comparison.is_match,
        )
        return comparison
