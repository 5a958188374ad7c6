"""
Alternative Generator
=====================

Asks the Generation Service what the agent would have done in place of a
captured human action. The prompt depends on the capture type:

- message types: the agent writes its own message
- screening decisions: the agent makes an independent advance/reject/hold call
- everything else: the agent describes the action it would have taken

Service failures raise ExternalServiceError. Replies that are not the JSON
we asked for still produce an alternative, built from the raw text at
reduced confidence.
"""

import json
import logging
import math
from typing import Optional

from autonomy_governor.interactions import AgentAlternative, CaptureType, CapturedInteraction
from autonomy_governor.parsing import Fallback, parse_json_object
from autonomy_governor.services import GenerationRequest, GenerationService, call_external

logger = logging.getLogger(__name__)

RAW_RESPONSE_CONFIDENCE = 0.5
RAW_RESPONSE_REASONING = "Raw response - JSON parsing failed"

MESSAGE_SYSTEM_PROMPT = """You are an AI recruiting assistant in shadow mode. Generate the message you would have sent to this candidate.

Output as JSON:
{
  "content": "Your message text",
  "reasoning": "Why you chose this approach"
}"""

DECISION_SYSTEM_PROMPT = """You are an AI recruiting assistant in shadow mode. Generate your screening decision for this candidate.

Output as JSON:
{
  "decision": "advance|reject|hold",
  "reasoning": "Detailed reasoning for your decision",
  "confidence": 0.0-1.0
}"""

GENERIC_SYSTEM_PROMPT = (
    "You are an AI recruiting assistant in shadow mode. "
    "Describe what action you would have taken."
)


def _context_json(interaction: CapturedInteraction) -> str:
    return json.dumps(interaction.context.to_dict(), indent=2, default=str)


def _clamp_confidence(value) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Confidence is not a finite number: {value!r}")
    return max(0.0, min(1.0, number))


class AlternativeGenerator:
    """Produces the agent's independent version of a human action."""

    def __init__(self, generation: GenerationService, timeout: Optional[float] = 60.0):
        self._generation = generation
        self.timeout = timeout

    async def _complete(self, request: GenerationRequest) -> str:
        return await call_external("generation", self._generation.complete(request), self.timeout)

    async def generate(self, interaction: CapturedInteraction) -> AgentAlternative:
        """
        Generate an alternative for `interaction`.

        Raises:
            ExternalServiceError: the Generation Service failed or timed out
        """
        if interaction.type.is_message:
            return await self._message_alternative(interaction)
        elif interaction.type == CaptureType.SCREENING_DECISION:
            return await self._decision_alternative(interaction)
        return await self._generic_alternative(interaction)

    def _raw(self, interaction: CapturedInteraction, text: str, reason: str) -> AgentAlternative:
        logger.warning("Alternative for %s fell back to raw text: %s", interaction.id, reason)
        return AgentAlternative(
            action_type=interaction.human_action.action_type,
            content=text,
            confidence=RAW_RESPONSE_CONFIDENCE,
            reasoning=RAW_RESPONSE_REASONING,
        )

    async def _message_alternative(self, interaction: CapturedInteraction) -> AgentAlternative:
        text = await self._complete(GenerationRequest(
            system_prompt=MESSAGE_SYSTEM_PROMPT,
            prompt=(
                f"Context:\n{_context_json(interaction)}\n\n"
                f"Human sent this message:\n{interaction.human_action.content}\n\n"
                "What message would you have sent? Generate YOUR version, not a copy."
            ),
            temperature=0.7,
            max_tokens=1000,
        ))

        result = parse_json_object(text)
        if isinstance(result, Fallback):
            return self._raw(interaction, text, result.reason)
        if not isinstance(result.value.get("content"), str):
            return self._raw(interaction, text, "missing content")

        return AgentAlternative(
            action_type=interaction.human_action.action_type,
            content=result.value["content"],
            confidence=0.8,
            reasoning=str(result.value.get("reasoning", "")),
        )

    async def _decision_alternative(self, interaction: CapturedInteraction) -> AgentAlternative:
        human = interaction.human_action
        text = await self._complete(GenerationRequest(
            system_prompt=DECISION_SYSTEM_PROMPT,
            prompt=(
                f"Context:\n{_context_json(interaction)}\n\n"
                f"Human made this decision: {human.metadata.get('decision')}\n"
                f"Human reasoning: {human.content}\n\n"
                "What decision would YOU have made? Be independent."
            ),
            temperature=0.3,
            max_tokens=1000,
        ))

        result = parse_json_object(text)
        if isinstance(result, Fallback):
            return self._raw(interaction, text, result.reason)

        data = result.value
        reasoning = str(data.get("reasoning", ""))
        try:
            confidence = _clamp_confidence(data.get("confidence", RAW_RESPONSE_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = RAW_RESPONSE_CONFIDENCE

        return AgentAlternative(
            action_type=CaptureType.SCREENING_DECISION.value,
            content=reasoning,
            confidence=confidence,
            reasoning=f"Decision: {data.get('decision')}. {reasoning}",
        )

    async def _generic_alternative(self, interaction: CapturedInteraction) -> AgentAlternative:
        human = interaction.human_action
        text = await self._complete(GenerationRequest(
            system_prompt=GENERIC_SYSTEM_PROMPT,
            prompt=(
                f"Context: {_context_json(interaction)}\n"
                f"Human action: {human.action_type} - {human.content}\n\n"
                "What would you have done?"
            ),
            temperature=0.5,
            max_tokens=500,
        ))
        return AgentAlternative(
            action_type=human.action_type,
            content=text.strip(),
            confidence=0.6,
            reasoning="Generic alternative",
        )
