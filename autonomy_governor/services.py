"""
External Service Contracts
==========================

The governance engine consumes two model-backed services:

- GenerationService: free-form completion used for agent alternatives and
  guideline suggestions
- EvaluationService: scores a human action against the agent's alternative

Both return raw text; callers parse it with autonomy_governor.parsing.

ClaudeGenerationService implements GenerationService on the Claude Code SDK.
LLMEvaluationService implements EvaluationService on top of any
GenerationService.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Optional, Protocol, TypeVar

from claude_code_sdk import ClaudeCodeOptions, ClaudeSDKClient

from autonomy_governor.errors import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class GenerationRequest:
    system_prompt: str
    prompt: str
    temperature: float = 0.5
    max_tokens: int = 1000


class GenerationService(Protocol):
    async def complete(self, request: GenerationRequest) -> str: ...


class EvaluationService(Protocol):
    async def compare(self, human_content: str, agent_content: str, action_type: str) -> str: ...


async def call_external(service: str, awaitable: Awaitable[T], timeout: Optional[float]) -> T:
    """
    Await an external call under a timeout.

    Any failure, a timeout included, is raised as ExternalServiceError.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except ExternalServiceError:
        raise
    except asyncio.TimeoutError as e:
        raise ExternalServiceError(service, f"timed out after {timeout}s") from e
    except Exception as e:
        raise ExternalServiceError(service, str(e) or type(e).__name__) from e


# =============================================================================
# Claude-backed Generation
# =============================================================================

class ClaudeGenerationService:
    """
    GenerationService backed by a one-turn Claude Code SDK session.

    The SDK picks its own sampling settings, so `temperature` and
    `max_tokens` on the request are advisory here.
    """

    def __init__(self, model: str):
        self.model = model

    def _options(self, request: GenerationRequest) -> ClaudeCodeOptions:
        return ClaudeCodeOptions(
            model=self.model,
            system_prompt=request.system_prompt,
            max_turns=1,
            allowed_tools=[],
        )

    async def complete(self, request: GenerationRequest) -> str:
        response_text = ""
        try:
            async with ClaudeSDKClient(options=self._options(request)) as client:
                await client.query(request.prompt)
                async for msg in client.receive_response():
                    if type(msg).__name__ == "AssistantMessage" and hasattr(msg, "content"):
                        for block in msg.content:
                            if type(block).__name__ == "TextBlock" and hasattr(block, "text"):
                                response_text += block.text
        except Exception as e:
            raise ExternalServiceError("generation", str(e) or type(e).__name__) from e

        if not response_text.strip():
            raise ExternalServiceError("generation", "empty response")
        return response_text


# =============================================================================
# Model-backed Evaluation
# =============================================================================

COMPARE_SYSTEM_PROMPT = """You are an expert at comparing recruiting actions. Compare a human recruiter's action with an AI agent's alternative.

Output as JSON:
{
  "similarity": 0.0-1.0,
  "dimensions": [
    { "dimension": "dimension_name", "humanScore": 0.0-1.0, "agentScore": 0.0-1.0, "notes": "..." }
  ],
  "learnings": ["learning 1", "learning 2"],
  "analysis": "Overall analysis"
}"""


class LLMEvaluationService:
    """EvaluationService that asks a GenerationService for a JSON comparison."""

    def __init__(self, generation: GenerationService):
        self._generation = generation

    async def compare(self, human_content: str, agent_content: str, action_type: str) -> str:
        prompt = (
            f"Action Type: {action_type}\n\n"
            f"Human Action:\n{human_content}\n\n"
            f"Agent Alternative:\n{agent_content}\n\n"
            "Compare these actions."
        )
        return await self._generation.complete(GenerationRequest(
            system_prompt=COMPARE_SYSTEM_PROMPT,
            prompt=prompt,
            temperature=0.2,
            max_tokens=1500,
        ))
