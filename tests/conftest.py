"""
Shared fixtures for governance engine tests.

Model-backed services are replaced by scripted fakes so tests never reach
the network.
"""

import asyncio
import json
import tempfile
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio

from autonomy_governor.config import GovernorConfig, PromotionThresholds
from autonomy_governor.db.connection import Database
from autonomy_governor.governor import Governor
from autonomy_governor.levels import AutonomyLevel
from autonomy_governor.services import GenerationRequest


MESSAGE_REPLY = json.dumps({"content": "Agent outreach message", "reasoning": "Warm and concise"})


class FakeGenerationService:
    """
    Scripted GenerationService.

    `responses` maps a system prompt to its reply; anything else gets
    `default`. When `error` is set every call raises it.
    """

    def __init__(
        self,
        default: str = MESSAGE_REPLY,
        responses: Optional[dict[str, str]] = None,
        error: Optional[Exception] = None,
    ):
        self.default = default
        self.responses = dict(responses or {})
        self.error = error
        self.requests: list[GenerationRequest] = []

    async def complete(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.responses.get(request.system_prompt, self.default)


def comparison_reply(similarity: float, learnings: Optional[list[str]] = None) -> str:
    return json.dumps({
        "similarity": similarity,
        "dimensions": [
            {"dimension": "tone", "humanScore": 0.8, "agentScore": 0.6, "notes": "slightly formal"},
        ],
        "learnings": learnings or [],
        "analysis": "ok",
    })


class FakeEvaluationService:
    """
    Scripted EvaluationService.

    Replies are consumed in order; once exhausted `default` is returned.
    If `gate` is set, every call waits on it first.
    """

    def __init__(
        self,
        replies: Optional[list[str]] = None,
        default: Optional[str] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.replies = list(replies or [])
        self.default = default if default is not None else comparison_reply(0.8)
        self.error = error
        self.gate = gate
        self.calls: list[tuple[str, str, str]] = []

    async def compare(self, human_content: str, agent_content: str, action_type: str) -> str:
        self.calls.append((human_content, agent_content, action_type))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return self.default


def instant_promotion_config(db_path: str = ":memory:") -> GovernorConfig:
    """Default thresholds without minimum level durations."""
    config = GovernorConfig(db_path=db_path)
    config.promotion = PromotionThresholds(
        min_duration_hours={level: 0 for level in AutonomyLevel}
    )
    return config


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest_asyncio.fixture
async def db(temp_dir):
    """An initialized database in a temp directory."""
    database = Database(temp_dir / "governor.db")
    await database.init()
    yield database
    await database.dispose()


@pytest.fixture
def generation():
    return FakeGenerationService()


@pytest.fixture
def evaluation():
    return FakeEvaluationService()


@pytest_asyncio.fixture
async def governor(temp_dir, db, generation, evaluation):
    """A started Governor over fake model services."""
    config = instant_promotion_config(str(temp_dir / "governor.db"))
    gov = Governor(config, db, generation, evaluation=evaluation)
    await gov.start()
    yield gov
    await gov.close()
