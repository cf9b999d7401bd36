"""
Pytest configuration and shared test doubles for mazemind tests.

Generation and embedding services are replaced by deterministic doubles so
tests never reach the network.
"""

import asyncio
import hashlib
from typing import Dict, List, Optional

import pytest

from mazemind.agent.context import (
    Interaction,
    InteractionType,
    Observation,
    PerceptionContext,
    Position,
    SurvivalMetrics,
    VisibleItem,
)
from mazemind.agent.memory.memory_stream import MemoryStore


# =============================================================================
# Service doubles
# =============================================================================

class ScriptedGenerator:
    """
    Answers by prompt keyword: the first key found in the prompt wins.

    Every prompt is recorded in .prompts.
    """

    def __init__(self, responses: Optional[Dict[str, str]] = None, default: str = ""):
        self.responses = responses or {}
        self.default = default
        self.prompts: List[str] = []

    async def synthesize(self, prompt, system_prompt=None, max_tokens=300, temperature=0.7):
        self.prompts.append(prompt)
        for key, response in self.responses.items():
            if key in prompt:
                return response
        return self.default


class FailingGenerator:
    def __init__(self):
        self.calls = 0

    async def synthesize(self, prompt, system_prompt=None, max_tokens=300, temperature=0.7):
        self.calls += 1
        raise RuntimeError("generation service unavailable")


class SlowGenerator:
    """Never answers within a reasonable timeout."""

    def __init__(self, delay: float = 5.0):
        self.delay = delay
        self.calls = 0

    async def synthesize(self, prompt, system_prompt=None, max_tokens=300, temperature=0.7):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return "GOAL: too late"


class HashEmbedder:
    """Bag-of-words vectors: texts sharing words point the same way."""

    def __init__(self, dimension: int = 512):
        self.dimension = dimension
        self.calls = 0

    async def embed(self, text: str) -> List[float]:
        self.calls += 1
        vector = [0.0] * self.dimension
        for word in text.lower().split():
            word = word.strip(".,:;!?()")
            if not word:
                continue
            index = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[index] += 1.0
        return vector

    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        return [await self.embed(text) for text in texts]


class FailingEmbedder:
    async def embed(self, text: str) -> List[float]:
        raise RuntimeError("embedding service unavailable")


# =============================================================================
# Builders
# =============================================================================

def make_context(
    game_time: float = 0.0,
    agent_id: str = "alice",
    position: Position = Position(0, 0),
    hunger: float = 100.0,
    thirst: float = 100.0,
    energy: float = 100.0,
    stress: float = 0.0,
    visible_items=(),
    observations=(),
    interactions=(),
    exploration_progress: float = 0.1,
) -> PerceptionContext:
    return PerceptionContext(
        agent_id=agent_id,
        game_time=game_time,
        position=position,
        survival=SurvivalMetrics(hunger=hunger, thirst=thirst, energy=energy, stress=stress),
        visible_items=tuple(visible_items),
        observations=tuple(observations),
        interactions=tuple(interactions),
        exploration_progress=exploration_progress,
    )


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore("alice", clock=clock)


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def food_item():
    return VisibleItem("food", Position(3, 0))


@pytest.fixture
def helping():
    def build(timestamp: float, sentiment: float = 0.5, other: str = "bob"):
        return Interaction(
            other_id=other,
            interaction_type=InteractionType.HELPING,
            timestamp=timestamp,
            sentiment=sentiment,
            summary="shared water",
        )
    return build


@pytest.fixture
def observation():
    def build(content: str, importance: Optional[float] = None):
        return Observation(content, importance=importance)
    return build
