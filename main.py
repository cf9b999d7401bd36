"""
MazeMind demo - a few agents in a small scripted maze
"""

import asyncio
import random
import sys
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from loguru import logger

from mazemind.agent.cognitive_engine import CognitiveEngine
from mazemind.agent.context import (
    ActionIntent,
    Interaction,
    InteractionType,
    Observation,
    PerceptionContext,
    Position,
    SurvivalMetrics,
    VisibleItem,
)
from mazemind.agent.loop import SimulationLoop
from mazemind.config import EngineConfig


# ============================================================================
# Configuration
# ============================================================================

CONFIG = {
    # generation: "heuristic" runs offline, "openai" needs api_key / base_url
    "generation": {
        "provider": "heuristic",
        "model": "gpt-4o-mini",
        "timeout": 10.0,
    },
    "embedding": {
        "provider": "dummy",  # dummy, openai, local
        "dimension": 128,
    },
    "reflection": {
        "threshold": 60,
    },
    "memory": {
        "capacity": 500,
    },
}

AGENTS = ["alice", "bob", "carol"]
MAZE_SIZE = 12
SECONDS_PER_STEP = 60.0
STEPS = 240
VIEW_RADIUS = 3
ITEM_TYPES = {"food": "hunger", "water": "thirst", "energy": "energy"}


# ============================================================================
# Demo world
# ============================================================================

@dataclass
class AgentBody:
    position: Position
    survival: SurvivalMetrics = field(default_factory=SurvivalMetrics)
    visited: set = field(default_factory=set)
    inbox: List[Observation] = field(default_factory=list)


class DemoWorld:
    """tiny open grid with scattered resources and slowly draining needs"""

    def __init__(self, size: int = MAZE_SIZE, seed: int = 7):
        self.size = size
        self.rng = random.Random(seed)
        self.game_time = 8 * 3600.0
        self.bodies: Dict[str, AgentBody] = {}
        self.items: Dict[Position, str] = {}
        self.engines: Dict[str, CognitiveEngine] = {}
        for _ in range(size):
            self.spawn_item()

    def spawn_item(self):
        position = Position(self.rng.randrange(self.size), self.rng.randrange(self.size))
        self.items[position] = self.rng.choice(list(ITEM_TYPES))

    def add_body(self, agent_id: str):
        start = Position(self.rng.randrange(self.size), self.rng.randrange(self.size))
        self.bodies[agent_id] = AgentBody(position=start, visited={start})

    def perceive(self, agent_id: str, game_time: float) -> Optional[PerceptionContext]:
        body = self.bodies.get(agent_id)
        if body is None:
            return None

        visible = tuple(
            VisibleItem(item_type, position)
            for position, item_type in self.items.items()
            if position.manhattan(body.position) <= VIEW_RADIUS
        )
        nearby = [
            other for other, other_body in self.bodies.items()
            if other != agent_id and other_body.position.manhattan(body.position) <= 1
        ]
        interactions = tuple(
            Interaction(
                other_id=other,
                interaction_type=InteractionType.PROXIMITY,
                timestamp=game_time,
                sentiment=0.2,
                summary="crossed paths in a corridor",
            )
            for other in nearby
        )

        observations = list(body.inbox)
        body.inbox.clear()
        for item in visible:
            observations.append(Observation(
                f"Saw {item.item_type} at ({item.position.x}, {item.position.y})",
                location=item.position,
            ))

        return PerceptionContext(
            agent_id=agent_id,
            game_time=game_time,
            position=body.position,
            survival=body.survival,
            nearby_entities=tuple(nearby),
            visible_items=visible,
            observations=tuple(observations),
            interactions=interactions,
            exploration_progress=len(body.visited) / (self.size * self.size),
            time_of_day="day" if 6 <= (game_time // 3600) % 24 < 20 else "night",
        )

    def act(self, agent_id: str, intent: ActionIntent):
        body = self.bodies[agent_id]
        engine = self.engines[agent_id]

        if intent.target_position is not None and intent.target_position != body.position:
            self._move_towards(body, intent.target_position)
        elif intent.action_type in ("explore", "seek_item", "move"):
            self._wander(body)
        elif intent.action_type == "rest":
            body.survival = replace(body.survival, energy=min(100.0, body.survival.energy + 5))

        item_type = self.items.get(body.position)
        if item_type is not None and intent.action_type in ("consume_item", "seek_item", "move"):
            del self.items[body.position]
            need = ITEM_TYPES[item_type]
            body.survival = replace(body.survival, **{need: 100.0})
            body.inbox.append(Observation(f"Consumed {item_type}, {need} fully restored", importance=7))
            self.spawn_item()

        if intent.action_id and intent.action_type in ("move", "consume_item") and body.position == intent.target_position:
            engine.complete_action(intent.action_id)

    def _move_towards(self, body: AgentBody, target: Position):
        dx = (target.x > body.position.x) - (target.x < body.position.x)
        dy = (target.y > body.position.y) - (target.y < body.position.y)
        step = Position(body.position.x + dx, body.position.y) if dx else Position(body.position.x, body.position.y + dy)
        body.position = step
        body.visited.add(step)

    def _wander(self, body: AgentBody):
        dx, dy = self.rng.choice([(1, 0), (-1, 0), (0, 1), (0, -1)])
        x = min(self.size - 1, max(0, body.position.x + dx))
        y = min(self.size - 1, max(0, body.position.y + dy))
        body.position = Position(x, y)
        body.visited.add(body.position)

    def advance(self):
        self.game_time += SECONDS_PER_STEP
        for body in self.bodies.values():
            s = body.survival
            body.survival = replace(
                s,
                hunger=max(0.0, s.hunger - 0.4),
                thirst=max(0.0, s.thirst - 0.6),
                energy=max(0.0, s.energy - 0.25),
            )


# ============================================================================
# Setup
# ============================================================================

def create_engine(agent_id: str, config: EngineConfig) -> CognitiveEngine:
    """create the cognitive engine of one agent"""
    return CognitiveEngine(agent_id, config=config, agent_name=agent_id.capitalize())


def create_simulation() -> SimulationLoop:
    config = EngineConfig.from_dict(CONFIG)
    world = DemoWorld()
    loop = SimulationLoop(world, tick_interval=0)
    for agent_id in AGENTS:
        world.add_body(agent_id)
        engine = create_engine(agent_id, config)
        world.engines[agent_id] = engine
        loop.add_agent(engine)
    return loop


# ============================================================================
# Run
# ============================================================================

async def run_demo(steps: int = STEPS):
    """run the demo and print a short report per agent"""
    simulation = create_simulation()
    await simulation.run(max_steps=steps)

    print("=" * 60)
    for agent_id, engine in simulation.engines.items():
        view = engine.inspect()
        print(f"{agent_id}: {view['intent']['action_type']} - {view['intent']['description']}")
        print(view['plan_outline'])
        print(f"memory: {view['memory']}")
        for line in view['relationships']:
            print(f"  {line}")
        print("-" * 60)

    await simulation.shutdown()


if __name__ == "__main__":
    logger.remove()
    logger.add(sys.stderr, level="INFO")
    asyncio.run(run_demo())
