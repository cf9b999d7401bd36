"""Simulation loop: drives the cognitive engines of every agent in a world.

Flow of one step:

1. Ask the world for each agent's perception context
2. Run the agent's cognitive tick (synchronous)
3. Hand the resulting action intent back to the world
4. Let pending generation / embedding tasks progress before the next step
"""

from typing import Dict, List, Optional, Protocol
import asyncio

from loguru import logger

from mazemind.agent.cognitive_engine import CognitiveEngine
from mazemind.agent.context import ActionIntent, PerceptionContext

TAG = __name__


class World(Protocol):
    """the simulation side: game clock, perception and actuation"""

    game_time: float

    def perceive(self, agent_id: str, game_time: float) -> Optional[PerceptionContext]:
        ...

    def act(self, agent_id: str, intent: ActionIntent) -> None:
        ...

    def advance(self) -> None:
        ...


class SimulationLoop:
    """
    The simulation loop ticks every registered engine once per step.

    Ticks never block on generation: requests run as tasks on the same event
    loop and are picked up by the engine on a later tick.
    """

    def __init__(self, world: World, tick_interval: float = 0.05):
        self.world = world
        self.tick_interval = tick_interval
        self.engines: Dict[str, CognitiveEngine] = {}
        self.steps = 0
        self._running = False

    def add_agent(self, engine: CognitiveEngine) -> CognitiveEngine:
        if engine.agent_id in self.engines:
            raise ValueError(f"agent {engine.agent_id} is already in the simulation")
        self.engines[engine.agent_id] = engine
        logger.bind(tag=TAG).info(f"agent {engine.agent_id} joined the simulation")
        return engine

    def remove_agent(self, agent_id: str) -> Optional[CognitiveEngine]:
        """Remove an agent; its in-flight requests are cancelled."""
        engine = self.engines.pop(agent_id, None)
        if engine is not None:
            engine.remove()
            logger.bind(tag=TAG).info(f"agent {agent_id} left the simulation")
        return engine

    def step(self) -> List[ActionIntent]:
        """Tick every agent once and advance the world clock."""
        intents = []
        game_time = self.world.game_time
        for agent_id, engine in list(self.engines.items()):
            context = self.world.perceive(agent_id, game_time)
            if context is None:
                continue
            try:
                intent = engine.tick(context)
            except Exception as e:
                logger.bind(tag=TAG).error(f"[{agent_id}] tick failed: {e}")
                continue
            self.world.act(agent_id, intent)
            intents.append(intent)

        self.world.advance()
        self.steps += 1
        return intents

    async def run(self, max_steps: Optional[int] = None) -> None:
        """Run the loop until stop() is called or max_steps is reached."""
        self._running = True
        logger.bind(tag=TAG).info(f"Simulation loop started with {len(self.engines)} agents")

        while self._running:
            self.step()
            if max_steps is not None and self.steps >= max_steps:
                break
            # yields to pending generation and embedding tasks
            await asyncio.sleep(self.tick_interval)

        self._running = False
        logger.bind(tag=TAG).info(f"Simulation loop finished after {self.steps} steps")

    def stop(self) -> None:
        """Stop the simulation loop."""
        self._running = False
        logger.bind(tag=TAG).info("Simulation loop stopping")

    async def shutdown(self) -> None:
        """Stop, let in-flight work finish, then remove every agent."""
        self.stop()
        for engine in list(self.engines.values()):
            await engine.wait_idle()
        for agent_id in list(self.engines):
            self.remove_agent(agent_id)
