"""
CognitiveEngine - per-agent cognitive engine

Combines the agent's cognitive components:
- memory store (MemoryStore)
- importance scoring (ImportanceScorer)
- embedding service (EmbeddingGenerator or any async embed())
- three-factor retrieval (RetrievalEngine)
- reflection (ReflectionEngine)
- hierarchical planning (PlanningEngine)
- relationship memory (RelationshipMemory)

Flow of one tick:
1. apply the finished generation request (plan or reflection), if any
2. store observations + relationship interactions from the perception context
3. evaluate the reflection trigger
4. evaluate re-planning triggers, install a heuristic plan if one fires
5. look up the current action and build the action intent
6. submit at most one generation request (plan first, then reflection)
7. start embedding backfill for records that have no embedding yet

tick() is synchronous; generation and embedding run as asyncio tasks.
"""

from dataclasses import asdict
from typing import Any, Dict, Optional
import asyncio
import json
import os

from loguru import logger

from mazemind.agent.context import ActionIntent, Interaction, PerceptionContext, Position
from mazemind.agent.generation import RequestOutcome, RequestSlot, create_generator
from mazemind.agent.memory.embedding_generator import EmbeddingGenerator
from mazemind.agent.memory.importance_scorer import ImportanceScorer
from mazemind.agent.memory.memory_record import MemoryRecord
from mazemind.agent.memory.memory_stream import MemoryStore
from mazemind.agent.memory.reflect import ReflectionEngine
from mazemind.agent.memory.relationships import RelationshipMemory
from mazemind.agent.memory.retrieve import RetrievalEngine
from mazemind.agent.planning.plan_tree import ActionPlan, DailyPlan, PlanStatus
from mazemind.agent.planning.planner import PlanningEngine
from mazemind.config import EngineConfig

TAG = __name__

BACKFILL_BATCH = 32


class CognitiveEngine:
    """
    cognitive engine of one agent

    Owns every component and the agent's generation request slot; the world
    collaborator calls tick(context) once per simulation tick and polls the
    returned ActionIntent.
    """

    def __init__(
        self,
        agent_id: str,
        config: Optional[EngineConfig] = None,
        generator=None,
        embedder=None,
        agent_name: Optional[str] = None,
    ):
        """
        initialize cognitive engine

        Args:
            agent_id: agent identifier
            config: engine configuration (defaults when None)
            generator: generation service (default: built from config.generation)
            embedder: embedding service (default: built from config.embedding)
            agent_name: name used in prompts (default agent_id)
        """
        self.agent_id = agent_id
        self.agent_name = agent_name or agent_id
        self.config = (config or EngineConfig()).validate()

        # game time seen by the store clock; only moves forward
        self._now = 0.0

        memory_cfg = self.config.memory
        self.store = MemoryStore(
            agent_id=agent_id,
            capacity=memory_cfg.capacity,
            retention_recency_weight=memory_cfg.retention_recency_weight,
            retention_importance_weight=memory_cfg.retention_importance_weight,
            half_life_hours=memory_cfg.half_life_hours,
            clock=lambda: self._now,
            memory_file=memory_cfg.memory_file,
        )

        self.importance_scorer = ImportanceScorer()
        self.embedder = embedder if embedder is not None else EmbeddingGenerator(asdict(self.config.embedding))
        self.generator = generator if generator is not None else create_generator(self.config.generation)

        retrieval_cfg = self.config.retrieval
        self.retriever = RetrievalEngine(
            self.store,
            self.embedder,
            recency_weight=retrieval_cfg.recency_weight,
            importance_weight=retrieval_cfg.importance_weight,
            relevance_weight=retrieval_cfg.relevance_weight,
            half_life_hours=retrieval_cfg.half_life_hours,
            top_k=retrieval_cfg.top_k,
            touch_on_retrieve=retrieval_cfg.touch_on_retrieve,
        )

        reflection_cfg = self.config.reflection
        self.reflector = ReflectionEngine(
            self.store,
            self.retriever,
            generator=self.generator,
            agent_name=self.agent_name,
            enabled=reflection_cfg.enabled,
            threshold=reflection_cfg.threshold,
            fallback_interval_hours=reflection_cfg.fallback_interval_hours,
            recent_window=reflection_cfg.recent_window,
            importance_floor=reflection_cfg.importance_floor,
            questions_per_reflection=reflection_cfg.questions_per_reflection,
            evidence_per_question=reflection_cfg.evidence_per_question,
            reflections_per_meta=reflection_cfg.reflections_per_meta,
            max_depth=reflection_cfg.max_depth,
            temperature=self.config.planning.temperature,
            request_timeout=self.config.generation.timeout,
        )

        planning_cfg = self.config.planning
        self.planner = PlanningEngine(
            agent_id,
            self.store,
            retriever=self.retriever,
            generator=self.generator,
            hourly_plan_count=planning_cfg.hourly_plan_count,
            hour_duration=planning_cfg.hour_duration,
            action_duration=planning_cfg.action_duration,
            critical_hunger=planning_cfg.critical_hunger,
            critical_thirst=planning_cfg.critical_thirst,
            critical_energy=planning_cfg.critical_energy,
            divergence_factor=planning_cfg.divergence_factor,
            overrun_factor=planning_cfg.overrun_factor,
            temperature=planning_cfg.temperature,
            max_tokens=planning_cfg.max_tokens,
            request_timeout=self.config.generation.timeout,
        )

        relationship_cfg = self.config.relationships
        self.relationships = RelationshipMemory(agent_id, **asdict(relationship_cfg))

        self.slot = RequestSlot(timeout=self.config.generation.job_timeout, owner=agent_id)

        # generated plan wanted for the current (heuristic) plan epoch
        self.plan_wanted = False
        # next reflection pass runs on templates only (after a failed request)
        self._reflection_offline = False

        self._embedding_task: Optional[asyncio.Task] = None
        self._embedding_retry_at: Optional[float] = None
        self._last_decay_time: Optional[float] = None

        self._intent: Optional[ActionIntent] = None
        self.removed = False
        self.tick_count = 0
        self.discarded_outcomes = 0

        logger.bind(tag=TAG).info(
            f"CognitiveEngine initialized: agent={agent_id}, "
            f"generator={type(self.generator).__name__ if self.generator else 'heuristic'}, "
            f"embedder={type(self.embedder).__name__}"
        )

    # ------------------------------------------------------------------ tick

    def tick(self, context: PerceptionContext) -> ActionIntent:
        """run one simulation tick and return the action intent"""
        if self.removed:
            logger.bind(tag=TAG).warning(f"[{self.agent_id}] tick after removal ignored")
            return self._wait_intent("agent removed")

        now = context.game_time
        self._now = max(self._now, now)
        self.tick_count += 1

        # 1. results of the previous request, applied in one step
        self._apply_outcome(self.slot.collect())

        # 2. perception
        self._ingest(context)
        self._decay_relationships(now)

        # 3. reflection trigger (time-based fallback; importance is counted on add)
        self.reflector.check(now)

        # 4. re-planning, before any intent for this tick exists
        reason = self.planner.monitor(context)
        if reason is not None and self.generator is not None:
            self.plan_wanted = True

        # 5. current action
        action = self.planner.get_current_action(now)
        self._intent = self._intent_for(action)

        # 6. at most one generation request in flight
        self._submit_requests(context)

        # 7. embeddings
        self._schedule_backfill()

        return self._intent

    def _ingest(self, context: PerceptionContext):
        for observation in context.observations:
            self.observe(
                observation.content,
                importance=observation.importance,
                location=observation.location or context.position,
            )

        for interaction in context.interactions:
            self.record_interaction(interaction)

    def _decay_relationships(self, now: float):
        if self._last_decay_time is None:
            self._last_decay_time = now
            return
        hours = int((now - self._last_decay_time) // 3600)
        if hours >= 1:
            self.relationships.apply_decay(hours, now)
            self._last_decay_time += hours * 3600

    def observe(self, content: str, importance: Optional[float] = None, location: Optional[Position] = None) -> MemoryRecord:
        """
        store an observation (scored by rules when importance is None)

        Raises MalformedRecordError for an importance outside [1, 10].
        """
        if importance is None:
            importance = self.importance_scorer.score(content)
        return self.store.add_observation(content, importance, location=location)

    def record_interaction(self, interaction: Interaction):
        record = self.relationships.record_interaction(interaction)
        name = interaction.other_name or interaction.other_id
        content = f"{interaction.interaction_type.value.replace('_', ' ')} with {name}"
        if interaction.summary:
            content = f"{content}: {interaction.summary}"
        self.observe(content, location=interaction.location)
        return record

    # -------------------------------------------------------------- requests

    def _submit_requests(self, context: PerceptionContext):
        if self.slot.busy:
            return

        if self.plan_wanted and self.generator is not None:
            if self.slot.submit("plan", self.planner.build_plan(context), epoch=self.planner.epoch):
                self.plan_wanted = False
            return

        use_generator = self.generator is not None and not self._reflection_offline
        if self.reflector.reflection_due:
            if self.slot.submit("reflection", self.reflector.reflect(context.game_time, use_generator=use_generator)):
                self.reflector.reflection_due = False
                self._reflection_offline = False
            return

        level = self.reflector.pending_meta_level()
        if level is not None:
            if self.slot.submit("meta_reflection", self.reflector.meta_reflect(level, use_generator=use_generator)):
                self._reflection_offline = False

    def _apply_outcome(self, outcome: Optional[RequestOutcome]):
        if outcome is None:
            return

        if outcome.kind == "plan":
            if not outcome.ok:
                logger.bind(tag=TAG).warning(
                    f"[{self.agent_id}] plan request failed ({outcome.error!r}), keeping heuristic plan"
                )
                return
            if outcome.epoch != self.planner.epoch:
                self.discarded_outcomes += 1
                self.plan_wanted = True
                logger.bind(tag=TAG).info(f"[{self.agent_id}] discarded plan built for superseded epoch {outcome.epoch}")
                return
            if outcome.value.source != "generated":
                logger.bind(tag=TAG).info(f"[{self.agent_id}] no generated goal came back, keeping heuristic plan")
                return
            self.planner.install(outcome.value, self._now, reason="superseded by generated plan")
            return

        # reflection / meta_reflection
        if not outcome.ok:
            logger.bind(tag=TAG).warning(
                f"[{self.agent_id}] {outcome.kind} request failed ({outcome.error!r}), retrying with templates"
            )
            self._reflection_offline = True
            if outcome.kind == "reflection":
                self.reflector.reflection_due = True
            return
        self.reflector.apply(outcome.value, self._now)

    # ------------------------------------------------------------ embeddings

    def _schedule_backfill(self):
        if self.embedder is None or self.removed:
            return
        if self._embedding_task is not None and not self._embedding_task.done():
            return
        if self._embedding_retry_at is not None and self._now < self._embedding_retry_at:
            return

        missing = self.store.missing_embeddings()[:BACKFILL_BATCH]
        if not missing:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._embedding_task = loop.create_task(self._backfill(missing))

    async def _backfill(self, records) -> int:
        texts = [r.content for r in records]
        try:
            if hasattr(self.embedder, "generate_embeddings_batch"):
                vectors = await self.embedder.generate_embeddings_batch(texts)
            else:
                vectors = [await self.embedder.embed(text) for text in texts]
        except Exception as e:
            self._embedding_retry_at = self._now + self.config.embedding.retry_after
            logger.bind(tag=TAG).warning(
                f"[{self.agent_id}] embedding backfill failed: {e}, retrying after {self._embedding_retry_at:.0f}s"
            )
            return 0

        if self.removed:
            return 0

        self._embedding_retry_at = None
        updated = sum(1 for record, vector in zip(records, vectors) if self.store.set_embedding(record.record_id, vector))
        logger.bind(tag=TAG).debug(f"[{self.agent_id}] embedded {updated} memories")
        return updated

    # ---------------------------------------------------------------- intent

    def _wait_intent(self, why: str) -> ActionIntent:
        return ActionIntent(action_id=None, action_type="wait", description=why)

    def _intent_for(self, action: Optional[ActionPlan]) -> ActionIntent:
        if action is None:
            return self._wait_intent("No current action, waiting for a plan")
        if action.status == PlanStatus.COMPLETED:
            return ActionIntent(
                action_id=action.action_id,
                action_type="wait",
                description=f"Finished '{action.action}', waiting for the next action",
            )
        return ActionIntent(
            action_id=action.action_id,
            action_type=action.action_type.value,
            description=action.action,
            target_position=action.target_position,
            target_item=action.target_item,
        )

    def current_intent(self) -> ActionIntent:
        return self._intent or self._wait_intent("No tick processed yet")

    def complete_action(self, action_id: str) -> bool:
        """called by the actuation collaborator when an action is done"""
        return self.planner.complete_action(action_id, self._now)

    # ------------------------------------------------------------- lifecycle

    async def wait_idle(self):
        """wait for the in-flight request and embedding backfill to finish"""
        await self.slot.wait()
        if self._embedding_task is not None:
            await asyncio.wait({self._embedding_task})

    def remove(self):
        """agent left the simulation: cancel in-flight work, drop late results"""
        if self.removed:
            return
        self.removed = True
        self.slot.cancel()
        if self._embedding_task is not None and not self._embedding_task.done():
            self._embedding_task.cancel()
        self._embedding_task = None

        logger.bind(tag=TAG).info(f"[{self.agent_id}] removed, in-flight requests cancelled")

    # ------------------------------------------------------------ inspection

    def inspect(self) -> Dict[str, Any]:
        """read-only view for debugging and visualization"""
        plan = self.planner.current_plan
        return {
            'agent_id': self.agent_id,
            'game_time': self._now,
            'intent': self.current_intent().to_dict(),
            'plan': self.planner.to_dict(),
            'plan_outline': plan.describe() if plan else None,
            'recent_memories': [str(r) for r in self.store.recent(10)],
            'relationships': self.relationships.summaries(),
            'reflection': self.reflector.get_statistics(),
            'memory': self.store.get_statistics(),
            'request': self.slot.to_dict(),
        }

    def get_statistics(self) -> Dict[str, Any]:
        return {
            **self.store.get_statistics(),
            'ticks': self.tick_count,
            'relationships': len(self.relationships),
            'reflection_enabled': self.reflector.enabled,
            'reflection_threshold': self.reflector.threshold,
            'last_reflection_time': self.reflector.last_reflection_time,
            'replans': self.planner.stats['replans'],
            'discarded_outcomes': self.discarded_outcomes,
        }

    # ----------------------------------------------------------- persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            'agent_id': self.agent_id,
            'game_time': self._now,
            'memory': self.store.to_dict(),
            'relationships': self.relationships.to_dict(),
            'reflection': self.reflector.to_dict(),
            'plans': [p.to_dict() for p in self.planner.history],
        }

    def load_dict(self, data: Dict[str, Any]):
        """restore state saved by to_dict; the last saved plan becomes current"""
        self._now = data.get('game_time', 0.0)
        self.store.load_dict(data.get('memory', {}))
        self.relationships.load_dict(data.get('relationships', {}))
        self.reflector.load_dict(data.get('reflection', {}))

        history = [DailyPlan.from_dict(p) for p in data.get('plans', [])]
        self.planner.history = history
        self.planner.current_plan = history[-1] if history else None
        self.planner.epoch += 1

    def save(self, path: str):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)
        logger.bind(tag=TAG).info(f"[{self.agent_id}] state saved to {path}")

    def load(self, path: str):
        with open(path, 'r', encoding='utf-8') as f:
            self.load_dict(json.load(f))
        logger.bind(tag=TAG).info(f"[{self.agent_id}] state loaded from {path}")
