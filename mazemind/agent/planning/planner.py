"""
Planning engine

Produce and maintain the Daily -> Hourly -> Action plan tree of one agent:
- heuristic_plan() builds a complete plan synchronously from survival state
- build_plan() asks the generation service for goal, hourly objectives and
  actions (one request per level, one per hour for actions), filling every
  missing or malformed field heuristically
- get_current_action() walks the tree by game time
- check_triggers() / replan() discard the tree when it no longer fits the
  situation; discarded trees are kept as history, never edited again
"""

from typing import Any, Dict, List, Optional, Tuple
import uuid

from loguru import logger

from mazemind.agent.context import PerceptionContext, Position, SurvivalMetrics, format_game_time
from mazemind.agent.memory.memory_stream import MemoryStore
from mazemind.agent.planning import prompts
from mazemind.agent.planning.plan_tree import (
    ActionPlan,
    ActionType,
    DailyPlan,
    HourlyPlan,
    PlanPriority,
    PlanStatus,
)
from mazemind.agent.generation import synthesize_within
from mazemind.errors import ConfigurationError, GenerationParseFailure, GenerationTimeout

TAG = __name__

# survival need -> item type that restores it
NEED_ITEMS = {"hunger": "food", "thirst": "water", "energy": "energy"}

PLAN_IMPORTANCE = {
    PlanPriority.CRITICAL: 8,
    PlanPriority.HIGH: 6,
    PlanPriority.MEDIUM: 5,
    PlanPriority.LOW: 4,
}

ActionSpec = Tuple[str, ActionType, Optional[Position], Optional[str]]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


class PlanningEngine:
    """planning engine - hierarchical plans with re-planning triggers"""

    def __init__(
        self,
        agent_id: str,
        store: MemoryStore,
        retriever=None,
        generator=None,
        hourly_plan_count: int = 3,
        hour_duration: float = 3600,
        action_duration: float = 300,
        critical_hunger: float = 20,
        critical_thirst: float = 15,
        critical_energy: float = 10,
        divergence_factor: float = 1.5,
        overrun_factor: float = 3.0,
        temperature: float = 0.7,
        max_tokens: int = 300,
        request_timeout: Optional[float] = None,
    ):
        if hourly_plan_count <= 0:
            raise ConfigurationError("hourly_plan_count must be positive")
        if action_duration <= 0 or hour_duration <= 0:
            raise ConfigurationError("plan durations must be positive")
        if hour_duration % action_duration != 0:
            raise ConfigurationError("hour_duration must be a whole multiple of action_duration")
        if divergence_factor <= 1 or overrun_factor <= 1:
            raise ConfigurationError("divergence_factor and overrun_factor must be greater than 1")

        self.agent_id = agent_id
        self.store = store
        self.retriever = retriever
        self.generator = generator
        self.hourly_plan_count = hourly_plan_count
        self.hour_duration = hour_duration
        self.action_duration = action_duration
        self.actions_per_hour = int(hour_duration // action_duration)
        self.critical_thresholds = {
            "hunger": critical_hunger,
            "thirst": critical_thirst,
            "energy": critical_energy,
        }
        self.divergence_factor = divergence_factor
        self.overrun_factor = overrun_factor
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.request_timeout = request_timeout

        self.current_plan: Optional[DailyPlan] = None
        self.history: List[DailyPlan] = []
        # bumped on every install; results built for an older epoch are stale
        self.epoch = 0

        self.current_action: Optional[ActionPlan] = None
        self._last_distance: Optional[int] = None

        self.stats: Dict[str, Any] = {
            'generated_plans': 0,
            'heuristic_plans': 0,
            'replans': 0,
            'parse_failures': 0,
            'timeouts': 0,
            'replan_reasons': {},
        }

    # ------------------------------------------------------------- heuristics

    def critical_needs(self, survival: SurvivalMetrics) -> List[str]:
        needs = survival.needs()
        return [name for name, limit in self.critical_thresholds.items() if needs[name] < limit]

    def heuristic_goal(self, context: PerceptionContext) -> Tuple[str, str, PlanPriority]:
        survival = context.survival
        need, level = survival.most_depleted()

        if level < 30:
            goal = {
                "hunger": "Find food sources to restore hunger levels",
                "thirst": "Locate water to restore hydration",
                "energy": "Find energy-restoring items and rest",
            }[need]
            reasoning = {
                "hunger": "Hunger is approaching critical levels. Must prioritize food finding before continuing exploration.",
                "thirst": "Thirst is becoming dangerous. Water must be the immediate priority.",
                "energy": "Energy is running out. Recovering it matters more than covering ground.",
            }[need]
        elif context.exploration_progress < 0.5:
            goal = "Continue exploring the maze systematically"
            reasoning = "Survival resources are stable. Mapping more of the maze is the way to find the exit."
        else:
            goal = "Search for the maze exit in unexplored areas"
            reasoning = "Survival resources are stable and most of the maze is mapped. Time to focus on finding the exit."

        if self.critical_needs(survival):
            priority = PlanPriority.CRITICAL
        elif survival.hunger < 40 or survival.thirst < 40:
            priority = PlanPriority.HIGH
        elif context.exploration_progress < 0.3:
            priority = PlanPriority.MEDIUM
        else:
            priority = PlanPriority.HIGH

        return goal, reasoning, priority

    def heuristic_objective(self, daily: DailyPlan, hour: int) -> str:
        goal = daily.goal.lower()
        if "food" in goal:
            return f"Search corridors for food items (Hour {hour + 1})"
        if "water" in goal:
            return f"Search for water sources (Hour {hour + 1})"
        if "energy" in goal or "rest" in goal:
            return f"Look for energy items and rest when safe (Hour {hour + 1})"
        if "exit" in goal:
            return f"Check unexplored corridors for the exit (Hour {hour + 1})"
        return f"Map unexplored corridors and check for items (Hour {hour + 1})"

    def heuristic_actions(self, hourly: HourlyPlan, context: PerceptionContext, first_hour: bool = False) -> List[ActionSpec]:
        objective = hourly.objective.lower()
        specs: List[ActionSpec] = []
        for i in range(self.actions_per_hour):
            if "food" in objective:
                specs.append((f"Search corridor segment {i + 1} for food items", ActionType.SEEK_ITEM, None, "food"))
            elif "water" in objective:
                specs.append((f"Check area {i + 1} for water sources", ActionType.SEEK_ITEM, None, "water"))
            elif "energy" in objective or "rest" in objective:
                if i % 2:
                    specs.append(("Rest to recover energy", ActionType.REST, None, None))
                else:
                    specs.append((f"Search area {i + 1} for energy items", ActionType.SEEK_ITEM, None, "energy"))
            elif "reflect" in objective:
                specs.append(("Reflect on recent experiences", ActionType.REFLECT, None, None))
            else:
                specs.append((f"Explore and map corridor section {i + 1}", ActionType.EXPLORE, None, None))

        # head straight for a visible item that restores the most urgent need
        if first_hour and len(specs) >= 2:
            item = self._visible_item_for(objective, context)
            if item is not None:
                where = f"({item.position.x}, {item.position.y})"
                specs[0] = (f"Move to the {item.item_type} at {where}", ActionType.MOVE, item.position, item.item_type)
                specs[1] = (f"Consume the {item.item_type}", ActionType.CONSUME_ITEM, item.position, item.item_type)
        return specs

    @staticmethod
    def _visible_item_for(objective: str, context: PerceptionContext):
        wanted = [item for item in NEED_ITEMS.values() if item in objective]
        if not wanted:
            return None
        candidates = [
            item for item in context.visible_items
            if any(w in item.item_type.lower() for w in wanted)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda item: item.position.manhattan(context.position))

    def heuristic_plan(self, context: PerceptionContext) -> DailyPlan:
        """complete plan built without the generation service"""
        goal, reasoning, priority = self.heuristic_goal(context)
        daily = self._new_daily(context, goal, reasoning, priority, source="heuristic")
        self._attach_hourlies(daily, [None] * self.hourly_plan_count)
        for index, hourly in enumerate(daily.hourly_plans):
            self._attach_actions(hourly, [None] * self.actions_per_hour, context, first_hour=index == 0)
        return daily

    # ------------------------------------------------------------- generation

    def _new_daily(self, context: PerceptionContext, goal: str, reasoning: str, priority: PlanPriority, source: str) -> DailyPlan:
        return DailyPlan(
            plan_id=_new_id("plan"),
            goal=goal,
            reasoning=reasoning,
            priority=priority,
            created_at=context.game_time,
            addressed_needs=self.critical_needs(context.survival),
            source=source,
        )

    def _attach_hourlies(self, daily: DailyPlan, objectives: List[Optional[str]]) -> List[HourlyPlan]:
        hourlies = [
            HourlyPlan(
                plan_id=_new_id("hour"),
                objective=objective or self.heuristic_objective(daily, hour),
                start_time=daily.created_at + hour * self.hour_duration,
                duration=self.hour_duration,
            )
            for hour, objective in enumerate(objectives)
        ]
        daily.set_hourly_plans(hourlies)
        return hourlies

    def _attach_actions(
        self,
        hourly: HourlyPlan,
        parsed: List[Optional[Tuple[str, ActionType]]],
        context: PerceptionContext,
        first_hour: bool = False,
    ) -> List[ActionPlan]:
        fallback = self.heuristic_actions(hourly, context, first_hour=first_hour)
        actions = []
        for i, entry in enumerate(parsed):
            if entry is None:
                text, action_type, target_position, target_item = fallback[i]
            else:
                text, action_type = entry
                target_position, target_item = None, None
            actions.append(ActionPlan(
                action_id=_new_id("act"),
                action=text,
                action_type=action_type,
                start_time=hourly.start_time + i * self.action_duration,
                duration=self.action_duration,
                target_position=target_position,
                target_item=target_item,
            ))
        hourly.set_actions(actions)
        return actions

    async def _synthesize(self, prompt: str, max_tokens: Optional[int] = None) -> Optional[str]:
        if self.generator is None:
            return None
        try:
            return await synthesize_within(
                self.generator,
                prompt,
                timeout=self.request_timeout,
                system_prompt=prompts.PLANNER_SYSTEM_PROMPT,
                max_tokens=max_tokens or self.max_tokens,
                temperature=self.temperature,
            )
        except GenerationTimeout as e:
            self.stats['timeouts'] += 1
            logger.bind(tag=TAG).warning(f"[{self.agent_id}] {e}, using heuristics for this step")
            return None
        except Exception as e:
            logger.bind(tag=TAG).warning(f"[{self.agent_id}] plan generation failed, using heuristics: {e}")
            return None

    async def _relevant_memories(self, context: PerceptionContext, k: int = 10) -> List[str]:
        """memories retrieved for the most pressing need, recent observations without a retriever"""
        if self.retriever is None:
            return [r.content for r in self.store.recent(k, kind="observation")]
        need, _ = context.survival.most_depleted()
        query = f"where to find {NEED_ITEMS[need]} and how to reach the exit"
        results = await self.retriever.retrieve(query, k=k, current_time=context.game_time)
        return [result.record.content for result in results]

    def _parse_failure(self, failure: GenerationParseFailure):
        self.stats['parse_failures'] += 1
        logger.bind(tag=TAG).warning(f"[{self.agent_id}] {failure}")

    async def generate_daily_plan(self, context: PerceptionContext) -> DailyPlan:
        """goal, reasoning and priority (no children yet)"""
        goal, reasoning, priority = self.heuristic_goal(context)
        source = "heuristic"

        memories = await self._relevant_memories(context)
        reflections = [r.content for r in self.store.recent(5, kind="reflection")]
        response = await self._synthesize(prompts.build_daily_prompt(context, memories, reflections))

        if response is not None:
            parsed = prompts.parse_daily_plan(response)
            if parsed.goal is None:
                self._parse_failure(GenerationParseFailure("daily plan response has no GOAL field"))
            else:
                goal = parsed.goal
                reasoning = parsed.reasoning or reasoning
                priority = parsed.priority or priority
                source = "generated"
                if not parsed.complete:
                    self._parse_failure(GenerationParseFailure("daily plan response is missing REASONING or PRIORITY"))

        return self._new_daily(context, goal, reasoning, priority, source=source)

    async def decompose_into_hourly_plans(self, daily: DailyPlan, context: PerceptionContext) -> List[HourlyPlan]:
        """exactly hourly_plan_count contiguous hourly plans from daily.created_at"""
        objectives: List[Optional[str]] = [None] * self.hourly_plan_count
        response = await self._synthesize(
            prompts.build_hourly_prompt(daily, context, self.hourly_plan_count), max_tokens=200
        )
        if response is not None:
            objectives = prompts.parse_objectives(response, self.hourly_plan_count)
            missing = objectives.count(None)
            if missing:
                self._parse_failure(GenerationParseFailure(f"{missing} hourly objectives missing"))
        return self._attach_hourlies(daily, objectives)

    async def decompose_into_actions(
        self,
        hourly: HourlyPlan,
        context: PerceptionContext,
        daily: Optional[DailyPlan] = None,
    ) -> List[ActionPlan]:
        """exactly actions_per_hour contiguous actions; missing entries filled heuristically"""
        parsed: List[Optional[Tuple[str, ActionType]]] = [None] * self.actions_per_hour
        daily = daily or self.current_plan
        first_hour = daily is not None and bool(daily.hourly_plans) and daily.hourly_plans[0] is hourly

        if daily is not None:
            response = await self._synthesize(prompts.build_actions_prompt(
                daily, hourly, context, self.actions_per_hour, int(self.action_duration // 60)
            ))
            if response is not None:
                parsed = prompts.parse_actions(response, self.actions_per_hour)
                missing = parsed.count(None)
                if missing:
                    self._parse_failure(GenerationParseFailure(f"{missing} actions missing for '{hourly.objective}'"))

        return self._attach_actions(hourly, parsed, context, first_hour=first_hour)

    async def build_plan(self, context: PerceptionContext) -> DailyPlan:
        """complete plan through the generation service"""
        daily = await self.generate_daily_plan(context)
        await self.decompose_into_hourly_plans(daily, context)
        for hourly in daily.hourly_plans:
            await self.decompose_into_actions(hourly, context, daily=daily)

        logger.bind(tag=TAG).info(f"[{self.agent_id}] plan built ({daily.source}): {daily.goal}")
        return daily

    # -------------------------------------------------------------- execution

    def install(self, plan: DailyPlan, now: float, reason: Optional[str] = None) -> DailyPlan:
        """make plan current; the previous plan is abandoned with reason"""
        if self.current_plan is not None and self.current_plan is not plan:
            self._abandon(self.current_plan, reason or "superseded", now)

        self.current_plan = plan
        self.history.append(plan)
        self.epoch += 1
        self.current_action = None
        self._last_distance = None
        self.stats[f'{plan.source}_plans'] += 1

        self.store.add_plan(
            f"Plan: {plan.goal} (priority {plan.priority.value}). {plan.reasoning}",
            PLAN_IMPORTANCE[plan.priority],
            metadata={'plan_id': plan.plan_id, 'source': plan.source, 'reason': reason},
        )

        logger.bind(tag=TAG).info(
            f"[{self.agent_id}] installed {plan.source} plan '{plan.goal}' "
            f"({plan.priority.value}) at {format_game_time(now)}"
        )
        return plan

    def _abandon(self, plan: DailyPlan, reason: str, now: float):
        for node in plan.iter_nodes():
            if not node.status.terminal:
                node.abandon(reason, now)

    def get_current_action(self, time: float) -> Optional[ActionPlan]:
        """
        action whose window contains time, marked in progress

        None when there is no plan or time is outside the plan's span.
        """
        if self.current_plan is None:
            return None
        located = self.current_plan.locate(time)
        if located is None:
            return None

        hourly, action = located
        for node in (self.current_plan, hourly, action):
            if node.status == PlanStatus.PENDING:
                node.start(time)

        if action is not self.current_action:
            self.current_action = action
            self._last_distance = None
        return action

    def complete_action(self, action_id: str, now: float) -> bool:
        """mark an action completed and complete parents whose children all are"""
        if self.current_plan is None:
            return False
        found = self.current_plan.find_action(action_id)
        if found is None:
            return False

        hourly, action = found
        if action.status.terminal:
            return False
        action.complete(now)

        if all(a.status == PlanStatus.COMPLETED for a in hourly.actions) and not hourly.status.terminal:
            hourly.complete(now)
            logger.bind(tag=TAG).info(f"[{self.agent_id}] hourly plan completed: {hourly.objective}")

            daily = self.current_plan
            if all(h.status == PlanStatus.COMPLETED for h in daily.hourly_plans) and not daily.status.terminal:
                daily.complete(now)
                logger.bind(tag=TAG).info(f"[{self.agent_id}] daily plan completed: {daily.goal}")
        return True

    def fail_action(self, action_id: str, reason: str, now: float) -> bool:
        if self.current_plan is None:
            return False
        found = self.current_plan.find_action(action_id)
        if found is None or found[1].status.terminal:
            return False
        found[1].fail(reason, now)
        return True

    # ------------------------------------------------------------- re-planning

    def check_triggers(self, context: PerceptionContext) -> Optional[str]:
        """re-planning reason for this tick, or None"""
        plan = self.current_plan
        if plan is None:
            return "no active plan"

        for need in self.critical_needs(context.survival):
            if need not in plan.addressed_needs:
                return f"critical {need} level detected"

        if plan.status == PlanStatus.COMPLETED:
            return "daily plan completed"

        now = context.game_time
        if not plan.start_time <= now < plan.start_time + plan.duration:
            return "game time outside the plan span"

        action = self.current_action
        if action is not None and not action.status.terminal:
            if action.target_position is not None:
                distance = context.position.manhattan(action.target_position)
                if self._last_distance and distance > self._last_distance * self.divergence_factor:
                    return f"moving away from target (distance {distance} vs {self._last_distance})"
                self._last_distance = distance

            if action.action_type == ActionType.CONSUME_ITEM and action.target_item:
                if not any(action.target_item in item.item_type for item in context.visible_items):
                    return f"{action.target_item} is no longer visible"

            # only the action of the current window is checked: an unfinished action
            # left behind by the window moving on stays IN_PROGRESS and never overruns,
            # so with ticks shorter than an action window this never fires
            if action.status == PlanStatus.IN_PROGRESS and action.started_at is not None:
                if now - action.started_at > action.duration * self.overrun_factor:
                    return f"action running over {self.overrun_factor:g}x its duration"

        return None

    def replan(self, reason: str, context: PerceptionContext) -> DailyPlan:
        """abandon the current tree and install a heuristic plan immediately"""
        self.stats['replans'] += 1
        self.stats['replan_reasons'][reason] = self.stats['replan_reasons'].get(reason, 0) + 1

        logger.bind(tag=TAG).info(f"[{self.agent_id}] re-planning: {reason}")
        return self.install(self.heuristic_plan(context), context.game_time, reason=reason)

    def monitor(self, context: PerceptionContext) -> Optional[str]:
        """evaluate triggers once and re-plan if one fires; returns the reason"""
        reason = self.check_triggers(context)
        if reason is not None:
            self.replan(reason, context)
        return reason

    # ------------------------------------------------------------- inspection

    def to_dict(self) -> Dict[str, Any]:
        return {
            'epoch': self.epoch,
            'current_plan': self.current_plan.to_dict() if self.current_plan else None,
            'current_action_id': self.current_action.action_id if self.current_action else None,
            'history': [
                {
                    'plan_id': p.plan_id,
                    'goal': p.goal,
                    'source': p.source,
                    'status': p.status.value,
                    'reason': p.abandoned_reason,
                }
                for p in self.history
            ],
            'stats': dict(self.stats),
        }
