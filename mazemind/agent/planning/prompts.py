"""
Planning prompts and response parsers

Expected fields:

    daily plan   GOAL: ... / REASONING: ... / PRIORITY: critical|high|medium|low
    hourly plans OBJECTIVE_1: ... OBJECTIVE_n: ...
    actions      ACTION_1: <text> | TYPE: <action type> ... ACTION_n: ...

Every parser accepts any input and returns defined values; fields that are
missing or malformed come back as None and the planner fills them in.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple
import re

from mazemind.agent.context import PerceptionContext, describe_items, format_game_time
from mazemind.agent.planning.plan_tree import ActionType, DailyPlan, HourlyPlan, PlanPriority

PLANNER_SYSTEM_PROMPT = (
    "You plan the behaviour of an agent trying to survive in a maze and reach its exit. "
    "Always answer using exactly the field names you are asked for."
)

_DAILY_FIELD = re.compile(r'^[ \t*#>-]*(GOAL|REASONING|PRIORITY)[ \t*]*:[ \t*]*(.*?)[ \t*]*$', re.IGNORECASE | re.MULTILINE)
_OBJECTIVE_LINE = re.compile(r'^[ \t*#>-]*OBJECTIVE[ \t_-]*(\d+)[ \t*]*:[ \t*]*(.+?)[ \t]*$', re.IGNORECASE | re.MULTILINE)
_ACTION_LINE = re.compile(r'^[ \t*#>-]*ACTION[ \t_-]*(\d+)[ \t*]*:[ \t*]*(.+?)[ \t]*$', re.IGNORECASE | re.MULTILINE)
_TYPE_FIELD = re.compile(r'TYPE\s*:\s*([A-Za-z_ -]+)', re.IGNORECASE)

ACTION_TYPE_ALIASES = {
    "consume": ActionType.CONSUME_ITEM,
    "eat": ActionType.CONSUME_ITEM,
    "drink": ActionType.CONSUME_ITEM,
    "use": ActionType.CONSUME_ITEM,
    "seek": ActionType.SEEK_ITEM,
    "search": ActionType.SEEK_ITEM,
    "find": ActionType.SEEK_ITEM,
    "sleep": ActionType.REST,
    "think": ActionType.REFLECT,
    "idle": ActionType.WAIT,
    "walk": ActionType.MOVE,
    "go": ActionType.MOVE,
    "navigate": ActionType.MOVE,
}

_INFER_KEYWORDS = [
    (("eat", "drink", "consume", "use the"), ActionType.CONSUME_ITEM),
    (("find", "search", "seek", "look for", "locate", "collect", "pick up"), ActionType.SEEK_ITEM),
    (("rest", "sleep", "recover"), ActionType.REST),
    (("reflect", "think", "consider", "review"), ActionType.REFLECT),
    (("wait", "pause"), ActionType.WAIT),
    (("explore", "scout", "map"), ActionType.EXPLORE),
    (("move", "go ", "walk", "head", "return", "follow"), ActionType.MOVE),
]


def infer_action_type(text: str) -> ActionType:
    """guess an action type from free text, explore when nothing matches"""
    lowered = f"{text.lower()} "
    for keywords, action_type in _INFER_KEYWORDS:
        if any(kw in lowered for kw in keywords):
            return action_type
    return ActionType.EXPLORE


def parse_action_type(value: Any) -> Optional[ActionType]:
    if not isinstance(value, str):
        return None
    key = re.sub(r'[\s-]+', '_', value.strip().lower())
    try:
        return ActionType(key)
    except ValueError:
        return ACTION_TYPE_ALIASES.get(key)


def parse_priority(value: Any) -> Optional[PlanPriority]:
    if not isinstance(value, str):
        return None
    match = re.search(r'critical|high|medium|low', value.lower())
    return PlanPriority(match.group()) if match else None


@dataclass
class ParsedDailyPlan:
    goal: Optional[str] = None
    reasoning: Optional[str] = None
    priority: Optional[PlanPriority] = None

    @property
    def complete(self) -> bool:
        return self.goal is not None and self.reasoning is not None and self.priority is not None


def parse_daily_plan(text: Any) -> ParsedDailyPlan:
    parsed = ParsedDailyPlan()
    if not isinstance(text, str):
        return parsed

    for name, value in _DAILY_FIELD.findall(text):
        name = name.upper()
        value = value.strip()
        if not value:
            continue
        if name == "GOAL" and parsed.goal is None:
            parsed.goal = value
        elif name == "REASONING" and parsed.reasoning is None:
            parsed.reasoning = value
        elif name == "PRIORITY" and parsed.priority is None:
            parsed.priority = parse_priority(value)

    return parsed


def parse_objectives(text: Any, count: int) -> List[Optional[str]]:
    """objectives by position (OBJECTIVE_1 -> index 0); always count entries"""
    objectives: List[Optional[str]] = [None] * max(count, 0)
    if not isinstance(text, str):
        return objectives

    for number, value in _OBJECTIVE_LINE.findall(text):
        index = int(number) - 1
        if 0 <= index < count and objectives[index] is None and value.strip():
            objectives[index] = value.strip()

    return objectives


def parse_actions(text: Any, count: int) -> List[Optional[Tuple[str, ActionType]]]:
    """(text, type) by position (ACTION_1 -> index 0); always count entries"""
    actions: List[Optional[Tuple[str, ActionType]]] = [None] * max(count, 0)
    if not isinstance(text, str):
        return actions

    for number, body in _ACTION_LINE.findall(text):
        index = int(number) - 1
        if not 0 <= index < count or actions[index] is not None:
            continue

        description, _, rest = body.partition('|')
        description = description.strip()
        if not description:
            continue

        action_type = None
        type_match = _TYPE_FIELD.search(rest)
        if type_match:
            action_type = parse_action_type(type_match.group(1))
        actions[index] = (description, action_type or infer_action_type(description))

    return actions


def _situation(context: PerceptionContext) -> str:
    survival = context.survival
    return f"""Time: {format_game_time(context.game_time)} ({context.time_of_day})
Position: ({context.position.x}, {context.position.y})
Hunger: {survival.hunger:.0f}/100, Thirst: {survival.thirst:.0f}/100, Energy: {survival.energy:.0f}/100 (100 = satisfied)
Stress: {survival.stress:.0f}/100
Visible items: {describe_items(list(context.visible_items))}
Nearby agents: {', '.join(context.nearby_entities) or 'none'}
Maze explored: {context.exploration_progress:.0%}"""


def _bullets(lines: Sequence[str], empty: str) -> str:
    return "\n".join(f"- {line}" for line in lines) if lines else empty


def build_daily_prompt(context: PerceptionContext, memories: Sequence[str], reflections: Sequence[str]) -> str:
    return f"""You are {context.agent_id}, trapped in a maze. Survive and find the exit.

Current situation:
{_situation(context)}

Recent memories:
{_bullets(memories, '(none)')}

Insights so far:
{_bullets(reflections, '(none)')}

Decide the goal for the next few hours. Answer with exactly:
GOAL: <one sentence>
REASONING: <one or two sentences>
PRIORITY: <critical|high|medium|low>
"""


def build_hourly_prompt(daily: DailyPlan, context: PerceptionContext, count: int) -> str:
    lines = "\n".join(f"OBJECTIVE_{i}: <objective for hour {i}>" for i in range(1, count + 1))
    return f"""You are {context.agent_id}. Your goal: {daily.goal}
Reasoning: {daily.reasoning}

Current situation:
{_situation(context)}

Split the goal into {count} consecutive one-hour objectives. Answer with exactly:
{lines}
"""


def build_actions_prompt(daily: DailyPlan, hourly: HourlyPlan, context: PerceptionContext, count: int, minutes: int) -> str:
    types = ", ".join(t.value for t in ActionType)
    return f"""You are {context.agent_id}. Overall goal: {daily.goal}
This hour's objective: {hourly.objective}

Current situation:
{_situation(context)}

List {count} consecutive {minutes}-minute actions for this hour.
Action types: {types}
Answer with exactly {count} lines:
ACTION_1: <what to do> | TYPE: <action type>
...
ACTION_{count}: <what to do> | TYPE: <action type>
"""


def context_summary(context: PerceptionContext) -> Dict[str, Any]:
    return {
        'time': format_game_time(context.game_time),
        'position': context.position.to_dict(),
        'survival': context.survival.needs(),
        'stress': context.survival.stress,
    }
