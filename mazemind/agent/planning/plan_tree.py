"""
Plan tree

DailyPlan -> HourlyPlan -> ActionPlan. Children tile their parent's time
window exactly: contiguous, non-overlapping, durations summing to the
parent's duration. Every node follows the same status machine:

    pending -> in_progress -> completed | abandoned | failed
    pending -> completed | abandoned | failed

Terminal nodes never change again.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
import math

from mazemind.agent.context import Position
from mazemind.errors import InvalidPlanTransition, InvalidTimeWindow

WINDOW_TOLERANCE = 1e-6


class PlanStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (PlanStatus.COMPLETED, PlanStatus.ABANDONED, PlanStatus.FAILED)


class PlanPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ActionType(str, Enum):
    MOVE = "move"
    EXPLORE = "explore"
    CONSUME_ITEM = "consume_item"
    SEEK_ITEM = "seek_item"
    REST = "rest"
    REFLECT = "reflect"
    WAIT = "wait"


def validate_windows(parent_start: float, parent_duration: float, children: Sequence[Any], what: str = "plan"):
    """raise InvalidTimeWindow unless children tile [parent_start, parent_start + parent_duration)"""
    if not children:
        raise InvalidTimeWindow(f"{what} has no children")

    expected_start = parent_start
    total = 0.0
    for index, child in enumerate(children):
        if child.duration <= 0:
            raise InvalidTimeWindow(f"{what} child {index} has non-positive duration {child.duration}")
        if not math.isclose(child.start_time, expected_start, abs_tol=WINDOW_TOLERANCE):
            raise InvalidTimeWindow(
                f"{what} child {index} starts at {child.start_time}, expected {expected_start} (gap or overlap)"
            )
        expected_start = child.start_time + child.duration
        total += child.duration

    if not math.isclose(total, parent_duration, abs_tol=WINDOW_TOLERANCE):
        raise InvalidTimeWindow(f"{what} children sum to {total}s, parent lasts {parent_duration}s")


class StatusMixin:
    """status machine shared by every plan node"""

    status: PlanStatus
    started_at: Optional[float]
    completed_at: Optional[float]
    abandoned_reason: Optional[str]

    def _transition(self, status: PlanStatus):
        if self.status.terminal:
            raise InvalidPlanTransition(f"{self.node_label} is {self.status.value}, cannot become {status.value}")
        if status == PlanStatus.PENDING:
            raise InvalidPlanTransition(f"{self.node_label} cannot go back to pending")
        self.status = status

    def start(self, now: float) -> bool:
        """pending -> in_progress; False if already in progress"""
        if self.status == PlanStatus.IN_PROGRESS:
            return False
        self._transition(PlanStatus.IN_PROGRESS)
        self.started_at = now
        return True

    def complete(self, now: float):
        self._transition(PlanStatus.COMPLETED)
        self.completed_at = now

    def abandon(self, reason: str, now: float):
        self._transition(PlanStatus.ABANDONED)
        self.abandoned_reason = reason
        self.completed_at = now

    def fail(self, reason: str, now: float):
        self._transition(PlanStatus.FAILED)
        self.abandoned_reason = reason
        self.completed_at = now

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def contains(self, t: float) -> bool:
        return self.start_time <= t < self.end_time

    @property
    def node_label(self) -> str:
        return type(self).__name__


def _status_fields(node) -> Dict[str, Any]:
    return {
        'status': node.status.value,
        'started_at': node.started_at,
        'completed_at': node.completed_at,
        'abandoned_reason': node.abandoned_reason,
    }


@dataclass
class ActionPlan(StatusMixin):
    action_id: str
    action: str
    action_type: ActionType
    start_time: float
    duration: float
    target_position: Optional[Position] = None
    target_item: Optional[str] = None
    status: PlanStatus = PlanStatus.PENDING
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    abandoned_reason: Optional[str] = None

    @property
    def node_label(self) -> str:
        return f"action {self.action_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action_id': self.action_id,
            'action': self.action,
            'action_type': self.action_type.value,
            'start_time': self.start_time,
            'duration': self.duration,
            'target_position': self.target_position.to_dict() if self.target_position else None,
            'target_item': self.target_item,
            **_status_fields(self),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActionPlan':
        values = dict(data)
        values['action_type'] = ActionType(values['action_type'])
        values['status'] = PlanStatus(values.get('status', PlanStatus.PENDING.value))
        values['target_position'] = Position.from_dict(values.get('target_position'))
        return cls(**values)


@dataclass
class HourlyPlan(StatusMixin):
    plan_id: str
    objective: str
    start_time: float
    duration: float
    actions: List[ActionPlan] = field(default_factory=list)
    status: PlanStatus = PlanStatus.PENDING
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    abandoned_reason: Optional[str] = None

    def __post_init__(self):
        if self.actions:
            validate_windows(self.start_time, self.duration, self.actions, what=f"hourly plan {self.plan_id}")

    @property
    def node_label(self) -> str:
        return f"hourly plan {self.plan_id}"

    def set_actions(self, actions: List[ActionPlan]):
        validate_windows(self.start_time, self.duration, actions, what=f"hourly plan {self.plan_id}")
        self.actions = list(actions)

    def action_at(self, t: float) -> Optional[ActionPlan]:
        for action in self.actions:
            if action.contains(t):
                return action
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'plan_id': self.plan_id,
            'objective': self.objective,
            'start_time': self.start_time,
            'duration': self.duration,
            'actions': [a.to_dict() for a in self.actions],
            **_status_fields(self),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HourlyPlan':
        values = dict(data)
        values['actions'] = [ActionPlan.from_dict(a) for a in values.get('actions', [])]
        values['status'] = PlanStatus(values.get('status', PlanStatus.PENDING.value))
        return cls(**values)


@dataclass
class DailyPlan(StatusMixin):
    plan_id: str
    goal: str
    reasoning: str
    priority: PlanPriority
    created_at: float
    hourly_plans: List[HourlyPlan] = field(default_factory=list)
    addressed_needs: List[str] = field(default_factory=list)
    source: str = "heuristic"  # generated, heuristic
    status: PlanStatus = PlanStatus.PENDING
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    abandoned_reason: Optional[str] = None

    def __post_init__(self):
        if self.hourly_plans:
            self._validate(self.hourly_plans)

    def _validate(self, hourly_plans: List[HourlyPlan]):
        total = sum(h.duration for h in hourly_plans)
        validate_windows(self.created_at, total, hourly_plans, what=f"daily plan {self.plan_id}")

    @property
    def node_label(self) -> str:
        return f"daily plan {self.plan_id}"

    @property
    def start_time(self) -> float:
        return self.created_at

    @property
    def duration(self) -> float:
        return sum(h.duration for h in self.hourly_plans)

    def set_hourly_plans(self, hourly_plans: List[HourlyPlan]):
        self._validate(hourly_plans)
        self.hourly_plans = list(hourly_plans)

    def locate(self, t: float) -> Optional[Tuple[HourlyPlan, ActionPlan]]:
        """hourly plan and action whose windows contain t"""
        for hourly in self.hourly_plans:
            if hourly.contains(t):
                action = hourly.action_at(t)
                if action is None:
                    return None
                return hourly, action
        return None

    def find_action(self, action_id: str) -> Optional[Tuple[HourlyPlan, ActionPlan]]:
        for hourly in self.hourly_plans:
            for action in hourly.actions:
                if action.action_id == action_id:
                    return hourly, action
        return None

    def iter_nodes(self) -> Iterator[StatusMixin]:
        yield self
        for hourly in self.hourly_plans:
            yield hourly
            yield from hourly.actions

    def all_actions(self) -> List[ActionPlan]:
        return [a for h in self.hourly_plans for a in h.actions]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'plan_id': self.plan_id,
            'goal': self.goal,
            'reasoning': self.reasoning,
            'priority': self.priority.value,
            'created_at': self.created_at,
            'hourly_plans': [h.to_dict() for h in self.hourly_plans],
            'addressed_needs': list(self.addressed_needs),
            'source': self.source,
            **_status_fields(self),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DailyPlan':
        values = dict(data)
        values['priority'] = PlanPriority(values['priority'])
        values['status'] = PlanStatus(values.get('status', PlanStatus.PENDING.value))
        values['hourly_plans'] = [HourlyPlan.from_dict(h) for h in values.get('hourly_plans', [])]
        return cls(**values)

    def describe(self) -> str:
        """multi-line outline for prompts and debugging"""
        lines = [f"[{self.status.value}] {self.goal} (priority {self.priority.value}, {self.source})"]
        for hourly in self.hourly_plans:
            lines.append(f"  [{hourly.status.value}] {hourly.objective}")
            for action in hourly.actions:
                lines.append(f"    [{action.status.value}] {action.action_type.value}: {action.action}")
        return "\n".join(lines)
