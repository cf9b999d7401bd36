"""
Hierarchical planning

- plan_tree: Daily -> Hourly -> Action plan nodes and their status machine
- prompts: planning prompts and total response parsers
- planner: plan generation, lookup and re-planning
"""

from .plan_tree import ActionPlan, ActionType, DailyPlan, HourlyPlan, PlanPriority, PlanStatus
from .planner import PlanningEngine

__all__ = [
    "ActionPlan",
    "ActionType",
    "DailyPlan",
    "HourlyPlan",
    "PlanPriority",
    "PlanStatus",
    "PlanningEngine",
]
