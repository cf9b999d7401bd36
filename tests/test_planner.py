"""
Tests for plan generation, action lookup and re-planning triggers.
"""

import asyncio

import pytest

from mazemind.agent.context import Position, VisibleItem
from mazemind.agent.planning.plan_tree import ActionType, PlanPriority, PlanStatus, validate_windows
from mazemind.agent.planning.planner import PlanningEngine
from mazemind.errors import ConfigurationError

from tests.conftest import FailingGenerator, ScriptedGenerator, SlowGenerator, make_context


DAILY_RESPONSE = "GOAL: Map the western corridors\nREASONING: Needs are stable.\nPRIORITY: medium"
HOURLY_RESPONSE = "OBJECTIVE_1: Walk the west wall\nOBJECTIVE_2: Check dead ends"
ACTIONS_RESPONSE = (
    "ACTION_1: Follow the west wall | TYPE: move\n"
    "ACTION_2: Peek into the side passage | TYPE: explore"
)


def make_planner(store, **kwargs):
    return PlanningEngine("alice", store, **kwargs)


def install_heuristic(planner, context):
    return planner.install(planner.heuristic_plan(context), context.game_time)


# =============================================================================
# Heuristic plans
# =============================================================================

class TestHeuristicPlan:

    def test_shape_and_windows(self, store):
        planner = make_planner(store)
        plan = planner.heuristic_plan(make_context(game_time=500))

        assert plan.source == "heuristic"
        assert len(plan.hourly_plans) == 3
        validate_windows(500, 3 * 3600, plan.hourly_plans)
        for hourly in plan.hourly_plans:
            assert len(hourly.actions) == 12
            validate_windows(hourly.start_time, 3600, hourly.actions)

    def test_critical_hunger_goal(self, store):
        planner = make_planner(store)
        plan = planner.heuristic_plan(make_context(hunger=10))
        assert "food" in plan.goal.lower()
        assert plan.priority == PlanPriority.CRITICAL
        assert plan.addressed_needs == ["hunger"]

    def test_stable_needs_goal(self, store):
        planner = make_planner(store)
        early = planner.heuristic_plan(make_context(exploration_progress=0.1))
        late = planner.heuristic_plan(make_context(exploration_progress=0.8))
        assert early.goal == "Continue exploring the maze systematically"
        assert early.priority == PlanPriority.MEDIUM
        assert late.goal == "Search for the maze exit in unexplored areas"
        assert late.addressed_needs == []

    def test_visible_item_becomes_move_then_consume(self, store, food_item):
        planner = make_planner(store)
        plan = planner.heuristic_plan(make_context(hunger=10, visible_items=[food_item]))
        first, second = plan.hourly_plans[0].actions[:2]

        assert first.action_type == ActionType.MOVE
        assert first.target_position == Position(3, 0)
        assert second.action_type == ActionType.CONSUME_ITEM
        assert second.target_item == "food"

    def test_invalid_configuration(self, store):
        with pytest.raises(ConfigurationError):
            make_planner(store, hour_duration=3600, action_duration=700)
        with pytest.raises(ConfigurationError):
            make_planner(store, hourly_plan_count=0)


# =============================================================================
# Generated plans
# =============================================================================

class TestGeneratedPlan:

    def test_build_plan_fills_gaps_heuristically(self, store):
        generator = ScriptedGenerator({
            "Decide the goal": DAILY_RESPONSE,
            "one-hour objectives": HOURLY_RESPONSE,
            "List 12 consecutive": ACTIONS_RESPONSE,
        })
        planner = make_planner(store, generator=generator)
        plan = asyncio.run(planner.build_plan(make_context(game_time=1000)))

        assert len(generator.prompts) == 5
        assert plan.source == "generated"
        assert plan.goal == "Map the western corridors"
        assert plan.priority == PlanPriority.MEDIUM
        assert [h.objective for h in plan.hourly_plans][:2] == ["Walk the west wall", "Check dead ends"]
        assert plan.hourly_plans[2].objective.startswith("Map unexplored corridors")

        actions = plan.hourly_plans[0].actions
        assert len(actions) == 12
        assert (actions[0].action, actions[0].action_type) == ("Follow the west wall", ActionType.MOVE)
        assert actions[2].action == "Explore and map corridor section 3"
        validate_windows(1000, 3 * 3600, plan.hourly_plans)
        assert planner.stats['parse_failures'] >= 1

    def test_failing_service_gives_heuristic_plan(self, store):
        generator = FailingGenerator()
        planner = make_planner(store, generator=generator)
        plan = asyncio.run(planner.build_plan(make_context(thirst=5)))

        assert generator.calls == 5
        assert plan.source == "heuristic"
        assert plan.priority == PlanPriority.CRITICAL
        assert all(len(h.actions) == 12 for h in plan.hourly_plans)

    def test_slow_calls_fall_back_step_by_step(self, store):
        generator = SlowGenerator(delay=5)
        planner = make_planner(store, generator=generator, request_timeout=0.05)
        plan = asyncio.run(planner.build_plan(make_context()))

        assert generator.calls == 5
        assert planner.stats['timeouts'] == 5
        assert plan.source == "heuristic"
        assert all(len(h.actions) == 12 for h in plan.hourly_plans)

    def test_without_generator(self, store):
        planner = make_planner(store)
        plan = asyncio.run(planner.build_plan(make_context()))
        assert plan.source == "heuristic"
        assert len(plan.all_actions()) == 36


# =============================================================================
# Execution
# =============================================================================

class TestExecution:

    def test_current_action_by_time(self, store):
        planner = make_planner(store)
        plan = install_heuristic(planner, make_context(game_time=0))

        action = planner.get_current_action(150)
        assert action is plan.hourly_plans[0].actions[0]
        assert action.status == PlanStatus.IN_PROGRESS
        assert plan.status == PlanStatus.IN_PROGRESS
        assert plan.hourly_plans[0].status == PlanStatus.IN_PROGRESS

    def test_time_past_single_hour_plan(self, store):
        planner = make_planner(store, hourly_plan_count=1)
        install_heuristic(planner, make_context(game_time=0))
        assert planner.get_current_action(3650) is None

    def test_no_plan(self, store):
        assert make_planner(store).get_current_action(0) is None

    def test_install_abandons_previous_plan(self, store):
        planner = make_planner(store)
        first = install_heuristic(planner, make_context(game_time=0))
        planner.get_current_action(0)
        second = install_heuristic(planner, make_context(game_time=60, hunger=10))

        assert planner.current_plan is second
        assert planner.epoch == 2
        assert all(node.status == PlanStatus.ABANDONED for node in first.iter_nodes())
        assert first.abandoned_reason == "superseded"

        plans = store.by_kind("plan")
        assert [r.importance for r in plans] == [5, 8]

    def test_completion_cascades(self, store):
        planner = make_planner(store, hourly_plan_count=1)
        plan = install_heuristic(planner, make_context(game_time=0))

        for action in plan.all_actions():
            assert planner.complete_action(action.action_id, 100)
        assert plan.hourly_plans[0].status == PlanStatus.COMPLETED
        assert plan.status == PlanStatus.COMPLETED

        assert not planner.complete_action(plan.all_actions()[0].action_id, 200)
        assert not planner.complete_action("missing", 200)


# =============================================================================
# Re-planning triggers
# =============================================================================

class TestReplanningTriggers:

    def test_no_plan_triggers(self, store):
        assert make_planner(store).check_triggers(make_context()) == "no active plan"

    def test_critical_need_replans_once(self, store):
        planner = make_planner(store)
        install_heuristic(planner, make_context(game_time=0))

        hungry = make_context(game_time=60, hunger=10)
        assert planner.monitor(hungry) == "critical hunger level detected"
        assert planner.current_plan.addressed_needs == ["hunger"]
        assert planner.monitor(hungry) is None
        assert planner.stats['replans'] == 1

    def test_completed_plan_triggers(self, store):
        planner = make_planner(store, hourly_plan_count=1)
        plan = install_heuristic(planner, make_context(game_time=0))
        for action in plan.all_actions():
            planner.complete_action(action.action_id, 10)
        assert planner.check_triggers(make_context(game_time=20)) == "daily plan completed"

    def test_outside_span_triggers(self, store):
        planner = make_planner(store)
        install_heuristic(planner, make_context(game_time=0))
        assert planner.check_triggers(make_context(game_time=3 * 3600)) == "game time outside the plan span"

    def test_divergence_from_target(self, store, food_item):
        planner = make_planner(store)
        install_heuristic(planner, make_context(game_time=0, hunger=10, visible_items=[food_item]))
        planner.get_current_action(0)

        assert planner.check_triggers(make_context(game_time=0, hunger=10, visible_items=[food_item])) is None
        away = make_context(game_time=60, hunger=10, visible_items=[food_item], position=Position(0, 8))
        assert planner.check_triggers(away).startswith("moving away from target")

    def test_getting_closer_is_fine(self, store, food_item):
        planner = make_planner(store)
        install_heuristic(planner, make_context(game_time=0, hunger=10, visible_items=[food_item]))
        planner.get_current_action(0)

        for x in range(3):
            context = make_context(game_time=x * 10, hunger=10, visible_items=[food_item], position=Position(x, 0))
            assert planner.check_triggers(context) is None

    def test_consume_target_disappears(self, store, food_item):
        planner = make_planner(store)
        install_heuristic(planner, make_context(game_time=0, hunger=10, visible_items=[food_item]))
        planner.get_current_action(300)

        gone = make_context(game_time=310, hunger=10, position=Position(3, 0))
        assert planner.check_triggers(gone) == "food is no longer visible"

    def test_overrun(self, store):
        planner = make_planner(store)
        install_heuristic(planner, make_context(game_time=0))
        planner.get_current_action(0)
        assert planner.check_triggers(make_context(game_time=1000)).startswith("action running over")

    def test_overrun_ignores_actions_behind_the_window(self, store):
        planner = make_planner(store)
        install_heuristic(planner, make_context(game_time=0))
        first = planner.get_current_action(0)

        # one tick per game minute: the window moves on before 3x its duration
        for t in range(60, 1260, 60):
            context = make_context(game_time=t)
            assert planner.check_triggers(context) is None
            planner.get_current_action(t)

        assert first.status == PlanStatus.IN_PROGRESS
        assert planner.current_action is not first
        assert planner.stats['replans'] == 0

    def test_replan_keeps_history(self, store):
        planner = make_planner(store)
        install_heuristic(planner, make_context(game_time=0))
        planner.monitor(make_context(game_time=4 * 3600))

        assert len(planner.history) == 2
        assert planner.history[0].status == PlanStatus.ABANDONED
        assert planner.history[0].abandoned_reason == "game time outside the plan span"
        assert planner.to_dict()['stats']['replan_reasons'] == {"game time outside the plan span": 1}
