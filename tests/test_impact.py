"""Unit tests for the energy impact calculator: pure functions, no I/O."""

from datetime import datetime, timedelta

import pytest

from focusbank.config import EnergyConfig
from focusbank.impact import (
    ImpactOperation,
    _round,
    calculate_column_move_impact,
    calculate_daily_recovery,
    calculate_focus_session_reward,
    calculate_task_completion_reward,
    calculate_task_start_cost,
    generate_energy_impact_summary,
)
from support import make_task

NOW = datetime(2026, 3, 2, 9, 0, 0)


# ---- Rounding ----

class TestRounding:
    def test_half_rounds_up(self):
        assert _round(2.5) == 3
        assert _round(16.5) == 17

    def test_negative_half_rounds_toward_positive(self):
        assert _round(-2.5) == -2

    def test_below_half_rounds_down(self):
        assert _round(8.33) == 8


# ---- Start cost ----

class TestStartCost:
    @pytest.mark.parametrize("priority,cost", [("low", 5), ("medium", 15), ("high", 30), ("urgent", 50)])
    def test_cost_by_priority(self, priority, cost):
        assert calculate_task_start_cost(make_task(priority=priority)) == cost

    def test_unknown_priority_counts_as_medium(self):
        assert calculate_task_start_cost(make_task(priority="whenever")) == 15

    def test_uses_doing_modifier(self):
        config = EnergyConfig(column_modifiers={"backlog": 0, "todo": 0.2, "doing": 0.5, "done": -0.5})
        assert calculate_task_start_cost(make_task(priority="high"), config) == 15


# ---- Completion reward ----

class TestCompletionReward:
    def test_medium_gets_base_reward(self):
        assert calculate_task_completion_reward(make_task(), now=NOW) == 25

    def test_scaled_by_priority(self):
        assert calculate_task_completion_reward(make_task(priority="high"), now=NOW) == 50
        assert calculate_task_completion_reward(make_task(priority="low"), now=NOW) == 8
        assert calculate_task_completion_reward(make_task(priority="urgent"), now=NOW) == 75

    def test_base_reward_scales_the_table(self):
        config = EnergyConfig(base_completion_reward=50)
        assert calculate_task_completion_reward(make_task(), config, now=NOW) == 50
        assert calculate_task_completion_reward(make_task(priority="urgent"), config, now=NOW) == 150

    def test_custom_reward_table(self):
        config = EnergyConfig(completion_rewards={"urgent": 100})
        assert calculate_task_completion_reward(make_task(priority="urgent"), config, now=NOW) == 100
        assert calculate_task_completion_reward(make_task(priority="high"), config, now=NOW) == 50

    def test_reward_ignores_start_cost_weights(self):
        config = EnergyConfig(priority_weights={"urgent": 80})
        assert calculate_task_completion_reward(make_task(priority="urgent"), config, now=NOW) == 75

    def test_overdue_bonus_per_day(self):
        task = make_task(due_date=NOW - timedelta(days=3))
        assert calculate_task_completion_reward(task, now=NOW) == 25 + 15

    def test_partial_day_counts_as_a_day(self):
        task = make_task(due_date=NOW - timedelta(hours=2))
        assert calculate_task_completion_reward(task, now=NOW) == 30

    def test_overdue_bonus_is_capped(self):
        task = make_task(due_date=NOW - timedelta(days=10))
        assert calculate_task_completion_reward(task, now=NOW) == 50

    def test_future_due_date_has_no_bonus(self):
        task = make_task(due_date=NOW + timedelta(days=2))
        assert calculate_task_completion_reward(task, now=NOW) == 25


# ---- Column moves ----

class TestColumnMove:
    def test_forward_move_costs_effort_difference(self):
        assert calculate_column_move_impact(make_task(), "todo", "doing", now=NOW) == -12
        assert calculate_column_move_impact(make_task(), "backlog", "todo", now=NOW) == -3

    def test_backward_move_adds_context_switch_penalty(self):
        # 0.8 * 15 + 15 * 0.3 = 16.5
        assert calculate_column_move_impact(make_task(), "doing", "todo", now=NOW) == -17
        assert calculate_column_move_impact(make_task(priority="high"), "doing", "backlog", now=NOW) == -39

    def test_backward_costs_more_than_forward(self):
        for priority in ("low", "medium", "high", "urgent"):
            task = make_task(priority=priority)
            forward = calculate_column_move_impact(task, "todo", "doing", now=NOW)
            backward = calculate_column_move_impact(task, "doing", "todo", now=NOW)
            assert backward < forward

    def test_move_to_done_pays_completion_reward(self):
        assert calculate_column_move_impact(make_task(), "doing", "done", now=NOW) == 25
        assert calculate_column_move_impact(make_task(priority="high"), "todo", "done", now=NOW) == 50

    def test_reopening_done_task_costs_penalty(self):
        assert calculate_column_move_impact(make_task(), "done", "doing", now=NOW) == -5

    def test_same_column_is_neutral(self):
        assert calculate_column_move_impact(make_task(), "doing", "doing", now=NOW) == 0

    def test_unknown_column_is_neutral(self):
        assert calculate_column_move_impact(make_task(), "review", "doing", now=NOW) == 0
        assert calculate_column_move_impact(make_task(), "todo", "archive", now=NOW) == 0


# ---- Focus sessions and recovery ----

class TestFocusAndRecovery:
    @pytest.mark.parametrize("minutes,reward", [(0, 0), (24, 0), (25, 10), (50, 20), (74, 20), (75, 30)])
    def test_focus_reward_per_full_block(self, minutes, reward):
        assert calculate_focus_session_reward(minutes) == reward

    def test_negative_minutes_earn_nothing(self):
        assert calculate_focus_session_reward(-30) == 0

    def test_full_night_of_sleep(self):
        assert calculate_daily_recovery(8, 0) == 100

    def test_sleep_is_capped_at_eight_hours(self):
        assert calculate_daily_recovery(11, 0) == 100

    def test_partial_sleep_plus_rest(self):
        assert calculate_daily_recovery(4, 2) == 60


# ---- Summary ----

class TestImpactSummary:
    def test_start_is_a_cost(self):
        summary = generate_energy_impact_summary(make_task(), ImpactOperation.START)
        assert summary.energy_delta == -15
        assert summary.direction == "cost"

    def test_complete_is_a_gain(self):
        summary = generate_energy_impact_summary(make_task(), "complete", now=NOW)
        assert summary.energy_delta == 25
        assert summary.direction == "gain"

    def test_move_matches_column_impact(self):
        summary = generate_energy_impact_summary(make_task(), "move", "todo", "doing", now=NOW)
        assert summary.energy_delta == -12
        assert "todo" in summary.description and "doing" in summary.description

    def test_move_without_columns_is_neutral(self):
        summary = generate_energy_impact_summary(make_task(), "move", "todo", None)
        assert summary.energy_delta == 0
        assert summary.direction == "neutral"

    def test_unknown_operation_raises(self):
        with pytest.raises(ValueError):
            generate_energy_impact_summary(make_task(), "archive")
