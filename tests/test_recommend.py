"""Tests for task recommendations."""

from datetime import datetime, timedelta

from focusbank.config import EnergyConfig
from focusbank.ledger import LimitCheck
from focusbank.recommend import recommend
from support import make_task

NOW = datetime(2026, 3, 2, 9, 0, 0)


def ids(tasks):
    return [task.id for task in tasks]


def mixed_tasks():
    return [
        make_task("low", "low"),
        make_task("urgent", "urgent", due_date=NOW + timedelta(hours=3)),
        make_task("medium", "medium"),
        make_task("high", "high"),
    ]


class TestTiers:
    def test_high_energy_takes_anything(self):
        result = recommend(mixed_tasks(), 150, 200, now=NOW)
        assert ids(result.recommended) == ["urgent", "high", "medium", "low"]
        assert result.avoid == []

    def test_medium_energy_avoids_urgent(self):
        result = recommend(mixed_tasks(), 100, 200, now=NOW)
        assert ids(result.recommended) == ["high", "medium", "low"]
        assert ids(result.avoid) == ["urgent"]

    def test_low_energy_only_low_and_medium(self):
        result = recommend(mixed_tasks(), 60, 200, now=NOW)
        assert ids(result.recommended) == ["medium", "low"]
        assert ids(result.avoid) == ["urgent", "high"]

    def test_very_low_energy_only_urgent_due_soon(self):
        tasks = mixed_tasks() + [make_task("later", "urgent", due_date=NOW + timedelta(days=3))]
        result = recommend(tasks, 30, 200, now=NOW)
        assert ids(result.recommended) == ["urgent"]
        assert "later" in ids(result.avoid)

    def test_hard_limit_forces_lowest_tier(self):
        limits = LimitCheck(True, True, True, "critical", "Take a break!")
        result = recommend(mixed_tasks(), 190, 200, limits=limits, now=NOW)
        assert ids(result.recommended) == ["urgent"]
        assert result.warning == "Take a break!"


class TestBudget:
    def test_budget_keeps_a_reserve(self):
        assert recommend([], 150, 200, now=NOW).energy_budget == 105
        assert recommend([], 99, 200, now=NOW).energy_budget == 69

    def test_reserve_is_configurable(self):
        config = EnergyConfig(recommendation_reserve=0.5)
        assert recommend([], 150, 200, config, now=NOW).energy_budget == 75

    def test_unaffordable_tasks_are_avoided(self):
        # 150/200 allows any priority but a budget of 42 cannot cover an urgent start (50)
        config = EnergyConfig(recommendation_reserve=0.72)
        result = recommend(mixed_tasks(), 150, 200, config, now=NOW)
        assert "urgent" in ids(result.avoid)
        assert "high" in ids(result.recommended)


class TestRanking:
    def test_done_tasks_are_ignored(self):
        result = recommend([make_task("finished", status="done"), make_task("open")], 150, 200, now=NOW)
        assert ids(result.recommended) == ["open"]
        assert result.avoid == []

    def test_same_priority_sorted_by_due_date_undated_last(self):
        tasks = [
            make_task("undated"),
            make_task("friday", due_date=NOW + timedelta(days=4)),
            make_task("tomorrow", due_date=NOW + timedelta(days=1)),
        ]
        result = recommend(tasks, 150, 200, now=NOW)
        assert ids(result.recommended) == ["tomorrow", "friday", "undated"]

    def test_unknown_priority_ranks_as_medium(self):
        tasks = [make_task("low", "low"), make_task("odd", "someday"), make_task("high", "high")]
        assert ids(recommend(tasks, 150, 200, now=NOW).recommended) == ["high", "odd", "low"]

    def test_warning_when_nothing_fits(self):
        result = recommend([make_task("high", "high")], 30, 200, now=NOW)
        assert result.recommended == []
        assert result.warning is not None

    def test_no_warning_when_fine(self):
        assert recommend(mixed_tasks(), 150, 200, now=NOW).warning is None
