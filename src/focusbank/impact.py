"""Energy impact calculations: pure functions, no state, no I/O.

Negative deltas cost energy, positive deltas restore it. All results are
whole numbers rounded half-up so previews and applied transactions agree.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .config import FOCUS_BLOCK_MINUTES, EnergyConfig
from .models import TimerTask

DEFAULT_ENERGY_CONFIG = EnergyConfig()
DONE_COLUMN = "done"
ACTIVE_COLUMN = "doing"


class ImpactOperation(str, Enum):
    START = "start"
    COMPLETE = "complete"
    MOVE = "move"


@dataclass(frozen=True)
class ImpactSummary:
    energy_delta: int
    description: str
    icon: str
    direction: str  # "gain" | "cost" | "neutral"


def _round(value: float) -> int:
    """Round half-up (2.5 -> 3, -2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def _direction(delta: float) -> str:
    if delta > 0:
        return "gain"
    if delta < 0:
        return "cost"
    return "neutral"


def _days_overdue(due: datetime, now: Optional[datetime]) -> int:
    if now is None:
        now = datetime.now(due.tzinfo)
    elif (now.tzinfo is None) != (due.tzinfo is None):
        # Compare like with like; a naive side is read as local time
        now = now.astimezone(due.tzinfo) if due.tzinfo else now.astimezone().replace(tzinfo=None)
    if now <= due:
        return 0
    return math.ceil((now - due) / timedelta(days=1))


def calculate_task_start_cost(task: TimerTask, config: EnergyConfig = DEFAULT_ENERGY_CONFIG) -> int:
    """Energy cost (positive number) of starting active work on a task."""
    weight = config.priority_weights.for_priority(task.priority)
    return _round(weight * config.column_modifier(ACTIVE_COLUMN))


def calculate_task_completion_reward(
    task: TimerTask,
    config: EnergyConfig = DEFAULT_ENERGY_CONFIG,
    now: Optional[datetime] = None,
) -> int:
    """Reward for finishing a task, scaled by priority, plus relief for overdue work."""
    rewards = config.completion_rewards
    reward = config.base_completion_reward * rewards.for_priority(task.priority) / rewards.medium

    overdue_bonus = 0.0
    if task.due_date is not None:
        days = _days_overdue(task.due_date, now)
        overdue_bonus = min(days * config.overdue_bonus_per_day, config.max_overdue_bonus)

    return _round(reward + overdue_bonus)


def _effort_modifier(config: EnergyConfig, column: str) -> float:
    # A finished task still carries the effort of active work
    if column == DONE_COLUMN:
        return config.column_modifier(ACTIVE_COLUMN)
    return config.column_modifier(column)


def calculate_column_move_impact(
    task: TimerTask,
    from_column: str,
    to_column: str,
    config: EnergyConfig = DEFAULT_ENERGY_CONFIG,
    now: Optional[datetime] = None,
) -> int:
    """Energy delta for moving a task between workflow columns.

    Moving into done pays the completion reward. Forward moves cost the
    difference in column effort. Backward moves cost that difference plus a
    context-switch penalty, so undoing progress always costs more than making it.
    Moves involving unknown columns are neutral.
    """
    if from_column == to_column:
        return 0
    if to_column == DONE_COLUMN:
        return calculate_task_completion_reward(task, config, now)

    columns = list(config.column_modifiers)
    if from_column not in columns or to_column not in columns:
        return 0

    weight = config.priority_weights.for_priority(task.priority)
    effort_change = _effort_modifier(config, to_column) - _effort_modifier(config, from_column)

    if columns.index(to_column) > columns.index(from_column):
        return -_round(max(effort_change, 0.0) * weight)

    return -_round(abs(effort_change) * weight + weight * config.context_switch_penalty)


def calculate_focus_session_reward(duration_minutes: float, config: EnergyConfig = DEFAULT_ENERGY_CONFIG) -> float:
    """Reward completed focus blocks only; a partial block earns nothing."""
    if duration_minutes <= 0:
        return 0
    return config.focus_session_reward * math.floor(duration_minutes / FOCUS_BLOCK_MINUTES)


def calculate_daily_recovery(
    hours_slept: float,
    hours_rested: float,
    config: EnergyConfig = DEFAULT_ENERGY_CONFIG,
) -> int:
    sleep = min(max(hours_slept, 0) / 8, 1) * config.sleep_recovery
    rest = max(hours_rested, 0) * config.break_bonus
    return _round(sleep + rest)


def generate_energy_impact_summary(
    task: TimerTask,
    operation: ImpactOperation | str,
    from_column: Optional[str] = None,
    to_column: Optional[str] = None,
    config: EnergyConfig = DEFAULT_ENERGY_CONFIG,
    now: Optional[datetime] = None,
) -> ImpactSummary:
    """Preview an operation's energy impact before the user commits to it."""
    operation = ImpactOperation(operation)

    if operation == ImpactOperation.START:
        delta = -calculate_task_start_cost(task, config)
        return ImpactSummary(delta, f"Starting {task.priority} priority task", "⚡", _direction(delta))

    if operation == ImpactOperation.COMPLETE:
        delta = calculate_task_completion_reward(task, config, now)
        return ImpactSummary(delta, f"Completed {task.priority} priority task", "✨", _direction(delta))

    if not from_column or not to_column:
        return ImpactSummary(0, "Move needs both a source and a target column", "•", "neutral")

    delta = calculate_column_move_impact(task, from_column, to_column, config, now)
    icon = "📈" if delta > 0 else "📉" if delta < 0 else "•"
    return ImpactSummary(delta, f"Moved task from {from_column} to {to_column}", icon, _direction(delta))
