"""Task recommendations from the current energy level.

Read-only: takes ledger figures as plain values and never touches the ledger
or the timers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .config import EnergyConfig
from .impact import DEFAULT_ENERGY_CONFIG, calculate_task_start_cost
from .ledger import LimitCheck
from .models import TimerTask

PRIORITY_RANK = {"urgent": 4, "high": 3, "medium": 2, "low": 1}
DONE_STATUS = "done"


@dataclass
class Recommendations:
    recommended: list[TimerTask] = field(default_factory=list)
    avoid: list[TimerTask] = field(default_factory=list)
    energy_budget: int = 0
    warning: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "recommended": [task.to_dict() for task in self.recommended],
            "avoid": [task.to_dict() for task in self.avoid],
            "energy_budget": self.energy_budget,
            "warning": self.warning,
        }


def _sort_key(task: TimerTask):
    due = task.due_date
    # Undated tasks sort last; aware dates compare by their UTC timestamp
    due_key = (1, 0.0) if due is None else (0, due.timestamp())
    return (-PRIORITY_RANK.get(task.priority, 2), due_key)


def _due_within(task: TimerTask, now: datetime, window: timedelta) -> bool:
    if task.due_date is None:
        return False
    due = task.due_date
    if (due.tzinfo is None) != (now.tzinfo is None):
        now = now.astimezone(due.tzinfo) if due.tzinfo else now.astimezone().replace(tzinfo=None)
    return due - now <= window


def _tier_allows(task: TimerTask, energy_pct: float, now: datetime) -> bool:
    if energy_pct > 0.7:
        return True
    if energy_pct > 0.4:
        return task.priority != "urgent"
    if energy_pct > 0.2:
        return task.priority in ("low", "medium")
    return task.priority == "urgent" and _due_within(task, now, timedelta(hours=24))


def recommend(
    tasks: Iterable[TimerTask],
    current_energy: float,
    max_energy: float,
    config: EnergyConfig = DEFAULT_ENERGY_CONFIG,
    limits: Optional[LimitCheck] = None,
    now: Optional[datetime] = None,
) -> Recommendations:
    """Split open tasks into what fits today's energy and what to leave for later."""
    now = now or datetime.now()
    budget = math.floor(current_energy * (1 - config.recommendation_reserve))
    energy_pct = current_energy / max_energy if max_energy > 0 else 0.0
    if limits is not None and limits.hard_exceeded:
        energy_pct = 0.0

    recommended: list[TimerTask] = []
    avoid: list[TimerTask] = []
    for task in tasks:
        if task.status == DONE_STATUS:
            continue
        # At the lowest tier only must-do work is allowed, and it is allowed regardless of cost
        fits = energy_pct <= 0.2 or calculate_task_start_cost(task, config) <= budget
        if fits and _tier_allows(task, energy_pct, now):
            recommended.append(task)
        else:
            avoid.append(task)

    recommended.sort(key=_sort_key)
    avoid.sort(key=_sort_key)

    warning = None
    if limits is not None and limits.warning_level != "none":
        warning = limits.recommendation
    elif not recommended and avoid:
        warning = "Nothing fits your current energy. Consider a break before starting new work."

    return Recommendations(recommended, avoid, budget, warning)
