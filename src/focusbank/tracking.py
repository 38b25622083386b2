"""Turns task lifecycle and timer events into ledger transactions."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from .config import EnergyConfig
from .impact import (
    ImpactOperation,
    ImpactSummary,
    calculate_column_move_impact,
    calculate_daily_recovery,
    calculate_focus_session_reward,
    calculate_task_completion_reward,
    calculate_task_start_cost,
    generate_energy_impact_summary,
)
from .ledger import EnergyLedger, LimitCheck
from .logs import get_logger
from .models import EnergyTransaction, LedgerState, TimerEntry, TimerTask, TransactionMetadata, TransactionType
from .recommend import Recommendations, recommend
from .registry import RegistryEvent, TimerRegistry

logger = get_logger("tracking")


class EnergyTracker:
    """Front door for energy changes driven by task and timer activity."""

    def __init__(
        self,
        ledger: EnergyLedger,
        config: Optional[EnergyConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.ledger = ledger
        self.config = config or ledger.config
        self._clock = clock

    def _record(
        self,
        type: TransactionType,
        delta: float,
        task: Optional[TimerTask] = None,
        task_id: Optional[str] = None,
        **metadata,
    ) -> tuple[LedgerState, EnergyTransaction]:
        if task is not None:
            task_id = task.id
            metadata.setdefault("task_title", task.title or None)
            metadata.setdefault("priority", task.priority)
        transaction = EnergyTransaction.create(
            type=type,
            energy_delta=delta,
            task_id=task_id,
            metadata=TransactionMetadata(**metadata),
            now=self._clock(),
        )
        return self.ledger.apply(delta, transaction), transaction

    # ---- Task lifecycle ----

    def track_task_start(self, task: TimerTask) -> EnergyTransaction:
        cost = calculate_task_start_cost(task, self.config)
        _, tx = self._record(TransactionType.TASK_START, -cost, task, to_column="doing")
        return tx

    def track_task_move(self, task: TimerTask, from_column: str, to_column: str) -> Optional[EnergyTransaction]:
        """Record a column move. Neutral moves leave no transaction."""
        delta = calculate_column_move_impact(task, from_column, to_column, self.config, self._clock())
        if delta == 0:
            return None
        _, tx = self._record(TransactionType.TASK_MOVE, delta, task, from_column=from_column, to_column=to_column)
        return tx

    def track_task_completion(self, task: TimerTask) -> EnergyTransaction:
        reward = calculate_task_completion_reward(task, self.config, self._clock())
        _, tx = self._record(TransactionType.TASK_COMPLETE, reward, task, to_column="done")
        return tx

    def track_focus_session(self, minutes: float, task_id: Optional[str] = None) -> Optional[EnergyTransaction]:
        reward = calculate_focus_session_reward(minutes, self.config)
        if reward == 0:
            return None
        _, tx = self._record(TransactionType.FOCUS_SESSION, reward, task_id=task_id, session_duration=minutes)
        return tx

    def track_recovery(self, hours_slept: float, hours_rested: float = 0.0) -> Optional[EnergyTransaction]:
        gain = calculate_daily_recovery(hours_slept, hours_rested, self.config)
        if gain == 0:
            return None
        _, tx = self._record(
            TransactionType.RECOVERY, gain, notes=f"slept {hours_slept:g}h, rested {hours_rested:g}h"
        )
        return tx

    # ---- Manual adjustments ----

    def add_energy(self, amount: float, reason: Optional[str] = None) -> EnergyTransaction:
        _, tx = self._record(TransactionType.MANUAL_ADJUST, abs(amount), notes=reason)
        return tx

    def subtract_energy(self, amount: float, reason: Optional[str] = None) -> EnergyTransaction:
        _, tx = self._record(TransactionType.MANUAL_ADJUST, -abs(amount), notes=reason)
        return tx

    # ---- Read side ----

    def preview(
        self,
        task: TimerTask,
        operation: ImpactOperation | str,
        from_column: Optional[str] = None,
        to_column: Optional[str] = None,
    ) -> ImpactSummary:
        return generate_energy_impact_summary(task, operation, from_column, to_column, self.config, self._clock())

    def limits(self) -> LimitCheck:
        return self.ledger.check_limits()

    def recommend(self, tasks: list[TimerTask]) -> Recommendations:
        state = self.ledger.state
        return recommend(
            tasks, state.current_energy, state.max_energy, self.config, self.ledger.check_limits(), self._clock()
        )

    # ---- Timer integration ----

    def bind_registry(self, registry: TimerRegistry) -> Callable[[], None]:
        """Credit stopped timers with focus-session rewards. Returns an unsubscribe callable."""

        def on_change(event: RegistryEvent, entries: list[TimerEntry]) -> None:
            if event != RegistryEvent.STOPPED:
                return
            for entry in entries:
                minutes = entry.elapsed_seconds // 60
                tx = self.track_focus_session(minutes, entry.task_id)
                if tx is not None:
                    logger.info(f"Focus session {entry.task_id}: {minutes}m -> +{tx.energy_delta:g}")

        return registry.subscribe(on_change)
