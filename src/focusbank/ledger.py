"""Energy ledger: bounded, auditable accounting of mental energy.

All mutation goes through ``apply`` (or the explicit resets) under a single
lock, so transactions never interleave even when timer and task events arrive
from different threads. Time is injected through ``clock`` for deterministic
tests.
"""

from __future__ import annotations

import math
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Optional

from .config import TRANSACTION_LOG_LIMIT, EnergyConfig
from .logs import get_logger
from .models import EnergyTransaction, LedgerState, TransactionType, WeeklyStats

logger = get_logger("ledger")

LedgerListener = Callable[[LedgerState, Optional[EnergyTransaction]], None]


@dataclass(frozen=True)
class LimitCheck:
    soft_exceeded: bool
    hard_exceeded: bool
    is_over_limit: bool
    warning_level: str  # none | caution | warning | critical
    recommendation: str


class EnergyLedger:
    """Holds current/max energy, daily expenditure, weekly stats and the recent transaction log."""

    def __init__(
        self,
        config: Optional[EnergyConfig] = None,
        state: Optional[LedgerState] = None,
        transactions: Optional[list[EnergyTransaction]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._config = config or EnergyConfig()
        self._clock = clock
        self._state = state or LedgerState(
            current_energy=self._config.initial_energy,
            max_energy=self._config.max_energy,
            last_updated=clock(),
        )
        # Newest first
        self._transactions: Deque[EnergyTransaction] = deque(transactions or [], maxlen=TRANSACTION_LOG_LIMIT)
        self._lock = threading.Lock()
        self._listeners: list[LedgerListener] = []

    # ---- Read-only views ----

    @property
    def config(self) -> EnergyConfig:
        return self._config

    @property
    def state(self) -> LedgerState:
        """Snapshot of the ledger state, after any pending day-boundary reset."""
        with self._lock:
            rolled = self._roll_day(self._clock())
            snapshot = self._state.snapshot()
        if rolled:
            self._notify(snapshot, None)
        return snapshot

    @property
    def transactions(self) -> list[EnergyTransaction]:
        with self._lock:
            return list(self._transactions)

    # ---- Mutation ----

    def apply(self, delta: float, transaction: EnergyTransaction) -> LedgerState:
        """Apply a signed energy delta and record its transaction.

        Never raises for numeric input: the result is clamped to
        [0, max_energy] and NaN is treated as no change. Passing something
        that is not a number or not an EnergyTransaction is a programming
        error and raises TypeError.
        """
        if not isinstance(transaction, EnergyTransaction):
            raise TypeError(f"transaction must be an EnergyTransaction, got {type(transaction).__name__}")
        if isinstance(delta, bool) or not isinstance(delta, (int, float)):
            raise TypeError(f"delta must be a number, got {type(delta).__name__}")

        delta = float(delta)
        if math.isnan(delta):
            logger.warning(f"Ignoring NaN energy delta for transaction {transaction.id}")
            delta = 0.0

        with self._lock:
            now = self._clock()
            self._roll_day(now)
            state = self._state
            stats = state.weekly_stats

            old_energy = state.current_energy
            new_energy = min(max(old_energy + delta, 0.0), state.max_energy)
            applied = new_energy - old_energy
            if self._config.expenditure_policy == "requested" and math.isfinite(delta):
                recorded = abs(delta)
            else:
                recorded = abs(applied)

            if delta < 0:
                state.daily_expenditure += recorded
                stats.energy_spent += recorded
            elif delta > 0:
                stats.energy_gained += recorded
            state.current_energy = new_energy

            if transaction.type == TransactionType.TASK_COMPLETE:
                state.total_tasks_completed += 1
                stats.tasks_completed += 1
                today = now.date()
                if state.last_completion_day != today:
                    state.streak_days += 1
                    state.last_completion_day = today

            if transaction.type == TransactionType.FOCUS_SESSION:
                stats.focus_minutes += transaction.metadata.session_duration or 0

            self._transactions.appendleft(transaction)
            state.last_updated = now
            snapshot = state.snapshot()

        logger.info(
            f"Energy {transaction.type.value} {delta:+g} -> {snapshot.current_energy:g}/{snapshot.max_energy:g}"
        )
        self._notify(snapshot, transaction)
        return snapshot

    def reset_daily_expenditure(self) -> LedgerState:
        with self._lock:
            self._state.daily_expenditure = 0.0
            self._state.last_updated = self._clock()
            snapshot = self._state.snapshot()
        self._notify(snapshot, None)
        return snapshot

    def reset_weekly_stats(self) -> LedgerState:
        with self._lock:
            self._roll_day(self._clock())
            self._state.weekly_stats = WeeklyStats()
            snapshot = self._state.snapshot()
        self._notify(snapshot, None)
        return snapshot

    # ---- Limits ----

    def check_limits(self) -> LimitCheck:
        """Compare today's expenditure and remaining energy against configured limits."""
        state = self.state
        config = self._config
        energy_pct = state.current_energy / state.max_energy
        daily = state.daily_expenditure

        soft = daily >= config.daily_expenditure_soft_limit
        hard = daily >= config.daily_expenditure_hard_limit

        if energy_pct <= 0.1 or hard:
            return LimitCheck(
                soft, hard, True, "critical",
                "Take a break! Your mental energy is critically low. Consider stopping work for today.",
            )
        if energy_pct <= 0.25 or soft:
            return LimitCheck(
                soft, hard, False, "warning",
                "Your mental energy is running low. Consider a break or lower-priority tasks.",
            )
        if energy_pct <= 0.5 or daily >= 0.6 * config.daily_expenditure_hard_limit:
            return LimitCheck(
                soft, hard, False, "caution",
                "You're using significant mental energy. Plan some breaks to stay productive.",
            )
        return LimitCheck(soft, hard, False, "none", "Your mental energy levels look good.")

    # ---- Observers ----

    def subscribe(self, listener: LedgerListener) -> Callable[[], None]:
        """Register a state-changed listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, snapshot: LedgerState, transaction: Optional[EnergyTransaction]) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot, transaction)
            except Exception:
                logger.exception("Ledger listener failed")

    # ---- Serialization ----

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "state": self._state.to_dict(),
                "transactions": [t.to_dict() for t in self._transactions],
            }

    @classmethod
    def from_dict(
        cls,
        data: dict,
        config: Optional[EnergyConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> EnergyLedger:
        """Rebuild a ledger from ``to_dict`` output. Raises on malformed data."""
        state = LedgerState.from_dict(data["state"])
        transactions = [EnergyTransaction.from_dict(t) for t in data.get("transactions", [])]
        return cls(config=config, state=state, transactions=transactions, clock=clock)

    # ---- Internal ----

    def _roll_day(self, now: datetime) -> bool:
        """Reset daily expenditure when the calendar day changed. Caller holds the lock."""
        if self._state.last_updated.date() == now.date():
            return False
        logger.info(
            f"Day changed ({self._state.last_updated.date()} -> {now.date()}), "
            f"resetting daily expenditure {self._state.daily_expenditure:g}"
        )
        self._state.daily_expenditure = 0.0
        self._state.last_updated = now
        return True
