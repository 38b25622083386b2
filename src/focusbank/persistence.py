"""Save and restore engine state across restarts.

Persisted records:
    timer-registry     live timer entries + last_update_time
    solo-timer-state   solo timer state + last_update_time
    energy-ledger      ledger state + transaction log
    category-rates     category id -> hourly rate

On load, running timers are credited with the wall-clock time that passed
while the process was down (drift correction). Paused timers are not. Loading
never touches in-memory objects; owners import the returned values.
"""

from __future__ import annotations

import asyncio
import math
from datetime import datetime
from typing import Callable, Iterable, Optional

from .config import LEDGER_KEY, RATES_KEY, REGISTRY_KEY, SOLO_TIMER_KEY, EnergyConfig
from .ledger import EnergyLedger
from .logs import get_logger
from .models import TimerEntry, TimerState, TimerTask, parse_datetime
from .registry import CategoryRates, RegistryEvent, TimerRegistry, compute_earnings
from .solo import SoloEvent, SoloTimer, SoloTimerState
from .store import KeyValueStore

logger = get_logger("persistence")

RateFor = Callable[[TimerTask], float]


def drift_seconds(last_update: Optional[datetime], now: datetime) -> int:
    """Whole seconds between the last save and now; never negative."""
    if last_update is None:
        return 0
    if (last_update.tzinfo is None) != (now.tzinfo is None):
        now = now.astimezone(last_update.tzinfo) if last_update.tzinfo else now.astimezone().replace(tzinfo=None)
    return max(0, math.floor((now - last_update).total_seconds()))


class SessionPersistence:
    """Import/export boundary between in-memory state and a KeyValueStore."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self._clock = clock

    # ---- Registry ----

    async def save_registry(self, entries: Iterable[TimerEntry]) -> None:
        live = [entry for entry in entries if entry.state.is_live]
        if not live:
            await self.store.remove(REGISTRY_KEY)
            return
        await self.store.set(REGISTRY_KEY, {
            "timers": [entry.to_dict() for entry in live],
            "last_update_time": self._clock().isoformat(),
        })

    async def load_registry(self, rate_for: Optional[RateFor] = None) -> list[TimerEntry]:
        """Live entries from the last save, drift-corrected. Malformed data yields []."""
        data = await self.store.get(REGISTRY_KEY)
        if not data:
            return []
        try:
            last_update = parse_datetime(data.get("last_update_time"))
            entries = [TimerEntry.from_dict(d) for d in data["timers"]]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Discarding malformed timer registry state: {e}")
            return []

        drift = drift_seconds(last_update, self._clock())
        for entry in entries:
            if entry.state != TimerState.RUNNING or not drift:
                continue
            entry.elapsed_seconds += drift
            if rate_for is not None:
                entry.session_earnings = compute_earnings(entry.elapsed_seconds, rate_for(entry.task))
        if entries:
            logger.info(f"Loaded {len(entries)} timer(s), drift {drift}s")
        return entries

    async def clear_registry(self) -> None:
        await self.store.remove(REGISTRY_KEY)

    # ---- Solo timer ----

    async def save_solo(self, state: SoloTimerState) -> None:
        record = state.to_dict()
        record["last_update_time"] = self._clock().isoformat()
        await self.store.set(SOLO_TIMER_KEY, record)

    async def load_solo(self, rate_for: Optional[RateFor] = None) -> Optional[SoloTimerState]:
        """The saved solo state, drift-corrected and priced from its saved task."""
        data = await self.store.get(SOLO_TIMER_KEY)
        if not data:
            return None
        try:
            last_update = parse_datetime(data.get("last_update_time"))
            state = SoloTimerState.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Discarding malformed solo timer state: {e}")
            return None

        if state.state == TimerState.RUNNING:
            drift = drift_seconds(last_update, self._clock())
            state.elapsed_seconds += drift
            hourly_rate = rate_for(state.task) if rate_for is not None and state.task is not None else 0.0
            if hourly_rate:
                state.session_earnings = compute_earnings(state.elapsed_seconds, hourly_rate)
            if state.active_session is not None:
                state.active_session.duration = state.elapsed_seconds
                state.active_session.earnings = state.session_earnings
        return state

    async def clear_solo(self) -> None:
        await self.store.remove(SOLO_TIMER_KEY)

    # ---- Category rates ----

    async def save_rates(self, rates: CategoryRates) -> None:
        await self.store.set(RATES_KEY, rates.to_dict())

    async def load_rates(self) -> dict[str, float]:
        data = await self.store.get(RATES_KEY)
        if not data:
            return {}
        try:
            return {str(category_id): float(rate) for category_id, rate in data.items()}
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Discarding malformed category rates: {e}")
            return {}

    # ---- Ledger ----

    async def save_ledger(self, ledger: EnergyLedger) -> None:
        await self.store.set(LEDGER_KEY, ledger.to_dict())

    async def load_ledger(
        self,
        config: Optional[EnergyConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> EnergyLedger:
        """The saved ledger, or a fresh one when nothing (or garbage) was saved."""
        data = await self.store.get(LEDGER_KEY)
        if not data:
            return EnergyLedger(config=config, clock=clock)
        try:
            return EnergyLedger.from_dict(data, config=config, clock=clock)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Discarding malformed energy ledger state: {e}")
            return EnergyLedger(config=config, clock=clock)


class AutoSaver:
    """Writes state to SessionPersistence whenever it changes.

    Changes only mark a record dirty; a single writer task saves the latest
    snapshot of each dirty record, so writes never overlap and a burst of
    changes collapses into one write. Tick events are not saved since drift
    correction recovers the time between saves.
    """

    def __init__(self, persistence: SessionPersistence):
        self.persistence = persistence
        self._registry: Optional[TimerRegistry] = None
        self._solo: Optional[SoloTimer] = None
        self._ledger: Optional[EnergyLedger] = None
        self._rates: Optional[CategoryRates] = None
        self._dirty: set[str] = set()
        self._writer: Optional[asyncio.Task] = None
        self._unsubscribers: list[Callable[[], None]] = []

    def bind_registry(self, registry: TimerRegistry) -> None:
        self._registry = registry

        def on_change(event: RegistryEvent, _entries) -> None:
            if event != RegistryEvent.TICK:
                self.mark(REGISTRY_KEY)

        self._unsubscribers.append(registry.subscribe(on_change))

    def bind_solo(self, solo: SoloTimer) -> None:
        self._solo = solo

        def on_change(event: SoloEvent, _state) -> None:
            if event != SoloEvent.TICK:
                self.mark(SOLO_TIMER_KEY)

        self._unsubscribers.append(solo.subscribe(on_change))

    def bind_ledger(self, ledger: EnergyLedger) -> None:
        self._ledger = ledger
        self._unsubscribers.append(ledger.subscribe(lambda _state, _tx: self.mark(LEDGER_KEY)))

    def bind_rates(self, rates: CategoryRates) -> None:
        self._rates = rates
        self._unsubscribers.append(rates.subscribe(lambda _category_id, _rate: self.mark(RATES_KEY)))

    def unbind(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    @property
    def pending(self) -> set[str]:
        return set(self._dirty)

    def mark(self, key: str) -> None:
        """Mark a record dirty and make sure the writer is running."""
        self._dirty.add(key)
        if self._writer is not None and not self._writer.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Picked up by the next flush()
            return
        self._writer = loop.create_task(self._write_pending())

    async def flush(self) -> None:
        """Write everything dirty now and wait for the writer to finish."""
        if self._writer is not None and not self._writer.done():
            await self._writer
        await self._write_pending()

    async def save_all(self) -> None:
        """Write every bound record now, dirty or not, with current elapsed times."""
        owners = (
            (REGISTRY_KEY, self._registry),
            (SOLO_TIMER_KEY, self._solo),
            (LEDGER_KEY, self._ledger),
            (RATES_KEY, self._rates),
        )
        self._dirty.update(key for key, owner in owners if owner is not None)
        await self.flush()

    async def _write_pending(self) -> None:
        while self._dirty:
            key = self._dirty.pop()
            try:
                await self._save(key)
            except Exception as e:
                logger.warning(f"Failed to persist {key}: {e}")

    async def _save(self, key: str) -> None:
        if key == REGISTRY_KEY and self._registry is not None:
            await self.persistence.save_registry(self._registry.timers)
        elif key == SOLO_TIMER_KEY and self._solo is not None:
            state = self._solo.state
            if state.state.is_live:
                await self.persistence.save_solo(state)
            else:
                await self.persistence.clear_solo()
        elif key == LEDGER_KEY and self._ledger is not None:
            await self.persistence.save_ledger(self._ledger)
        elif key == RATES_KEY and self._rates is not None:
            await self.persistence.save_rates(self._rates)
