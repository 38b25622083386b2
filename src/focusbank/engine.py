"""FocusEngine: wires the registry, solo timer, ledger, persistence and tick loop together.

One engine per process. Lifecycle:

    engine = FocusEngine(load_settings())
    await engine.start()      # load state, arm ticks
    await engine.suspend()    # save state (app backgrounded)
    await engine.shutdown()   # wait for session calls, save, stop scheduler

Live timers are not stopped on shutdown; they are persisted and picked up
again, drift-corrected, by the next start().
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler

from .config import TICK_JOB_ID, Settings
from .ledger import EnergyLedger
from .logs import get_logger
from .persistence import AutoSaver, SessionPersistence
from .registry import CategoryRates, TimerRegistry
from .sessions import HttpSessionEndpoint, SessionEndpoint
from .solo import FocusSession, SoloTimer
from .store import KeyValueStore, SqliteStore
from .ticker import TickDriver
from .tracking import EnergyTracker

logger = get_logger("engine")


class FocusEngine:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[KeyValueStore] = None,
        session_endpoint: Optional[SessionEndpoint] = None,
        scheduler: Optional[BaseScheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or Settings()
        self.store = store or SqliteStore(self.settings.db_path)
        if session_endpoint is None and self.settings.session_url:
            session_endpoint = HttpSessionEndpoint(self.settings.session_url, timeout=self.settings.session_timeout)
        self.scheduler = scheduler or AsyncIOScheduler()
        self._clock = clock

        self.rates = CategoryRates()
        self.registry = TimerRegistry(
            session_endpoint=session_endpoint,
            user_id=self.settings.user_id,
            rate_lookup=self.rates,
            clock=clock,
            retain_stopped=self.settings.retain_stopped,
        )
        self.solo = SoloTimer(on_session_save=self._credit_focus_session, rate_lookup=self.rates, clock=clock)
        self.persistence = SessionPersistence(self.store, clock=clock)
        self.autosaver = AutoSaver(self.persistence)
        self.ledger = EnergyLedger(self.settings.energy, clock=clock)
        self.tracker = EnergyTracker(self.ledger, self.settings.energy, clock=clock)

        self.registry_driver = TickDriver(self.registry, self.scheduler, job_id=TICK_JOB_ID)
        self.solo_driver = TickDriver(self.solo, self.scheduler, job_id=f"{TICK_JOB_ID}-solo")
        self._unbind_tracker: Optional[Callable[[], None]] = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Load persisted state and start ticking. Calling it twice is a no-op."""
        if self._started:
            return
        await self.store.init()

        self.ledger = await self.persistence.load_ledger(self.settings.energy, clock=self._clock)
        self.tracker = EnergyTracker(self.ledger, self.settings.energy, clock=self._clock)

        # Rates first: restored timers are priced through them
        self.rates.restore(await self.persistence.load_rates())
        if self.rates.to_dict():
            await self.persistence.save_rates(self.rates)
        entries = await self.persistence.load_registry(self.registry.hourly_rate_for)
        self.registry.restore(entries)
        solo_state = await self.persistence.load_solo(self.solo.hourly_rate_for)
        if solo_state is not None:
            self.solo.restore(solo_state)

        self.autosaver.bind_registry(self.registry)
        self.autosaver.bind_solo(self.solo)
        self.autosaver.bind_ledger(self.ledger)
        self.autosaver.bind_rates(self.rates)
        self._unbind_tracker = self.tracker.bind_registry(self.registry)

        if not self.scheduler.running:
            self.scheduler.start()
        for driver in (self.registry_driver, self.solo_driver):
            driver.watch()
            driver.ensure_running()

        self._started = True
        state = self.ledger.state
        logger.info(
            f"Engine started: {len(self.registry.timers)} timer(s), "
            f"energy {state.current_energy:g}/{state.max_energy:g}"
        )

    async def suspend(self) -> None:
        """Persist everything now; ticking continues."""
        await self.autosaver.save_all()
        logger.info("Engine state flushed")

    async def shutdown(self) -> None:
        if not self._started:
            return
        for driver in (self.registry_driver, self.solo_driver):
            driver.unwatch()
            driver.halt()
        await self.registry.drain()
        await self.autosaver.save_all()
        self.autosaver.unbind()
        if self._unbind_tracker is not None:
            self._unbind_tracker()
            self._unbind_tracker = None
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
        self._started = False
        logger.info("Engine stopped")

    async def _credit_focus_session(self, session: FocusSession) -> None:
        self.tracker.track_focus_session(session.duration // 60, session.task_id)
