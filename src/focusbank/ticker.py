"""One-second tick driver on an APScheduler AsyncIOScheduler.

There is at most one interval job per driver (fixed job id, replace_existing),
so arming it twice is harmless. The job removes itself as soon as nothing is
running, so an idle process gets no wakeups.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import TICK_INTERVAL_S, TICK_JOB_ID
from .logs import get_logger
from .registry import RegistryEvent, TimerRegistry
from .solo import SoloEvent, SoloTimer

logger = get_logger("ticker")


class Tickable(Protocol):
    @property
    def has_running(self) -> bool: ...

    def tick(self) -> Any: ...


class TickDriver:
    """Drives ``tick()`` on one tickable once per interval while it has running timers."""

    def __init__(
        self,
        target: Tickable,
        scheduler: BaseScheduler,
        job_id: str = TICK_JOB_ID,
        interval_seconds: int = TICK_INTERVAL_S,
    ):
        self.target = target
        self.scheduler = scheduler
        self.job_id = job_id
        self.interval_seconds = interval_seconds
        self._job = None
        self._unsubscribe = None

    @property
    def active(self) -> bool:
        return self._job is not None

    def ensure_running(self) -> bool:
        """Arm the interval job if something is running. Returns whether the job is armed."""
        if self._job is not None:
            return True
        if not self.target.has_running:
            return False
        self._job = self.scheduler.add_job(
            self._on_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self.job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug(f"Tick job {self.job_id} armed")
        return True

    def halt(self) -> None:
        if self._job is None:
            return
        self._job = None
        try:
            self.scheduler.remove_job(self.job_id)
        except JobLookupError:
            pass  # already removed
        logger.debug(f"Tick job {self.job_id} halted")

    def watch(self) -> None:
        """Re-arm automatically when the target starts, resumes or restores a timer."""
        if self._unsubscribe is not None:
            return
        if isinstance(self.target, TimerRegistry):
            wake = {RegistryEvent.STARTED, RegistryEvent.RESUMED, RegistryEvent.RESTORED}
            self._unsubscribe = self.target.subscribe(lambda event, _: self._wake(event in wake))
        elif isinstance(self.target, SoloTimer):
            wake = {SoloEvent.STARTED, SoloEvent.RESUMED, SoloEvent.RESTORED}
            self._unsubscribe = self.target.subscribe(lambda event, _: self._wake(event in wake))

    def unwatch(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _wake(self, should_wake: bool) -> None:
        if should_wake:
            self.ensure_running()

    async def _on_tick(self) -> Optional[Any]:
        # Coroutine job: runs on the event loop, not in the executor thread pool
        result = self.target.tick()
        if not self.target.has_running:
            self.halt()
        return result
