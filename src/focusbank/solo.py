"""Single-timer convenience wrapper: one active task, one focus session at a time."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from .logs import get_logger
from .models import TimerState, TimerTask, iso_or_none, parse_datetime
from .registry import RateLookup, compute_earnings, resolve_hourly_rate

logger = get_logger("solo")


@dataclass
class FocusSession:
    """A single run of the solo timer."""

    task_id: str
    duration: int  # seconds
    earnings: float
    start_time: datetime
    end_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "duration": self.duration,
            "earnings": self.earnings,
            "start_time": self.start_time.isoformat(),
            "end_time": iso_or_none(self.end_time),
        }

    @classmethod
    def from_dict(cls, d: dict) -> FocusSession:
        return cls(
            task_id=str(d["task_id"]),
            duration=int(d.get("duration", 0)),
            earnings=float(d.get("earnings", 0.0)),
            start_time=datetime.fromisoformat(d["start_time"]),
            end_time=parse_datetime(d.get("end_time")),
        )


@dataclass
class SoloTimerState:
    elapsed_seconds: int = 0
    state: TimerState = TimerState.IDLE
    session_earnings: float = 0.0
    session_start_time: Optional[datetime] = None
    active_session: Optional[FocusSession] = None
    task: Optional[TimerTask] = None  # task the current session is timing

    @property
    def is_running(self) -> bool:
        return self.state.is_live

    @property
    def is_paused(self) -> bool:
        return self.state == TimerState.PAUSED

    def snapshot(self) -> SoloTimerState:
        session = replace(self.active_session) if self.active_session else None
        return replace(self, active_session=session)

    def to_dict(self) -> dict:
        return {
            "elapsed_seconds": self.elapsed_seconds,
            "state": self.state.value,
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "session_earnings": self.session_earnings,
            "session_start_time": iso_or_none(self.session_start_time),
            "active_session": self.active_session.to_dict() if self.active_session else None,
            "task": self.task.to_dict() if self.task else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> SoloTimerState:
        elapsed = int(d["elapsed_seconds"])
        if elapsed < 0:
            raise ValueError(f"negative elapsed_seconds: {elapsed}")
        session = d.get("active_session")
        task = d.get("task")
        return cls(
            elapsed_seconds=elapsed,
            state=TimerState(d["state"]),
            session_earnings=float(d.get("session_earnings", 0.0)),
            session_start_time=parse_datetime(d.get("session_start_time")),
            active_session=FocusSession.from_dict(session) if session else None,
            task=TimerTask.from_dict(task) if task else None,
        )


class SoloEvent(str, Enum):
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    STOPPED = "stopped"
    RESET = "reset"
    TICK = "tick"
    RESTORED = "restored"


SoloListener = Callable[[SoloEvent, SoloTimerState], None]
SessionSaver = Callable[[FocusSession], Awaitable[None]]


class SoloTimer:
    """Tracks one task at a time and hands finished sessions to ``on_session_save``."""

    def __init__(
        self,
        active_task: Optional[TimerTask] = None,
        on_task_select: Optional[Callable[[], None]] = None,
        on_session_save: Optional[SessionSaver] = None,
        auto_save: bool = True,
        rate_lookup: Optional[RateLookup] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.active_task = active_task
        self._on_task_select = on_task_select
        self._on_session_save = on_session_save
        self._auto_save = auto_save
        self._rate_lookup = rate_lookup
        self._clock = clock
        self._state = SoloTimerState()
        self._lock = threading.Lock()
        self._listeners: list[SoloListener] = []
        self._totals_day: date = clock().date()
        self._sessions_today = 0
        self._earnings_today = 0.0

    # ---- Read-only views ----

    @property
    def state(self) -> SoloTimerState:
        with self._lock:
            return self._state.snapshot()

    @property
    def has_running(self) -> bool:
        with self._lock:
            return self._state.state == TimerState.RUNNING

    @property
    def total_sessions_today(self) -> int:
        with self._lock:
            self._roll_totals()
            return self._sessions_today

    @property
    def total_earnings_today(self) -> float:
        with self._lock:
            self._roll_totals()
            return self._earnings_today

    @property
    def hourly_rate(self) -> float:
        task = self.active_task
        return self.hourly_rate_for(task) if task is not None else 0.0

    def hourly_rate_for(self, task: TimerTask) -> float:
        return resolve_hourly_rate(task, self._rate_lookup)

    # ---- Controls ----

    def start(self) -> SoloTimerState:
        """Begin a session for the active task; asks for a task when none is selected."""
        if self.active_task is None:
            if self._on_task_select is not None:
                self._on_task_select()
            return self.state

        with self._lock:
            current = self._state.state
            if current == TimerState.RUNNING:
                return self._state.snapshot()
            if current == TimerState.PAUSED:
                self._state.state = TimerState.RUNNING
                event = SoloEvent.RESUMED
            else:
                now = self._clock()
                self._state = SoloTimerState(
                    state=TimerState.RUNNING,
                    session_start_time=now,
                    active_session=FocusSession(task_id=self.active_task.id, duration=0, earnings=0.0, start_time=now),
                    task=self.active_task,
                )
                event = SoloEvent.STARTED
            snapshot = self._state.snapshot()
        self._notify(event, snapshot)
        return snapshot

    def pause(self) -> SoloTimerState:
        return self._transition(TimerState.RUNNING, TimerState.PAUSED, SoloEvent.PAUSED)

    def resume(self) -> SoloTimerState:
        return self._transition(TimerState.PAUSED, TimerState.RUNNING, SoloEvent.RESUMED)

    async def stop(self) -> Optional[FocusSession]:
        """Finish the session, save it if auto-save is on, and reset the timer.

        Elapsed time and earnings are frozen before the save is attempted; a
        failed save is logged and the timer still resets.
        """
        with self._lock:
            state = self._state
            finished = None
            if state.active_session is not None and state.session_start_time is not None:
                finished = replace(
                    state.active_session,
                    duration=state.elapsed_seconds,
                    earnings=state.session_earnings,
                    end_time=self._clock(),
                )
            self._state = SoloTimerState(state=TimerState.STOPPED)
            snapshot = self._state.snapshot()

        if finished is not None:
            if self._auto_save and self._on_session_save is not None:
                try:
                    await self._on_session_save(finished)
                    logger.info(f"Focus session saved: {finished.task_id} ({finished.duration}s)")
                except Exception as e:
                    logger.warning(f"Failed to save focus session for {finished.task_id}: {e}")
            with self._lock:
                self._roll_totals()
                self._sessions_today += 1
                self._earnings_today += finished.earnings

        self._notify(SoloEvent.STOPPED, snapshot)
        return finished

    def reset(self) -> SoloTimerState:
        with self._lock:
            self._state = SoloTimerState()
            snapshot = self._state.snapshot()
        self._notify(SoloEvent.RESET, snapshot)
        return snapshot

    def tick(self, now: Optional[datetime] = None) -> Optional[SoloTimerState]:
        """Advance one second while running. Returns None when nothing advanced."""
        with self._lock:
            state = self._state
            if state.state != TimerState.RUNNING:
                return None
            state.elapsed_seconds += 1
            rate = self.hourly_rate
            if rate:
                state.session_earnings = compute_earnings(state.elapsed_seconds, rate)
            if state.active_session is not None:
                state.active_session.duration = state.elapsed_seconds
                state.active_session.earnings = state.session_earnings
            snapshot = state.snapshot()
        self._notify(SoloEvent.TICK, snapshot)
        return snapshot

    def restore(self, state: SoloTimerState) -> SoloTimerState:
        """Import a state produced by SessionPersistence.

        The saved task becomes the active task unless one is already selected.
        """
        with self._lock:
            self._state = state.snapshot()
            if self.active_task is None and state.task is not None:
                self.active_task = state.task
            snapshot = self._state.snapshot()
        self._notify(SoloEvent.RESTORED, snapshot)
        return snapshot

    # ---- Observers ----

    def subscribe(self, listener: SoloListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: SoloEvent, snapshot: SoloTimerState) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, snapshot)
            except Exception:
                logger.exception(f"Solo timer listener failed on {event.value}")

    # ---- Internal ----

    def _transition(self, source: TimerState, target: TimerState, event: SoloEvent) -> SoloTimerState:
        with self._lock:
            if self._state.state != source:
                return self._state.snapshot()
            self._state.state = target
            snapshot = self._state.snapshot()
        self._notify(event, snapshot)
        return snapshot

    def _roll_totals(self) -> None:
        today = self._clock().date()
        if today != self._totals_day:
            self._totals_day = today
            self._sessions_today = 0
            self._earnings_today = 0.0
