"""Timer registry: N independent per-task timers sharing one tick.

Local state changes happen synchronously under a lock and never wait on the
network. Session endpoint calls run as background asyncio tasks; their failures
are logged and leave local timer state untouched.
"""

from __future__ import annotations

import asyncio
import threading
import uuid
from datetime import datetime
from enum import Enum
from typing import Callable, Coroutine, Iterable, Optional

from .logs import get_logger
from .models import TimerEntry, TimerState, TimerTask
from .sessions import SessionEndpoint

logger = get_logger("registry")

RateLookup = Callable[[str], Optional[float]]


class RegistryEvent(str, Enum):
    STARTED = "started"
    RESUMED = "resumed"
    PAUSED = "paused"
    STOPPED = "stopped"
    RESET = "reset"
    DELETED = "deleted"
    TICK = "tick"
    RESTORED = "restored"
    SESSION_LINKED = "session_linked"


RegistryListener = Callable[[RegistryEvent, list[TimerEntry]], None]


class CategoryRates:
    """Dict-backed category -> hourly rate lookup."""

    def __init__(self, rates: Optional[dict[str, float]] = None):
        self._rates = dict(rates or {})
        self._listeners: list[Callable[[str, float], None]] = []

    def set_rate(self, category_id: str, hourly_rate: float) -> None:
        self._rates[category_id] = hourly_rate
        for listener in list(self._listeners):
            try:
                listener(category_id, hourly_rate)
            except Exception:
                logger.exception(f"Rate listener failed for category {category_id}")

    def restore(self, rates: dict[str, float]) -> None:
        """Import persisted rates without notifying. Rates already set win."""
        for category_id, hourly_rate in rates.items():
            self._rates.setdefault(category_id, hourly_rate)

    def to_dict(self) -> dict[str, float]:
        return dict(self._rates)

    def subscribe(self, listener: Callable[[str, float], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def __call__(self, category_id: str) -> Optional[float]:
        return self._rates.get(category_id)


def compute_earnings(elapsed_seconds: int, hourly_rate: float) -> float:
    if not hourly_rate:
        return 0.0
    return elapsed_seconds / 3600 * hourly_rate


def resolve_hourly_rate(task: TimerTask, rate_lookup: Optional[RateLookup] = None) -> float:
    """Embedded category rate, else ``rate_lookup(category_id)``, else 0."""
    if task.category is not None and task.category.hourly_rate:
        return float(task.category.hourly_rate)
    if task.category_id and rate_lookup is not None:
        try:
            rate = rate_lookup(task.category_id)
        except Exception as e:
            logger.warning(f"Rate lookup failed for category {task.category_id}: {e}")
            return 0.0
        if rate and rate > 0:
            return float(rate)
    return 0.0


def _require_task_id(task_id: object) -> str:
    if not isinstance(task_id, str):
        raise TypeError(f"task id must be a str, got {type(task_id).__name__}")
    if not task_id:
        raise ValueError("task id must not be empty")
    return task_id


class TimerRegistry:
    """Owns the timer entries, keyed by task id."""

    def __init__(
        self,
        session_endpoint: Optional[SessionEndpoint] = None,
        user_id: Optional[str] = None,
        rate_lookup: Optional[RateLookup] = None,
        clock: Callable[[], datetime] = datetime.now,
        retain_stopped: bool = True,
    ):
        self._session_endpoint = session_endpoint
        self._user_id = user_id
        self._rate_lookup = rate_lookup
        self._clock = clock
        self._retain_stopped = retain_stopped
        self._entries: dict[str, TimerEntry] = {}
        self._lock = threading.RLock()
        self._listeners: list[RegistryListener] = []
        self._pending: set[asyncio.Future] = set()

    # ---- Read-only views ----

    @property
    def timers(self) -> list[TimerEntry]:
        with self._lock:
            return [entry.snapshot() for entry in self._entries.values()]

    def get(self, task_id: str) -> Optional[TimerEntry]:
        task_id = _require_task_id(task_id)
        with self._lock:
            entry = self._entries.get(task_id)
            return entry.snapshot() if entry else None

    @property
    def has_running(self) -> bool:
        with self._lock:
            return any(entry.is_running for entry in self._entries.values())

    @property
    def total_earnings(self) -> float:
        with self._lock:
            return sum(entry.session_earnings for entry in self._entries.values())

    @property
    def total_active_timers(self) -> int:
        with self._lock:
            return sum(1 for entry in self._entries.values() if entry.is_running)

    @property
    def pending_notifications(self) -> int:
        return len(self._pending)

    def hourly_rate_for(self, task: TimerTask) -> float:
        return resolve_hourly_rate(task, self._rate_lookup)

    # ---- Timer lifecycle ----

    def start(self, task: TimerTask) -> TimerEntry:
        """Start (or resume) the timer for a task.

        A new entry, or a new run of a stopped entry, registers a session with
        the endpoint in the background. Starting a running timer is a no-op.
        """
        if not isinstance(task, TimerTask):
            raise TypeError(f"task must be a TimerTask, got {type(task).__name__}")
        _require_task_id(task.id)
        now = self._clock()

        with self._lock:
            entry = self._entries.get(task.id)
            register = False
            if entry is None:
                entry = TimerEntry(task=task, state=TimerState.RUNNING, started_at=now)
                self._entries[task.id] = entry
                event = RegistryEvent.STARTED
                register = True
            elif entry.state == TimerState.RUNNING:
                return entry.snapshot()
            elif entry.state == TimerState.PAUSED:
                entry.state = TimerState.RUNNING
                event = RegistryEvent.RESUMED
            else:
                # Idle keeps its open session handle; a stopped entry starts a fresh run
                if entry.state == TimerState.STOPPED:
                    entry.external_session_id = None
                    entry.run_id = uuid.uuid4().hex
                entry.task = task
                entry.elapsed_seconds = 0
                entry.session_earnings = 0.0
                entry.started_at = now
                entry.ended_at = None
                entry.last_tick_at = None
                entry.state = TimerState.RUNNING
                event = RegistryEvent.STARTED
                register = entry.external_session_id is None
            snapshot = entry.snapshot()

        logger.info(f"Timer {event.value}: {task.id} ({task.title or 'untitled'})")
        self._notify(event, [snapshot])
        if register:
            self._register_session(snapshot)
        return snapshot

    def pause(self, task_id: str) -> Optional[TimerEntry]:
        return self._transition(task_id, TimerState.RUNNING, TimerState.PAUSED, RegistryEvent.PAUSED)

    def resume(self, task_id: str) -> Optional[TimerEntry]:
        return self._transition(task_id, TimerState.PAUSED, TimerState.RUNNING, RegistryEvent.RESUMED)

    def pause_all(self) -> list[TimerEntry]:
        return self._transition_all(TimerState.RUNNING, TimerState.PAUSED, RegistryEvent.PAUSED)

    def resume_all(self) -> list[TimerEntry]:
        return self._transition_all(TimerState.PAUSED, TimerState.RUNNING, RegistryEvent.RESUMED)

    def stop(self, task_id: str) -> Optional[TimerEntry]:
        """Stop a live timer, freezing elapsed time and earnings at this moment.

        Returns the frozen entry, or None when no live entry exists.
        """
        task_id = _require_task_id(task_id)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(task_id)
            if entry is None or not entry.state.is_live:
                return None
            snapshot = self._freeze(entry, now)

        logger.info(f"Timer stopped: {task_id} after {snapshot.elapsed_seconds}s")
        self._notify(RegistryEvent.STOPPED, [snapshot])
        self._close_sessions([snapshot])
        return snapshot

    def stop_all(self) -> list[TimerEntry]:
        """Stop every live timer in one batch; one end-session call per handle."""
        now = self._clock()
        with self._lock:
            stopped = [self._freeze(entry, now) for entry in list(self._entries.values()) if entry.state.is_live]

        if stopped:
            logger.info(f"Stopped {len(stopped)} timer(s)")
            self._notify(RegistryEvent.STOPPED, stopped)
            self._close_sessions(stopped)
        return stopped

    def reset(self, task_id: str) -> Optional[TimerEntry]:
        """Zero a timer and return it to idle. No network call."""
        task_id = _require_task_id(task_id)
        with self._lock:
            entry = self._entries.get(task_id)
            if entry is None:
                return None
            self._zero(entry)
            snapshot = entry.snapshot()
        self._notify(RegistryEvent.RESET, [snapshot])
        return snapshot

    def reset_all(self) -> list[TimerEntry]:
        with self._lock:
            for entry in self._entries.values():
                self._zero(entry)
            snapshots = [entry.snapshot() for entry in self._entries.values()]
        if snapshots:
            self._notify(RegistryEvent.RESET, snapshots)
        return snapshots

    def delete(self, task_id: str) -> Optional[TimerEntry]:
        """Remove a timer. A live timer's session gets a stop notification (fire-and-forget)."""
        task_id = _require_task_id(task_id)
        with self._lock:
            entry = self._entries.pop(task_id, None)
            if entry is None:
                return None
            snapshot = entry.snapshot()

        self._notify(RegistryEvent.DELETED, [snapshot])
        if snapshot.state != TimerState.STOPPED:
            self._close_sessions([snapshot])
        return snapshot

    def delete_all(self) -> list[TimerEntry]:
        with self._lock:
            removed = [entry.snapshot() for entry in self._entries.values()]
            self._entries.clear()

        if removed:
            self._notify(RegistryEvent.DELETED, removed)
            self._close_sessions([entry for entry in removed if entry.state != TimerState.STOPPED])
        return removed

    def restore(self, entries: Iterable[TimerEntry]) -> list[TimerEntry]:
        """Import entries produced by SessionPersistence. Entries already in memory win."""
        with self._lock:
            restored = []
            for entry in entries:
                if entry.task_id in self._entries:
                    continue
                self._entries[entry.task_id] = entry.snapshot()
                restored.append(entry.snapshot())

        if restored:
            logger.info(f"Restored {len(restored)} timer(s)")
            self._notify(RegistryEvent.RESTORED, restored)
        return restored

    # ---- Tick ----

    def tick(self, now: Optional[datetime] = None) -> list[TimerEntry]:
        """Advance every running entry by one second using a single ``now`` snapshot.

        Paused, stopped and idle entries are untouched; an entry stopped
        between ticks is simply skipped.
        """
        now = now or self._clock()
        with self._lock:
            advanced = []
            for entry in self._entries.values():
                if entry.state != TimerState.RUNNING:
                    continue
                entry.elapsed_seconds += 1
                entry.session_earnings = compute_earnings(entry.elapsed_seconds, self.hourly_rate_for(entry.task))
                entry.last_tick_at = now
                advanced.append(entry.snapshot())

        if advanced:
            self._notify(RegistryEvent.TICK, advanced)
        return advanced

    # ---- Observers ----

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Register a state-changed listener. Returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: RegistryEvent, entries: list[TimerEntry]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, entries)
            except Exception:
                logger.exception(f"Registry listener failed on {event.value}")

    # ---- Session endpoint ----

    async def drain(self) -> None:
        """Wait for in-flight session endpoint calls (shutdown, tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _sync_enabled(self) -> bool:
        return self._session_endpoint is not None and bool(self._user_id)

    def _register_session(self, entry: TimerEntry) -> None:
        if not self._sync_enabled():
            return
        rate = self.hourly_rate_for(entry.task)
        self._spawn(self._link_session(entry.task_id, entry.run_id, rate), f"start session {entry.task_id}")

    def _close_sessions(self, entries: list[TimerEntry]) -> None:
        if not self._sync_enabled():
            return
        for entry in entries:
            if entry.external_session_id:
                self._spawn(
                    self._end_session(entry.external_session_id, entry.task_id),
                    f"end session {entry.external_session_id}",
                )

    async def _link_session(self, task_id: str, run_id: str, hourly_rate: float) -> None:
        try:
            session_id = await self._session_endpoint.start_session(task_id, self._user_id, hourly_rate or None)
        except Exception as e:
            logger.warning(f"Failed to start timer session for {task_id}: {e}")
            return

        with self._lock:
            entry = self._entries.get(task_id)
            if entry is not None and entry.run_id == run_id:
                entry.external_session_id = session_id
                snapshot = entry.snapshot()
                orphaned = entry.state == TimerState.STOPPED
            else:
                snapshot = None
                orphaned = True

        if snapshot is not None:
            self._notify(RegistryEvent.SESSION_LINKED, [snapshot])
        if orphaned:
            # The run ended before the endpoint answered
            await self._end_session(session_id, task_id)

    async def _end_session(self, session_id: str, task_id: str) -> None:
        try:
            await self._session_endpoint.end_session(session_id, self._user_id, action="stop")
        except Exception as e:
            logger.warning(f"Failed to stop timer session {session_id} for {task_id}: {e}")

    def _spawn(self, coro: Coroutine, label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(f"No running event loop, skipped {label}")
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ---- Internal ----

    def _transition(
        self, task_id: str, source: TimerState, target: TimerState, event: RegistryEvent
    ) -> Optional[TimerEntry]:
        task_id = _require_task_id(task_id)
        with self._lock:
            entry = self._entries.get(task_id)
            if entry is None or entry.state != source:
                return None
            entry.state = target
            snapshot = entry.snapshot()
        self._notify(event, [snapshot])
        return snapshot

    def _transition_all(self, source: TimerState, target: TimerState, event: RegistryEvent) -> list[TimerEntry]:
        with self._lock:
            changed = []
            for entry in self._entries.values():
                if entry.state == source:
                    entry.state = target
                    changed.append(entry.snapshot())
        if changed:
            self._notify(event, changed)
        return changed

    def _freeze(self, entry: TimerEntry, now: datetime) -> TimerEntry:
        """Stop an entry in place. Caller holds the lock."""
        entry.state = TimerState.STOPPED
        entry.ended_at = now
        snapshot = entry.snapshot()
        if not self._retain_stopped:
            del self._entries[entry.task_id]
        return snapshot

    @staticmethod
    def _zero(entry: TimerEntry) -> None:
        entry.elapsed_seconds = 0
        entry.session_earnings = 0.0
        entry.state = TimerState.IDLE
        entry.ended_at = None
        entry.last_tick_at = None
