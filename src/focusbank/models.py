"""Data models for timers, tasks and energy accounting."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


def iso_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


# ---- Tasks ----

@dataclass(frozen=True)
class Category:
    """Task category; the source of a task's hourly rate."""

    id: str
    name: str = ""
    hourly_rate: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> Category:
        # Older records carry the rate as hourly_rate_usd
        rate = d.get("hourly_rate")
        if rate is None:
            rate = d.get("hourly_rate_usd")
        return cls(
            id=str(d["id"]),
            name=d.get("name", ""),
            hourly_rate=float(rate) if rate is not None else None,
        )


@dataclass(frozen=True)
class TimerTask:
    """The slice of a kanban task that the timer and energy engine care about."""

    id: str
    title: str = ""
    priority: str = "medium"
    status: Optional[str] = None  # workflow column
    due_date: Optional[datetime] = None
    category_id: Optional[str] = None
    category: Optional[Category] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "priority": self.priority,
            "status": self.status,
            "due_date": iso_or_none(self.due_date),
            "category_id": self.category_id,
            "category": self.category.to_dict() if self.category else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> TimerTask:
        category = d.get("category")
        return cls(
            id=str(d["id"]),
            title=d.get("title", ""),
            priority=d.get("priority") or "medium",
            status=d.get("status"),
            due_date=parse_datetime(d.get("due_date")),
            category_id=d.get("category_id"),
            category=Category.from_dict(category) if category else None,
        )


# ---- Timers ----

class TimerState(str, Enum):
    """Timer entry lifecycle states."""
    IDLE = "idle"          # Created or reset, not counting
    RUNNING = "running"    # Advancing once per tick
    PAUSED = "paused"      # Live but frozen, can resume
    STOPPED = "stopped"    # Run finished, elapsed frozen

    @property
    def is_live(self) -> bool:
        return self in (TimerState.RUNNING, TimerState.PAUSED)


@dataclass
class TimerEntry:
    """One task's timer. Owned exclusively by a TimerRegistry."""

    task: TimerTask
    elapsed_seconds: int = 0
    state: TimerState = TimerState.IDLE
    session_earnings: float = 0.0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    external_session_id: Optional[str] = None
    last_tick_at: Optional[datetime] = None
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def is_running(self) -> bool:
        return self.state == TimerState.RUNNING

    @property
    def is_paused(self) -> bool:
        return self.state == TimerState.PAUSED

    def snapshot(self) -> TimerEntry:
        """Detached copy safe to hand to callers and listeners."""
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "task": self.task.to_dict(),
            "task_id": self.task_id,
            "elapsed_seconds": self.elapsed_seconds,
            "state": self.state.value,
            "session_earnings": self.session_earnings,
            "started_at": iso_or_none(self.started_at),
            "ended_at": iso_or_none(self.ended_at),
            "external_session_id": self.external_session_id,
            "last_tick_at": iso_or_none(self.last_tick_at),
            "run_id": self.run_id,
        }

    @classmethod
    def from_dict(cls, d: dict) -> TimerEntry:
        elapsed = int(d.get("elapsed_seconds", 0))
        if elapsed < 0:
            raise ValueError(f"negative elapsed_seconds: {elapsed}")
        return cls(
            task=TimerTask.from_dict(d["task"]),
            elapsed_seconds=elapsed,
            state=TimerState(d.get("state", TimerState.IDLE.value)),
            session_earnings=float(d.get("session_earnings", 0.0)),
            started_at=parse_datetime(d.get("started_at")),
            ended_at=parse_datetime(d.get("ended_at")),
            external_session_id=d.get("external_session_id"),
            last_tick_at=parse_datetime(d.get("last_tick_at")),
            run_id=d.get("run_id") or uuid.uuid4().hex,
        )


# ---- Energy ----

class TransactionType(str, Enum):
    TASK_START = "task_start"
    TASK_MOVE = "task_move"
    TASK_COMPLETE = "task_complete"
    FOCUS_SESSION = "focus_session"
    MANUAL_ADJUST = "manual_adjust"
    RECOVERY = "recovery"


@dataclass(frozen=True)
class TransactionMetadata:
    task_title: Optional[str] = None
    from_column: Optional[str] = None
    to_column: Optional[str] = None
    priority: Optional[str] = None
    session_duration: Optional[float] = None  # minutes
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> TransactionMetadata:
        if not d:
            return cls()
        known = {k: d[k] for k in cls.__dataclass_fields__ if k in d}
        return cls(**known)


@dataclass(frozen=True)
class EnergyTransaction:
    """Immutable record of one energy delta and its cause."""

    id: str
    type: TransactionType
    energy_delta: float
    timestamp: datetime
    task_id: Optional[str] = None
    metadata: TransactionMetadata = field(default_factory=TransactionMetadata)

    @classmethod
    def create(
        cls,
        type: TransactionType,
        energy_delta: float,
        task_id: Optional[str] = None,
        metadata: Optional[TransactionMetadata] = None,
        now: Optional[datetime] = None,
    ) -> EnergyTransaction:
        return cls(
            id=f"tx_{uuid.uuid4().hex[:16]}",
            type=type,
            energy_delta=energy_delta,
            timestamp=now or datetime.now(),
            task_id=task_id,
            metadata=metadata or TransactionMetadata(),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "energy_delta": self.energy_delta,
            "timestamp": self.timestamp.isoformat(),
            "task_id": self.task_id,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> EnergyTransaction:
        return cls(
            id=str(d["id"]),
            type=TransactionType(d["type"]),
            energy_delta=float(d["energy_delta"]),
            timestamp=datetime.fromisoformat(d["timestamp"]),
            task_id=d.get("task_id"),
            metadata=TransactionMetadata.from_dict(d.get("metadata")),
        )


@dataclass
class WeeklyStats:
    """Monotonic accumulators; only an explicit reset clears them."""

    energy_spent: float = 0.0
    energy_gained: float = 0.0
    tasks_completed: int = 0
    focus_minutes: float = 0.0


@dataclass
class LedgerState:
    current_energy: float = 150.0
    max_energy: float = 200.0
    daily_expenditure: float = 0.0
    last_updated: datetime = field(default_factory=datetime.now)
    streak_days: int = 0
    total_tasks_completed: int = 0
    weekly_stats: WeeklyStats = field(default_factory=WeeklyStats)
    last_completion_day: Optional[date] = None

    def snapshot(self) -> LedgerState:
        return replace(self, weekly_stats=replace(self.weekly_stats))

    def to_dict(self) -> dict:
        return {
            "current_energy": self.current_energy,
            "max_energy": self.max_energy,
            "daily_expenditure": self.daily_expenditure,
            "last_updated": self.last_updated.isoformat(),
            "streak_days": self.streak_days,
            "total_tasks_completed": self.total_tasks_completed,
            "weekly_stats": asdict(self.weekly_stats),
            "last_completion_day": self.last_completion_day.isoformat() if self.last_completion_day else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> LedgerState:
        max_energy = float(d["max_energy"])
        current = float(d["current_energy"])
        if max_energy <= 0 or not 0 <= current <= max_energy:
            raise ValueError(f"energy {current} outside [0, {max_energy}]")
        daily = float(d.get("daily_expenditure", 0.0))
        if daily < 0:
            raise ValueError(f"negative daily_expenditure: {daily}")
        last_day = d.get("last_completion_day")
        return cls(
            current_energy=current,
            max_energy=max_energy,
            daily_expenditure=daily,
            last_updated=datetime.fromisoformat(d["last_updated"]),
            streak_days=int(d.get("streak_days", 0)),
            total_tasks_completed=int(d.get("total_tasks_completed", 0)),
            weekly_stats=WeeklyStats(**d.get("weekly_stats", {})),
            last_completion_day=date.fromisoformat(last_day) if last_day else None,
        )
