"""Shared fakes for the focusbank tests: a settable clock and a recording session endpoint."""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from focusbank.errors import SessionEndpointError
from focusbank.models import Category, TimerTask


def run(coro):
    """Run an async function in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 3, 2, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


class FakeSessionEndpoint:
    """Records start/end calls. ``gate`` holds start_session open until set."""

    def __init__(self, fail_start: bool = False, fail_end: bool = False):
        self.fail_start = fail_start
        self.fail_end = fail_end
        self.started: list[tuple] = []
        self.ended: list[tuple] = []
        self.gate: Optional[asyncio.Event] = None
        self._next = 0

    async def start_session(self, task_id, user_id, hourly_rate):
        if self.gate is not None:
            await self.gate.wait()
        self.started.append((task_id, user_id, hourly_rate))
        if self.fail_start:
            raise SessionEndpointError("connection refused")
        self._next += 1
        return f"sess-{self._next}"

    async def end_session(self, session_id, user_id, action="stop"):
        self.ended.append((session_id, user_id, action))
        if self.fail_end:
            raise SessionEndpointError("timed out")


def make_task(task_id: str = "task-1", priority: str = "medium", rate: Optional[float] = None, **kwargs) -> TimerTask:
    category = Category("cat-1", "Client work", rate) if rate is not None else None
    return TimerTask(id=task_id, title=kwargs.pop("title", f"Task {task_id}"), priority=priority, category=category, **kwargs)
