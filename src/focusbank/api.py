"""Local FastAPI server exposing timers, the solo timer and the energy ledger.

Run:
    focusbank serve
    uvicorn focusbank.api:app --port 7788
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from .config import load_settings
from .engine import FocusEngine
from .impact import ImpactOperation
from .logs import get_logger, recent_logs
from .models import Category, TimerState, TimerTask

logger = get_logger("api")


# Pydantic Models
class CategoryModel(BaseModel):
    id: str
    name: str = ""
    hourly_rate: Optional[float] = Field(default=None, ge=0)


class TaskModel(BaseModel):
    id: str = Field(min_length=1)
    title: str = ""
    priority: str = "medium"  # low | medium | high | urgent
    status: Optional[str] = None  # workflow column
    due_date: Optional[datetime] = None
    category_id: Optional[str] = None
    category: Optional[CategoryModel] = None

    def to_task(self) -> TimerTask:
        category = None
        if self.category is not None:
            category = Category(self.category.id, self.category.name, self.category.hourly_rate)
        return TimerTask(
            id=self.id,
            title=self.title,
            priority=self.priority,
            status=self.status,
            due_date=self.due_date,
            category_id=self.category_id or (self.category.id if self.category else None),
            category=category,
        )


class TaskMoveRequest(BaseModel):
    task: TaskModel
    from_column: str
    to_column: str


class PreviewRequest(BaseModel):
    task: TaskModel
    operation: ImpactOperation
    from_column: Optional[str] = None
    to_column: Optional[str] = None


class RecommendationRequest(BaseModel):
    tasks: List[TaskModel]


class EnergyAdjustRequest(BaseModel):
    amount: float  # signed: positive adds, negative subtracts
    reason: Optional[str] = None


class RecoveryRequest(BaseModel):
    hours_slept: float = Field(ge=0)
    hours_rested: float = Field(default=0, ge=0)


class CategoryRateRequest(BaseModel):
    hourly_rate: float = Field(ge=0)


class SoloStartRequest(BaseModel):
    task: Optional[TaskModel] = None


class LogsResponse(BaseModel):
    logs: List[dict]
    count: int


def get_engine(request: Request) -> FocusEngine:
    return request.app.state.engine


def _not_found(task_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Timer not found: {task_id}")


def _timers_payload(engine: FocusEngine) -> dict:
    registry = engine.registry
    return {
        "timers": [entry.to_dict() for entry in registry.timers],
        "total_earnings": registry.total_earnings,
        "total_active_timers": registry.total_active_timers,
    }


def _energy_payload(engine: FocusEngine) -> dict:
    limits = engine.ledger.check_limits()
    return {
        "state": engine.ledger.state.to_dict(),
        "limits": {
            "soft_exceeded": limits.soft_exceeded,
            "hard_exceeded": limits.hard_exceeded,
            "is_over_limit": limits.is_over_limit,
            "warning_level": limits.warning_level,
            "recommendation": limits.recommendation,
        },
    }


router = APIRouter()


@router.get("/health")
async def health_check(engine: FocusEngine = Depends(get_engine)):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "active_timers": engine.registry.total_active_timers,
    }


# Timer Endpoints
@router.get("/api/timers")
async def list_timers(engine: FocusEngine = Depends(get_engine)):
    return _timers_payload(engine)


@router.post("/api/timers/start")
async def start_timer(request: TaskModel, engine: FocusEngine = Depends(get_engine)):
    """Start (or resume) the timer for a task."""
    entry = engine.registry.start(request.to_task())
    return entry.to_dict()


@router.post("/api/timers/pause-all")
async def pause_all_timers(engine: FocusEngine = Depends(get_engine)):
    engine.registry.pause_all()
    return _timers_payload(engine)


@router.post("/api/timers/resume-all")
async def resume_all_timers(engine: FocusEngine = Depends(get_engine)):
    engine.registry.resume_all()
    return _timers_payload(engine)


@router.post("/api/timers/stop-all")
async def stop_all_timers(engine: FocusEngine = Depends(get_engine)):
    stopped = engine.registry.stop_all()
    return {"stopped": [entry.to_dict() for entry in stopped], **_timers_payload(engine)}


@router.post("/api/timers/reset-all")
async def reset_all_timers(engine: FocusEngine = Depends(get_engine)):
    engine.registry.reset_all()
    return _timers_payload(engine)


@router.delete("/api/timers")
async def delete_all_timers(engine: FocusEngine = Depends(get_engine)):
    removed = engine.registry.delete_all()
    return {"deleted": len(removed)}


@router.get("/api/timers/{task_id}")
async def get_timer(task_id: str, engine: FocusEngine = Depends(get_engine)):
    entry = engine.registry.get(task_id)
    if entry is None:
        raise _not_found(task_id)
    return entry.to_dict()


@router.post("/api/timers/{task_id}/pause")
async def pause_timer(task_id: str, engine: FocusEngine = Depends(get_engine)):
    return _change_timer(engine, task_id, engine.registry.pause)


@router.post("/api/timers/{task_id}/resume")
async def resume_timer(task_id: str, engine: FocusEngine = Depends(get_engine)):
    return _change_timer(engine, task_id, engine.registry.resume)


@router.post("/api/timers/{task_id}/stop")
async def stop_timer(task_id: str, engine: FocusEngine = Depends(get_engine)):
    return _change_timer(engine, task_id, engine.registry.stop)


@router.post("/api/timers/{task_id}/reset")
async def reset_timer(task_id: str, engine: FocusEngine = Depends(get_engine)):
    return _change_timer(engine, task_id, engine.registry.reset)


@router.delete("/api/timers/{task_id}")
async def delete_timer(task_id: str, engine: FocusEngine = Depends(get_engine)):
    entry = engine.registry.delete(task_id)
    if entry is None:
        raise _not_found(task_id)
    return {"deleted": entry.to_dict()}


def _change_timer(engine: FocusEngine, task_id: str, action) -> dict:
    """Apply a per-timer action. A timer in the wrong state is returned unchanged."""
    entry = action(task_id)
    if entry is None:
        entry = engine.registry.get(task_id)
        if entry is None:
            raise _not_found(task_id)
    return entry.to_dict()


@router.put("/api/categories/{category_id}/rate")
async def set_category_rate(category_id: str, request: CategoryRateRequest, engine: FocusEngine = Depends(get_engine)):
    engine.rates.set_rate(category_id, request.hourly_rate)
    return {"category_id": category_id, "hourly_rate": request.hourly_rate}


# Solo Timer Endpoints
@router.get("/api/solo")
async def solo_status(engine: FocusEngine = Depends(get_engine)):
    solo = engine.solo
    return {
        "state": solo.state.to_dict(),
        "active_task": solo.active_task.to_dict() if solo.active_task else None,
        "total_sessions_today": solo.total_sessions_today,
        "total_earnings_today": solo.total_earnings_today,
    }


@router.post("/api/solo/start")
async def solo_start(request: SoloStartRequest, engine: FocusEngine = Depends(get_engine)):
    if request.task is not None:
        engine.solo.active_task = request.task.to_task()
    if engine.solo.active_task is None:
        raise HTTPException(status_code=400, detail="No active task selected")
    return engine.solo.start().to_dict()


@router.post("/api/solo/pause")
async def solo_pause(engine: FocusEngine = Depends(get_engine)):
    return engine.solo.pause().to_dict()


@router.post("/api/solo/resume")
async def solo_resume(engine: FocusEngine = Depends(get_engine)):
    return engine.solo.resume().to_dict()


@router.post("/api/solo/stop")
async def solo_stop(engine: FocusEngine = Depends(get_engine)):
    session = await engine.solo.stop()
    return {"session": session.to_dict() if session else None}


@router.post("/api/solo/reset")
async def solo_reset(engine: FocusEngine = Depends(get_engine)):
    return engine.solo.reset().to_dict()


# Energy Endpoints
@router.get("/api/energy")
async def get_energy(engine: FocusEngine = Depends(get_engine)):
    return _energy_payload(engine)


@router.get("/api/energy/transactions")
async def get_transactions(limit: int = 50, engine: FocusEngine = Depends(get_engine)):
    transactions = engine.ledger.transactions[:max(limit, 0)]
    return {"transactions": [tx.to_dict() for tx in transactions], "count": len(transactions)}


@router.post("/api/energy/adjust")
async def adjust_energy(request: EnergyAdjustRequest, engine: FocusEngine = Depends(get_engine)):
    if request.amount >= 0:
        tx = engine.tracker.add_energy(request.amount, request.reason)
    else:
        tx = engine.tracker.subtract_energy(request.amount, request.reason)
    return {"transaction": tx.to_dict(), **_energy_payload(engine)}


@router.post("/api/energy/recovery")
async def record_recovery(request: RecoveryRequest, engine: FocusEngine = Depends(get_engine)):
    tx = engine.tracker.track_recovery(request.hours_slept, request.hours_rested)
    return {"transaction": tx.to_dict() if tx else None, **_energy_payload(engine)}


@router.post("/api/energy/reset-daily")
async def reset_daily(engine: FocusEngine = Depends(get_engine)):
    engine.ledger.reset_daily_expenditure()
    return _energy_payload(engine)


@router.post("/api/energy/reset-weekly")
async def reset_weekly(engine: FocusEngine = Depends(get_engine)):
    engine.ledger.reset_weekly_stats()
    return _energy_payload(engine)


@router.post("/api/energy/preview")
async def preview_impact(request: PreviewRequest, engine: FocusEngine = Depends(get_engine)):
    summary = engine.tracker.preview(request.task.to_task(), request.operation, request.from_column, request.to_column)
    return {
        "energy_delta": summary.energy_delta,
        "description": summary.description,
        "icon": summary.icon,
        "direction": summary.direction,
    }


# Task Lifecycle Endpoints
@router.post("/api/tasks/start")
async def start_task(request: TaskModel, engine: FocusEngine = Depends(get_engine)):
    """Start a task's timer and charge the start cost, once per run."""
    task = request.to_task()
    previous = engine.registry.get(task.id)
    entry = engine.registry.start(task)
    tx = None
    if previous is None or not previous.state.is_live:
        tx = engine.tracker.track_task_start(task)
    return {"timer": entry.to_dict(), "transaction": tx.to_dict() if tx else None}


@router.post("/api/tasks/move")
async def move_task(request: TaskMoveRequest, engine: FocusEngine = Depends(get_engine)):
    tx = engine.tracker.track_task_move(request.task.to_task(), request.from_column, request.to_column)
    return {"transaction": tx.to_dict() if tx else None, **_energy_payload(engine)}


@router.post("/api/tasks/complete")
async def complete_task(request: TaskModel, engine: FocusEngine = Depends(get_engine)):
    """Stop the task's timer if it is live, then credit the completion reward."""
    task = request.to_task()
    timer = engine.registry.get(task.id)
    if timer is not None and timer.state in (TimerState.RUNNING, TimerState.PAUSED):
        timer = engine.registry.stop(task.id)
    tx = engine.tracker.track_task_completion(task)
    return {
        "timer": timer.to_dict() if timer else None,
        "transaction": tx.to_dict(),
        **_energy_payload(engine),
    }


@router.post("/api/recommendations")
async def get_recommendations(request: RecommendationRequest, engine: FocusEngine = Depends(get_engine)):
    result = engine.tracker.recommend([task.to_task() for task in request.tasks])
    return result.to_dict()


@router.get("/api/logs/recent", response_model=LogsResponse)
async def get_recent_logs(limit: int = 50):
    """Recent server logs from the circular buffer (max 100)."""
    logs = recent_logs(min(limit, 100))
    return {"logs": logs, "count": len(logs)}


def create_app(engine: Optional[FocusEngine] = None) -> FastAPI:
    """Build the app. Without an engine, one is built from load_settings() at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.engine is None:
            app.state.engine = FocusEngine(load_settings())
        await app.state.engine.start()
        logger.info("focusbank API started")
        yield
        await app.state.engine.shutdown()
        logger.info("focusbank API stopped")

    app = FastAPI(
        title="focusbank",
        description="Local time tracking and energy accounting server",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.include_router(router)
    return app


app = create_app()
