"""Configuration for focusbank: paths, intervals and energy tuning."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from .errors import ConfigError

# Directories and files
FOCUSBANK_HOME = Path(os.environ.get("FOCUSBANK_HOME", Path.home() / ".focusbank"))
DB_PATH = FOCUSBANK_HOME / "focusbank.db"
ENV_FILE = FOCUSBANK_HOME / ".env"
ENERGY_CONFIG_FILE = FOCUSBANK_HOME / "energy.json"

# Server
SERVER_HOST = "127.0.0.1"
SERVER_PORT = 7788

# Timer constants
TICK_INTERVAL_S = 1  # one-second granularity, no sub-second ticking
TICK_JOB_ID = "focusbank-tick"

# Ledger constants
TRANSACTION_LOG_LIMIT = 50
FOCUS_BLOCK_MINUTES = 25  # Pomodoro-sized increments

# Storage keys
REGISTRY_KEY = "timer-registry"
SOLO_TIMER_KEY = "solo-timer-state"
LEDGER_KEY = "energy-ledger"
RATES_KEY = "category-rates"

PRIORITIES = ("low", "medium", "high", "urgent")
WORKFLOW_COLUMNS = ("backlog", "todo", "doing", "done")


class PriorityWeights(BaseModel):
    """Base energy cost per task priority."""

    low: float = 5
    medium: float = 15
    high: float = 30
    urgent: float = 50

    def for_priority(self, priority: Optional[str]) -> float:
        # Unknown priorities are treated as medium
        if priority in PRIORITIES:
            return getattr(self, priority)
        return self.medium


class CompletionRewards(PriorityWeights):
    """Completion reward per task priority, relative to base_completion_reward at medium."""

    low: float = 8
    medium: float = Field(default=25, gt=0)
    high: float = 50
    urgent: float = 75


class EnergyConfig(BaseModel):
    """Tuning knobs for the energy ledger, impact calculator and recommendations."""

    priority_weights: PriorityWeights = Field(default_factory=PriorityWeights)
    base_completion_reward: float = 25
    completion_rewards: CompletionRewards = Field(default_factory=CompletionRewards)
    focus_session_reward: float = 10
    daily_expenditure_soft_limit: float = 160
    daily_expenditure_hard_limit: float = 200

    column_modifiers: dict[str, float] = Field(
        default_factory=lambda: {"backlog": 0.0, "todo": 0.2, "doing": 1.0, "done": -0.5}
    )
    context_switch_penalty: float = 0.3  # extra cost share for moving work backwards
    overdue_bonus_per_day: float = 5
    max_overdue_bonus: float = 25
    break_bonus: float = 5  # per hour rested
    sleep_recovery: float = 100  # full night of sleep
    recommendation_reserve: float = Field(default=0.3, ge=0, lt=1)
    expenditure_policy: Literal["applied", "requested"] = "applied"

    initial_energy: float = Field(default=150, ge=0)
    max_energy: float = Field(default=200, gt=0)

    @model_validator(mode="after")
    def _check_ranges(self) -> "EnergyConfig":
        if self.daily_expenditure_hard_limit < self.daily_expenditure_soft_limit:
            raise ValueError("daily_expenditure_hard_limit must be >= daily_expenditure_soft_limit")
        if self.initial_energy > self.max_energy:
            raise ValueError("initial_energy must not exceed max_energy")
        return self

    def column_modifier(self, column: Optional[str]) -> float:
        return self.column_modifiers.get(column or "", 0.0)


class Settings(BaseModel):
    """Process-level settings for the engine, API and CLI."""

    db_path: Path = DB_PATH
    session_url: Optional[str] = None  # session endpoint base URL; None disables sync
    session_timeout: float = 5.0
    user_id: Optional[str] = None
    host: str = SERVER_HOST
    port: int = SERVER_PORT
    retain_stopped: bool = True
    energy: EnergyConfig = Field(default_factory=EnergyConfig)


def _load_energy_config(path: Path) -> EnergyConfig:
    if not path.exists():
        return EnergyConfig()
    try:
        with open(path) as f:
            data = json.load(f)
        return EnergyConfig.model_validate(data)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise ConfigError(f"Invalid energy config {path}: {e}") from e


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Build Settings from .env, FOCUSBANK_* environment variables and energy.json.

    Raises:
        ConfigError: if a value cannot be parsed or fails validation.
    """
    env_path = env_file or ENV_FILE
    if env_path.exists():
        load_dotenv(env_path)

    energy_path = Path(os.environ.get("FOCUSBANK_ENERGY_CONFIG", ENERGY_CONFIG_FILE))
    values: dict = {"energy": _load_energy_config(energy_path)}

    if os.environ.get("FOCUSBANK_DB"):
        values["db_path"] = Path(os.environ["FOCUSBANK_DB"])
    if os.environ.get("FOCUSBANK_SESSION_URL"):
        values["session_url"] = os.environ["FOCUSBANK_SESSION_URL"].rstrip("/")
    if os.environ.get("FOCUSBANK_USER_ID"):
        values["user_id"] = os.environ["FOCUSBANK_USER_ID"]
    if os.environ.get("FOCUSBANK_HOST"):
        values["host"] = os.environ["FOCUSBANK_HOST"]
    if os.environ.get("FOCUSBANK_PORT"):
        values["port"] = os.environ["FOCUSBANK_PORT"]
    if os.environ.get("FOCUSBANK_RETAIN_STOPPED"):
        values["retain_stopped"] = os.environ["FOCUSBANK_RETAIN_STOPPED"].lower() in ("1", "true", "yes")

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e
