"""focusbank: concurrent per-task timers and mental energy accounting.

Timers tick once per second and accrue earnings from a category hourly rate;
the energy ledger tracks a bounded energy budget driven by task activity.
"""

from .config import EnergyConfig, Settings, load_settings
from .engine import FocusEngine
from .errors import ConfigError, FocusbankError, SessionEndpointError
from .impact import (
    calculate_column_move_impact,
    calculate_daily_recovery,
    calculate_focus_session_reward,
    calculate_task_completion_reward,
    calculate_task_start_cost,
    generate_energy_impact_summary,
)
from .ledger import EnergyLedger, LimitCheck
from .models import (
    Category,
    EnergyTransaction,
    LedgerState,
    TimerEntry,
    TimerState,
    TimerTask,
    TransactionMetadata,
    TransactionType,
)
from .persistence import AutoSaver, SessionPersistence
from .recommend import Recommendations, recommend
from .registry import CategoryRates, RegistryEvent, TimerRegistry
from .sessions import HttpSessionEndpoint, SessionEndpoint
from .solo import FocusSession, SoloTimer
from .store import MemoryStore, SqliteStore
from .ticker import TickDriver
from .tracking import EnergyTracker

__all__ = [
    "AutoSaver",
    "Category",
    "CategoryRates",
    "ConfigError",
    "EnergyConfig",
    "EnergyLedger",
    "EnergyTracker",
    "EnergyTransaction",
    "FocusEngine",
    "FocusSession",
    "FocusbankError",
    "HttpSessionEndpoint",
    "LedgerState",
    "LimitCheck",
    "MemoryStore",
    "Recommendations",
    "RegistryEvent",
    "SessionEndpoint",
    "SessionEndpointError",
    "SessionPersistence",
    "Settings",
    "SoloTimer",
    "SqliteStore",
    "TickDriver",
    "TimerEntry",
    "TimerRegistry",
    "TimerState",
    "TimerTask",
    "TransactionMetadata",
    "TransactionType",
    "calculate_column_move_impact",
    "calculate_daily_recovery",
    "calculate_focus_session_reward",
    "calculate_task_completion_reward",
    "calculate_task_start_cost",
    "generate_energy_impact_summary",
    "load_settings",
    "recommend",
]
