"""Work timer lifecycle engine: active timers, pauses, and time entries."""

from .clock import ManualClock, SystemClock
from .config import Settings
from .db import Database
from .engine import TimerLifecycleEngine
from .errors import ErrorCode, TimerError, TimerResult, TransientStorageError
from .models import (
    ActiveTimer,
    CategoryKind,
    LifecycleEvent,
    TimeEntry,
    TimerAction,
    TimerSnapshot,
    TimerStatus,
)

__all__ = [
    "ActiveTimer",
    "CategoryKind",
    "Database",
    "ErrorCode",
    "LifecycleEvent",
    "ManualClock",
    "Settings",
    "SystemClock",
    "TimeEntry",
    "TimerAction",
    "TimerError",
    "TimerLifecycleEngine",
    "TimerResult",
    "TimerSnapshot",
    "TimerStatus",
    "TransientStorageError",
]

__version__ = "0.1.0"
