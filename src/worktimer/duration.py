"""Duration arithmetic. Pure functions, no I/O.

All results are whole seconds, floored. `now` is always passed in so the
math is deterministic given the timer row and the clock reading.
"""

from __future__ import annotations

import math
from datetime import datetime

from .models import ActiveTimer, Paused, TimerSnapshot

MIN_ENTRY_SECONDS = 1


def _seconds_between(start: datetime, end: datetime) -> int:
    return max(0, math.floor((end - start).total_seconds()))


def elapsed_total(timer: ActiveTimer, now: datetime) -> int:
    """Wall-clock seconds since the timer started."""
    return _seconds_between(timer.start_time, now)


def current_pause_duration(timer: ActiveTimer, now: datetime) -> int:
    """Length of the pause in progress, 0 when running."""
    state = timer.state
    if isinstance(state, Paused):
        return _seconds_between(state.paused_at, now)
    return 0


def effective_paused_duration(timer: ActiveTimer, now: datetime) -> int:
    return timer.total_paused_duration + current_pause_duration(timer, now)


def active_duration(timer: ActiveTimer, now: datetime) -> int:
    """Seconds of active (non-paused) time. Clamped at 0 for clock skew."""
    return max(0, elapsed_total(timer, now) - effective_paused_duration(timer, now))


def final_duration(timer: ActiveTimer, now: datetime) -> int:
    """Duration recorded on stop. Zero-length sessions still count as 1s."""
    return max(MIN_ENTRY_SECONDS, active_duration(timer, now))


def snapshot(timer: ActiveTimer, now: datetime) -> TimerSnapshot:
    return TimerSnapshot(
        id=timer.id,
        task_id=timer.task_id,
        category_id=timer.category_id,
        start_time=timer.start_time,
        description=timer.description,
        is_break=timer.is_break,
        elapsed_seconds=active_duration(timer, now),
        total_paused_duration=effective_paused_duration(timer, now),
        current_pause_duration=current_pause_duration(timer, now),
        is_paused=timer.is_paused,
        pause_reason=timer.pause_reason,
        paused_at=timer.last_pause_time,
    )


def format_duration(seconds: int) -> str:
    """Format seconds as 'Xh Ym' string."""
    is_negative = seconds < 0
    abs_s = abs(seconds)
    hours = abs_s // 3600
    minutes = (abs_s % 3600) // 60
    sign = "-" if is_negative else ""
    return f"{sign}{hours}h {minutes}m"
