"""Data models for the timer engine.

Rows are stored with snake_case columns; to_export_dict() produces the
camelCase shape returned by the HTTP API.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .clock import from_iso, to_iso

DEFAULT_PAUSE_REASON = "No reason provided"


class TimerAction(str, Enum):
    """Lifecycle transitions recorded in the activity log."""
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    STOPPED = "stopped"
    CANCELLED = "cancelled"
    DESCRIBED = "described"


class CategoryKind(str, Enum):
    BREAK = "break"
    TASK = "task"
    GENERAL = "general"


class EntryStatus(str, Enum):
    COMPLETED = "completed"


def _iso_or_none(value: datetime | None) -> str | None:
    return to_iso(value) if value is not None else None


# ---- Timer state ----

@dataclass(frozen=True)
class Running:
    since: datetime


@dataclass(frozen=True)
class Paused:
    since: datetime
    paused_at: datetime
    reason: str | None


TimerState = Union[Running, Paused]


@dataclass
class ActiveTimer:
    """The in-flight session for one (user, workspace) pair."""

    id: str
    user_id: str
    workspace_id: str
    start_time: datetime
    task_id: Optional[str] = None
    category_id: Optional[str] = None
    description: Optional[str] = None
    is_break: bool = False
    last_pause_time: Optional[datetime] = None   # set iff paused
    total_paused_duration: int = 0               # completed pauses only, seconds
    pause_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        user_id: str,
        workspace_id: str,
        now: datetime,
        task_id: str | None = None,
        category_id: str | None = None,
        description: str | None = None,
        is_break: bool = False,
    ) -> "ActiveTimer":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            workspace_id=workspace_id,
            start_time=now,
            task_id=task_id,
            category_id=category_id,
            description=description,
            is_break=is_break,
            created_at=now,
            updated_at=now,
        )

    @property
    def state(self) -> TimerState:
        if self.last_pause_time is None:
            return Running(since=self.start_time)
        return Paused(since=self.start_time, paused_at=self.last_pause_time, reason=self.pause_reason)

    @property
    def is_paused(self) -> bool:
        return isinstance(self.state, Paused)

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "task_id": self.task_id,
            "category_id": self.category_id,
            "start_time": to_iso(self.start_time),
            "last_pause_time": _iso_or_none(self.last_pause_time),
            "total_paused_duration": self.total_paused_duration,
            "pause_reason": self.pause_reason,
            "is_break": 1 if self.is_break else 0,
            "description": self.description,
            "created_at": _iso_or_none(self.created_at),
            "updated_at": _iso_or_none(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ActiveTimer":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            workspace_id=row["workspace_id"],
            task_id=row["task_id"],
            category_id=row["category_id"],
            start_time=from_iso(row["start_time"]),
            last_pause_time=from_iso(row["last_pause_time"]),
            total_paused_duration=int(row["total_paused_duration"] or 0),
            pause_reason=row["pause_reason"],
            is_break=bool(row["is_break"]),
            description=row["description"],
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )


@dataclass(frozen=True)
class TimerSnapshot:
    """Point-in-time view of an active timer with live durations."""

    id: str
    task_id: str | None
    category_id: str | None
    start_time: datetime
    description: str | None
    is_break: bool
    elapsed_seconds: int
    total_paused_duration: int
    current_pause_duration: int
    is_paused: bool
    pause_reason: str | None
    paused_at: datetime | None

    def to_export_dict(self) -> dict:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "categoryId": self.category_id,
            "startTime": to_iso(self.start_time),
            "description": self.description,
            "isBreak": self.is_break,
            "elapsedSeconds": self.elapsed_seconds,
            "totalPausedDuration": self.total_paused_duration,
            "currentPauseDuration": self.current_pause_duration,
            "isPaused": self.is_paused,
            "pauseReason": self.pause_reason,
            "pausedAt": _iso_or_none(self.paused_at),
        }


@dataclass(frozen=True)
class TimerStatus:
    has_active_timer: bool
    timer: TimerSnapshot | None = None

    def to_export_dict(self) -> dict:
        return {
            "hasActiveTimer": self.has_active_timer,
            "timer": self.timer.to_export_dict() if self.timer else None,
        }


@dataclass(frozen=True)
class PauseInfo:
    paused_at: datetime
    reason: str

    def to_export_dict(self) -> dict:
        return {"pausedAt": to_iso(self.paused_at), "reason": self.reason}


@dataclass(frozen=True)
class ResumeInfo:
    paused_duration: int
    total_paused_duration: int

    def to_export_dict(self) -> dict:
        return {
            "pausedDuration": self.paused_duration,
            "totalPausedDuration": self.total_paused_duration,
        }


@dataclass(frozen=True)
class CancelInfo:
    cancelled_id: str
    start_time: datetime
    task_id: str | None

    def to_export_dict(self) -> dict:
        return {
            "cancelledId": self.cancelled_id,
            "startTime": to_iso(self.start_time),
            "taskId": self.task_id,
        }


# ---- Persisted records ----

@dataclass(frozen=True)
class TimeEntry:
    """Immutable record of a completed session."""

    id: str
    user_id: str
    workspace_id: str
    category_id: str
    start_time: datetime
    end_time: datetime
    duration_seconds: int
    paused_seconds: int = 0
    task_id: str | None = None
    description: str | None = None
    is_break: bool = False
    status: EntryStatus = EntryStatus.COMPLETED
    created_at: datetime | None = None

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "workspace_id": self.workspace_id,
            "task_id": self.task_id,
            "category_id": self.category_id,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "duration_seconds": self.duration_seconds,
            "paused_seconds": self.paused_seconds,
            "description": self.description,
            "is_break": 1 if self.is_break else 0,
            "status": self.status.value,
            "created_at": _iso_or_none(self.created_at),
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TimeEntry":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            workspace_id=row["workspace_id"],
            task_id=row["task_id"],
            category_id=row["category_id"],
            start_time=from_iso(row["start_time"]),
            end_time=from_iso(row["end_time"]),
            duration_seconds=int(row["duration_seconds"]),
            paused_seconds=int(row["paused_seconds"] or 0),
            description=row["description"],
            is_break=bool(row["is_break"]),
            status=EntryStatus(row["status"]),
            created_at=from_iso(row["created_at"]),
        )

    def to_export_dict(self) -> dict:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "categoryId": self.category_id,
            "startTime": to_iso(self.start_time),
            "endTime": to_iso(self.end_time),
            "duration": self.duration_seconds,
            "pausedDuration": self.paused_seconds,
            "description": self.description,
            "isBreak": self.is_break,
            "status": self.status.value,
            "createdAt": _iso_or_none(self.created_at),
        }


@dataclass(frozen=True)
class StoppedSession:
    """Result of stop: the new entry plus how its duration was derived."""

    entry: TimeEntry
    total_duration: int      # wall-clock seconds from start to stop
    paused_duration: int     # including a pause in progress at stop time

    @property
    def active_duration(self) -> int:
        return self.entry.duration_seconds

    def to_export_dict(self) -> dict:
        data = self.entry.to_export_dict()
        data["sessionSummary"] = {
            "totalDuration": self.total_duration,
            "pausedDuration": self.paused_duration,
            "activeDuration": self.active_duration,
        }
        return data


@dataclass(frozen=True)
class LifecycleEvent:
    entity_id: str
    action: TimerAction | str
    performed_by: str | None
    details: dict = field(default_factory=dict)
    entity_type: str = "timer"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LifecycleEvent":
        action = row["action"]
        try:
            action = TimerAction(action)
        except ValueError:
            pass  # non-timer entities log their own verbs
        return cls(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            action=action,
            performed_by=row["performed_by"],
            details=json.loads(row["details"] or "{}"),
            created_at=from_iso(row["created_at"]),
        )

    def to_export_dict(self) -> dict:
        action = self.action.value if isinstance(self.action, TimerAction) else self.action
        return {
            "id": self.id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "action": action,
            "performedBy": self.performed_by,
            "details": self.details,
            "createdAt": _iso_or_none(self.created_at),
        }


@dataclass(frozen=True)
class TimeCategory:
    id: str
    workspace_id: str
    name: str
    color: str
    is_billable: bool
    description: str | None = None
    is_default: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TimeCategory":
        return cls(
            id=row["id"],
            workspace_id=row["workspace_id"],
            name=row["name"],
            description=row["description"],
            color=row["color"],
            is_billable=bool(row["is_billable"]),
            is_default=bool(row["is_default"]),
        )

    def to_export_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "isBillable": self.is_billable,
            "isDefault": self.is_default,
        }
