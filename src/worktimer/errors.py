"""Error taxonomy and result types for timer operations.

Precondition violations are returned as TimerResult failures so callers can
render them; infrastructure failures are raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    ALREADY_RUNNING = "already_running"
    NOT_FOUND = "not_found"
    ALREADY_PAUSED = "already_paused"
    NOT_PAUSED = "not_paused"
    VALIDATION = "validation"
    FORBIDDEN = "forbidden"


MESSAGES = {
    ErrorCode.ALREADY_RUNNING: "You already have an active timer. Please stop it first.",
    ErrorCode.NOT_FOUND: "No active timer found",
    ErrorCode.ALREADY_PAUSED: "Timer is already paused",
    ErrorCode.NOT_PAUSED: "Timer is not paused",
    ErrorCode.VALIDATION: "Invalid request",
    ErrorCode.FORBIDDEN: "You are not a member of this workspace",
}


@dataclass(frozen=True)
class TimerError:
    """A rejected transition."""

    code: ErrorCode
    message: str
    active_timer_id: Optional[str] = None

    @classmethod
    def of(cls, code: ErrorCode, message: str | None = None, **kwargs: Any) -> "TimerError":
        return cls(code=code, message=message or MESSAGES[code], **kwargs)


@dataclass(frozen=True)
class TimerResult(Generic[T]):
    """Outcome of an engine operation."""

    ok: bool
    value: Optional[T] = None
    error: Optional[TimerError] = None

    @classmethod
    def success(cls, value: T) -> "TimerResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, code: ErrorCode, message: str | None = None, **kwargs: Any) -> "TimerResult[T]":
        return cls(ok=False, error=TimerError.of(code, message, **kwargs))


class TimerEngineError(Exception):
    """Base class for raised engine errors."""


class TransientStorageError(TimerEngineError):
    """Lock timeout or busy database. Safe to retry with backoff."""

    def __init__(self, message: str, retry_after: float = 1.0):
        super().__init__(message)
        self.retry_after = retry_after
