"""Timer lifecycle engine.

State machine per (user_id, workspace_id):

    NONE --start--> RUNNING --pause--> PAUSED --resume--> RUNNING
    RUNNING|PAUSED --stop--> NONE (time entry written)
    RUNNING|PAUSED --cancel--> NONE (nothing written)

Every transition holds the key's lock and runs in one storage transaction
that also appends its lifecycle event. Preconditions are checked after the
lock is taken; violations come back as TimerResult failures.
"""

from __future__ import annotations

import uuid
from typing import Optional

from .audit import ActivityAuditLog
from .categories import CategoryResolver, kind_for
from .clock import SystemClock, to_iso
from .collaborators import TaskRepository, WorkspaceMembership
from .db import Database, transaction
from .duration import (
    current_pause_duration,
    effective_paused_duration,
    elapsed_total,
    final_duration,
    snapshot,
)
from .entries import TimeEntryRepository
from .errors import ErrorCode, TimerResult
from .locks import KeyedLock
from .log import logger
from .models import (
    DEFAULT_PAUSE_REASON,
    ActiveTimer,
    CancelInfo,
    LifecycleEvent,
    PauseInfo,
    Paused,
    ResumeInfo,
    Running,
    StoppedSession,
    TimeEntry,
    TimerAction,
    TimerSnapshot,
    TimerStatus,
)
from .store import ActiveTimerStore, StoreStatus


class TimerLifecycleEngine:
    """Start/pause/resume/stop/cancel for active timers."""

    def __init__(
        self,
        database: Database,
        clock=None,
        membership: Optional[WorkspaceMembership] = None,
        tasks: Optional[TaskRepository] = None,
        lock_timeout: float = 5.0,
    ):
        self.database = database
        self.clock = clock or SystemClock()
        self.membership = membership
        self.tasks = tasks
        self.locks = KeyedLock(timeout=lock_timeout)
        self.store = ActiveTimerStore(database)
        self.categories = CategoryResolver(database, clock=self.clock)
        self.entries = TimeEntryRepository(database)
        self.audit = ActivityAuditLog(database, clock=self.clock)

    def _event(self, timer: ActiveTimer, action: TimerAction, now, **details) -> LifecycleEvent:
        details["workspaceId"] = timer.workspace_id
        return LifecycleEvent(
            entity_id=timer.id,
            action=action,
            performed_by=timer.user_id,
            details=details,
            created_at=now,
        )

    # ---- Validation ----

    async def _validate_start(self, user_id: str, workspace_id: str,
                              task_id: str | None) -> Optional[TimerResult]:
        if self.membership is not None and not await self.membership.is_member(user_id, workspace_id):
            return TimerResult.failure(ErrorCode.FORBIDDEN)
        if task_id and self.tasks is not None and not await self.tasks.exists(task_id, workspace_id):
            return TimerResult.failure(ErrorCode.VALIDATION, "Task not found")
        return None

    # ---- Transitions ----

    async def start(
        self,
        user_id: str,
        workspace_id: str,
        task_id: str | None = None,
        category_id: str | None = None,
        description: str | None = None,
        is_break: bool = False,
    ) -> TimerResult[TimerSnapshot]:
        rejected = await self._validate_start(user_id, workspace_id, task_id)
        if rejected is not None:
            logger.warning(f"Start rejected for {user_id}@{workspace_id}: {rejected.error.message}")
            return rejected

        async with self.locks.hold((user_id, workspace_id)):
            async with self.database.connect() as db:
                async with transaction(db):
                    # Category must still exist when the timer row is written
                    if category_id and not await self.categories.exists(workspace_id, category_id, db):
                        logger.warning(f"Start rejected for {user_id}@{workspace_id}: category {category_id} not found")
                        return TimerResult.failure(ErrorCode.VALIDATION, "Category not found")
                    existing = await self.store.get(user_id, workspace_id, db)
                    if existing is not None:
                        logger.warning(f"Start rejected for {user_id}@{workspace_id}: timer {existing.id[:8]} already active")
                        return TimerResult.failure(ErrorCode.ALREADY_RUNNING, active_timer_id=existing.id)

                    now = self.clock.now()
                    timer = ActiveTimer.new(
                        user_id, workspace_id, now,
                        task_id=task_id,
                        category_id=category_id,
                        description=description,
                        is_break=is_break,
                    )
                    created = await self.store.create(timer, db)
                    if created.status is StoreStatus.ALREADY_EXISTS:
                        # Another process inserted between our read and write
                        return TimerResult.failure(ErrorCode.ALREADY_RUNNING, active_timer_id=created.existing_id)

                    await self.audit.append(self._event(
                        timer, TimerAction.STARTED, now,
                        taskId=task_id,
                        description=description,
                        isBreak=is_break,
                        startTime=to_iso(now),
                    ), db)

        logger.info(f"Timer started: {timer.id[:8]} for {user_id}@{workspace_id}"
                    f"{' (break)' if is_break else ''}")
        return TimerResult.success(snapshot(timer, now))

    async def pause(self, user_id: str, workspace_id: str,
                    reason: str | None = None) -> TimerResult[PauseInfo]:
        reason = reason or DEFAULT_PAUSE_REASON
        async with self.locks.hold((user_id, workspace_id)):
            async with self.database.connect() as db:
                async with transaction(db):
                    timer = await self.store.get(user_id, workspace_id, db)
                    if timer is None:
                        return TimerResult.failure(ErrorCode.NOT_FOUND)
                    if isinstance(timer.state, Paused):
                        return TimerResult.failure(ErrorCode.ALREADY_PAUSED)

                    now = self.clock.now()
                    await self.store.update(
                        timer.id, db,
                        last_pause_time=now,
                        pause_reason=reason,
                        updated_at=now,
                    )
                    await self.audit.append(self._event(
                        timer, TimerAction.PAUSED, now,
                        reason=reason,
                        pausedAt=to_iso(now),
                    ), db)

        logger.info(f"Timer paused: {timer.id[:8]} ({reason})")
        return TimerResult.success(PauseInfo(paused_at=now, reason=reason))

    async def resume(self, user_id: str, workspace_id: str) -> TimerResult[ResumeInfo]:
        async with self.locks.hold((user_id, workspace_id)):
            async with self.database.connect() as db:
                async with transaction(db):
                    timer = await self.store.get(user_id, workspace_id, db)
                    if timer is None:
                        return TimerResult.failure(ErrorCode.NOT_FOUND)
                    if isinstance(timer.state, Running):
                        return TimerResult.failure(ErrorCode.NOT_PAUSED)

                    now = self.clock.now()
                    paused_duration = current_pause_duration(timer, now)
                    total_paused = timer.total_paused_duration + paused_duration
                    await self.store.update(
                        timer.id, db,
                        last_pause_time=None,
                        pause_reason=None,
                        total_paused_duration=total_paused,
                        updated_at=now,
                    )
                    await self.audit.append(self._event(
                        timer, TimerAction.RESUMED, now,
                        pausedDuration=paused_duration,
                        totalPausedDuration=total_paused,
                    ), db)

        logger.info(f"Timer resumed: {timer.id[:8]} after {paused_duration}s pause")
        return TimerResult.success(ResumeInfo(paused_duration=paused_duration, total_paused_duration=total_paused))

    async def stop(self, user_id: str, workspace_id: str,
                   description: str | None = None) -> TimerResult[StoppedSession]:
        """Finalize the timer into a time entry.

        Entry insert, timer delete and the stopped event commit together. A
        pause still in progress counts as paused time.
        """
        async with self.locks.hold((user_id, workspace_id)):
            async with self.database.connect() as db:
                async with transaction(db):
                    timer = await self.store.get(user_id, workspace_id, db)
                    if timer is None:
                        return TimerResult.failure(ErrorCode.NOT_FOUND)

                    now = self.clock.now()
                    paused = effective_paused_duration(timer, now)
                    duration = final_duration(timer, now)
                    category_id = timer.category_id or await self.categories.resolve(
                        workspace_id, kind_for(timer.is_break, timer.task_id), db
                    )

                    entry = TimeEntry(
                        id=str(uuid.uuid4()),
                        user_id=user_id,
                        workspace_id=workspace_id,
                        task_id=timer.task_id,
                        category_id=category_id,
                        start_time=timer.start_time,
                        end_time=now,
                        duration_seconds=duration,
                        paused_seconds=paused,
                        description=description or timer.description,
                        is_break=timer.is_break,
                        created_at=now,
                    )
                    await self.entries.insert(entry, db)
                    await self.store.delete(timer.id, db)
                    await self.audit.append(self._event(
                        timer, TimerAction.STOPPED, now,
                        totalDuration=duration,
                        pausedDuration=paused,
                        timeEntryId=entry.id,
                        taskId=timer.task_id,
                    ), db)

        logger.info(f"Timer stopped: {timer.id[:8]} -> entry {entry.id[:8]}, "
                    f"{duration}s active, {paused}s paused")
        return TimerResult.success(StoppedSession(
            entry=entry,
            total_duration=elapsed_total(timer, now),
            paused_duration=paused,
        ))

    async def cancel(self, user_id: str, workspace_id: str) -> TimerResult[CancelInfo]:
        """Discard the active timer without recording a time entry."""
        async with self.locks.hold((user_id, workspace_id)):
            async with self.database.connect() as db:
                async with transaction(db):
                    timer = await self.store.get(user_id, workspace_id, db)
                    if timer is None:
                        return TimerResult.failure(ErrorCode.NOT_FOUND)

                    now = self.clock.now()
                    await self.store.delete(timer.id, db)
                    await self.audit.append(self._event(
                        timer, TimerAction.CANCELLED, now,
                        elapsedSeconds=elapsed_total(timer, now),
                        taskId=timer.task_id,
                    ), db)

        logger.info(f"Timer cancelled: {timer.id[:8]}")
        return TimerResult.success(CancelInfo(
            cancelled_id=timer.id,
            start_time=timer.start_time,
            task_id=timer.task_id,
        ))

    async def describe(self, user_id: str, workspace_id: str,
                       description: str | None) -> TimerResult[TimerSnapshot]:
        """Replace the description of the active timer."""
        async with self.locks.hold((user_id, workspace_id)):
            async with self.database.connect() as db:
                async with transaction(db):
                    timer = await self.store.get(user_id, workspace_id, db)
                    if timer is None:
                        return TimerResult.failure(ErrorCode.NOT_FOUND)

                    now = self.clock.now()
                    updated = await self.store.update(
                        timer.id, db,
                        description=description,
                        updated_at=now,
                    )
                    await self.audit.append(self._event(
                        timer, TimerAction.DESCRIBED, now,
                        previous=timer.description,
                        description=description,
                    ), db)

        return TimerResult.success(snapshot(updated.timer, now))

    # ---- Reads ----

    async def status(self, user_id: str, workspace_id: str) -> TimerStatus:
        """Live view of the active timer. Lock-free; may be momentarily stale."""
        timer = await self.store.get(user_id, workspace_id)
        if timer is None:
            return TimerStatus(has_active_timer=False)
        return TimerStatus(has_active_timer=True, timer=snapshot(timer, self.clock.now()))

    async def history(self, timer_id: str):
        return await self.audit.entity_history("timer", timer_id)
