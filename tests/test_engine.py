"""
Tests for TimerLifecycleEngine: transitions, durations, concurrency, audit trail.

All tests run against a temp SQLite file with a ManualClock, so durations are
exact.

Run:
    pytest tests/test_engine.py -v
"""

import asyncio
import sqlite3
from unittest.mock import patch

import pytest

from conftest import run
from worktimer.db import Database
from worktimer.engine import TimerLifecycleEngine
from worktimer.errors import ErrorCode, TransientStorageError
from worktimer.models import DEFAULT_PAUSE_REASON, TimerAction

USER, WS = "alice", "ws1"


# ---- Helpers ----

def ok(result):
    assert result.ok, result.error
    return result.value


def categories_by_id(engine, workspace_id=WS):
    return {c.id: c for c in run(engine.categories.list_categories(workspace_id))}


# ---- Start ----

class TestStart:
    def test_category_checked_inside_transaction(self, engine):
        custom = ok(run(engine.categories.create(WS, "Meetings")))
        original = engine.categories.exists
        seen = []

        async def exists(workspace_id, category_id, db=None):
            seen.append(db is not None and db.in_transaction)
            return await original(workspace_id, category_id, db)

        with patch.object(engine.categories, "exists", side_effect=exists):
            ok(run(engine.start(USER, WS, category_id=custom.id)))
        assert seen == [True]

    def test_deleted_category_rejected(self, engine, database):
        custom = ok(run(engine.categories.create(WS, "Meetings")))

        async def _delete():
            async with database.connect() as db:
                await db.execute("DELETE FROM time_categories WHERE id = ?", (custom.id,))

        run(_delete())
        result = run(engine.start(USER, WS, category_id=custom.id))
        assert result.error.code is ErrorCode.VALIDATION
        assert run(engine.store.count(USER, WS)) == 0

    def test_start_creates_running_timer(self, engine, clock):
        timer = ok(run(engine.start(USER, WS, description="Write report")))
        assert timer.start_time == clock.now()
        assert timer.elapsed_seconds == 0
        assert not timer.is_paused
        assert timer.description == "Write report"

        status = run(engine.status(USER, WS))
        assert status.has_active_timer
        assert status.timer.id == timer.id

    def test_second_start_rejected_with_active_id(self, engine):
        first = ok(run(engine.start(USER, WS)))
        result = run(engine.start(USER, WS))
        assert not result.ok
        assert result.error.code is ErrorCode.ALREADY_RUNNING
        assert result.error.active_timer_id == first.id
        assert result.error.message == "You already have an active timer. Please stop it first."
        assert run(engine.store.count(USER, WS)) == 1

    def test_start_while_paused_rejected(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(5)
        ok(run(engine.pause(USER, WS)))
        assert run(engine.start(USER, WS)).error.code is ErrorCode.ALREADY_RUNNING

    def test_other_workspace_independent(self, engine):
        ok(run(engine.start(USER, "ws1")))
        ok(run(engine.start(USER, "ws2")))
        assert run(engine.status(USER, "ws2")).has_active_timer

    def test_unknown_category_rejected(self, engine):
        result = run(engine.start(USER, WS, category_id="nope"))
        assert result.error.code is ErrorCode.VALIDATION
        assert result.error.message == "Category not found"
        assert not run(engine.status(USER, WS)).has_active_timer


class TestStartValidation:
    def test_non_member_forbidden(self, guarded_engine):
        result = run(guarded_engine.start("mallory", WS))
        assert result.error.code is ErrorCode.FORBIDDEN

    def test_unknown_task_rejected(self, guarded_engine):
        result = run(guarded_engine.start(USER, WS, task_id="task-404"))
        assert result.error.code is ErrorCode.VALIDATION
        assert result.error.message == "Task not found"

    def test_known_task_accepted(self, guarded_engine):
        timer = ok(run(guarded_engine.start(USER, WS, task_id="task-1")))
        assert timer.task_id == "task-1"

    def test_task_from_other_workspace_rejected(self, guarded_engine, membership):
        run(membership.add_member(USER, "ws2"))
        result = run(guarded_engine.start(USER, "ws2", task_id="task-1"))
        assert result.error.code is ErrorCode.VALIDATION


# ---- Pause / resume ----

class TestPauseResume:
    def test_pause_defaults_reason(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(30)
        info = ok(run(engine.pause(USER, WS)))
        assert info.reason == DEFAULT_PAUSE_REASON
        assert info.paused_at == clock.now()

        timer = run(engine.status(USER, WS)).timer
        assert timer.is_paused
        assert timer.pause_reason == DEFAULT_PAUSE_REASON

    def test_pause_twice_rejected(self, engine):
        ok(run(engine.start(USER, WS)))
        ok(run(engine.pause(USER, WS, reason="Lunch")))
        result = run(engine.pause(USER, WS, reason="Again"))
        assert result.error.code is ErrorCode.ALREADY_PAUSED
        assert run(engine.status(USER, WS)).timer.pause_reason == "Lunch"

    def test_pause_without_timer(self, engine):
        result = run(engine.pause(USER, WS))
        assert result.error.code is ErrorCode.NOT_FOUND
        assert result.error.message == "No active timer found"

    def test_resume_running_rejected(self, engine):
        ok(run(engine.start(USER, WS)))
        assert run(engine.resume(USER, WS)).error.code is ErrorCode.NOT_PAUSED

    def test_resume_without_timer(self, engine):
        assert run(engine.resume(USER, WS)).error.code is ErrorCode.NOT_FOUND

    def test_resume_folds_pause_into_total(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(30)
        ok(run(engine.pause(USER, WS)))
        clock.advance(10)
        info = ok(run(engine.resume(USER, WS)))
        assert info.paused_duration == 10
        assert info.total_paused_duration == 10

        timer = run(engine.status(USER, WS)).timer
        assert not timer.is_paused
        assert timer.pause_reason is None
        assert timer.paused_at is None
        assert timer.total_paused_duration == 10

    def test_immediate_resume_adds_nothing(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(30)
        ok(run(engine.pause(USER, WS)))
        info = ok(run(engine.resume(USER, WS)))
        assert info.paused_duration == 0
        assert run(engine.status(USER, WS)).timer.elapsed_seconds == 30

    def test_multiple_pauses_accumulate(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        for _ in range(3):
            clock.advance(10)
            ok(run(engine.pause(USER, WS)))
            clock.advance(5)
            ok(run(engine.resume(USER, WS)))
        timer = run(engine.status(USER, WS)).timer
        assert timer.total_paused_duration == 15
        assert timer.elapsed_seconds == 30


# ---- Status ----

class TestStatus:
    def test_no_timer(self, engine):
        status = run(engine.status(USER, WS))
        assert not status.has_active_timer
        assert status.to_export_dict() == {"hasActiveTimer": False, "timer": None}

    def test_elapsed_non_decreasing(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        seen = []
        for step in (0, 1, 0, 5, 0.5):
            clock.advance(step)
            seen.append(run(engine.status(USER, WS)).timer.elapsed_seconds)
        assert seen == sorted(seen)

    def test_paused_status_frozen(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(20)
        ok(run(engine.pause(USER, WS)))
        clock.advance(100)
        timer = run(engine.status(USER, WS)).timer
        assert timer.elapsed_seconds == 20
        assert timer.current_pause_duration == 100

    def test_status_does_not_mutate(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        before = run(engine.store.get(USER, WS))
        clock.advance(60)
        run(engine.status(USER, WS))
        assert run(engine.store.get(USER, WS)) == before


# ---- Stop ----

class TestStopScenarios:
    def test_no_pauses(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(90)
        session = ok(run(engine.stop(USER, WS)))
        assert session.entry.duration_seconds == 90
        assert session.paused_duration == 0
        assert session.total_duration == 90

    def test_pause_resume_then_stop(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(30)
        ok(run(engine.pause(USER, WS)))
        clock.advance(10)
        ok(run(engine.resume(USER, WS)))
        clock.advance(60)
        session = ok(run(engine.stop(USER, WS)))
        assert session.paused_duration == 10
        assert session.entry.duration_seconds == 90
        assert session.entry.paused_seconds == 10
        assert session.total_duration == 100

    def test_stop_while_paused(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(20)
        ok(run(engine.pause(USER, WS)))
        clock.advance(40)
        session = ok(run(engine.stop(USER, WS)))
        assert session.entry.duration_seconds == 20
        assert session.paused_duration == 40

    def test_same_instant_records_one_second(self, engine):
        ok(run(engine.start(USER, WS)))
        session = ok(run(engine.stop(USER, WS)))
        assert session.entry.duration_seconds == 1

    def test_stop_without_timer(self, engine):
        assert run(engine.stop(USER, WS)).error.code is ErrorCode.NOT_FOUND


class TestStop:
    def test_entry_persisted_and_timer_removed(self, engine, clock):
        started = ok(run(engine.start(USER, WS, task_id="task-1", description="Draft")))
        clock.advance(120)
        session = ok(run(engine.stop(USER, WS)))

        entry = run(engine.entries.get(session.entry.id, USER, WS))
        assert entry == session.entry
        assert entry.start_time == started.start_time
        assert entry.end_time == clock.now()
        assert entry.description == "Draft"
        assert entry.task_id == "task-1"
        assert entry.status.value == "completed"
        assert not run(engine.status(USER, WS)).has_active_timer

    def test_stop_description_overrides(self, engine, clock):
        ok(run(engine.start(USER, WS, description="Draft")))
        clock.advance(10)
        session = ok(run(engine.stop(USER, WS, description="Final")))
        assert session.entry.description == "Final"

    def test_can_start_again_after_stop(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(10)
        ok(run(engine.stop(USER, WS)))
        ok(run(engine.start(USER, WS)))

    def test_session_summary_export(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(30)
        ok(run(engine.pause(USER, WS)))
        clock.advance(10)
        data = ok(run(engine.stop(USER, WS))).to_export_dict()
        assert data["duration"] == 30
        assert data["sessionSummary"] == {"totalDuration": 40, "pausedDuration": 10, "activeDuration": 30}


class TestStopCategories:
    def test_task_timer_goes_to_development(self, engine, clock):
        ok(run(engine.start(USER, WS, task_id="task-1")))
        clock.advance(10)
        entry = ok(run(engine.stop(USER, WS))).entry
        category = categories_by_id(engine)[entry.category_id]
        assert category.name == "Development"
        assert category.is_billable

    def test_break_goes_to_break(self, engine, clock):
        ok(run(engine.start(USER, WS, is_break=True)))
        clock.advance(10)
        entry = ok(run(engine.stop(USER, WS))).entry
        assert entry.is_break
        category = categories_by_id(engine)[entry.category_id]
        assert category.name == "Break"
        assert not category.is_billable

    def test_plain_timer_goes_to_administrative(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(10)
        entry = ok(run(engine.stop(USER, WS))).entry
        assert categories_by_id(engine)[entry.category_id].name == "Administrative"

    def test_explicit_category_kept(self, engine, clock):
        custom = ok(run(engine.categories.create(WS, "Meetings", color="#f59e0b")))
        ok(run(engine.start(USER, WS, category_id=custom.id, is_break=True)))
        clock.advance(10)
        assert ok(run(engine.stop(USER, WS))).entry.category_id == custom.id

    def test_default_category_reused(self, engine, clock):
        ids = set()
        for _ in range(3):
            ok(run(engine.start(USER, WS)))
            clock.advance(10)
            ids.add(ok(run(engine.stop(USER, WS))).entry.category_id)
        assert len(ids) == 1
        assert len(categories_by_id(engine)) == 1


# ---- Cancel / describe ----

class TestCancel:
    def test_cancel_discards_without_entry(self, engine, clock):
        started = ok(run(engine.start(USER, WS, task_id="task-1")))
        clock.advance(50)
        info = ok(run(engine.cancel(USER, WS)))
        assert info.cancelled_id == started.id
        assert info.task_id == "task-1"
        assert not run(engine.status(USER, WS)).has_active_timer
        assert run(engine.entries.list_entries(USER, WS)) == []

    def test_cancel_without_timer(self, engine):
        assert run(engine.cancel(USER, WS)).error.code is ErrorCode.NOT_FOUND


class TestDescribe:
    def test_describe_updates_running_timer(self, engine, clock):
        ok(run(engine.start(USER, WS, description="old")))
        clock.advance(5)
        timer = ok(run(engine.describe(USER, WS, "new")))
        assert timer.description == "new"
        assert timer.elapsed_seconds == 5

    def test_describe_keeps_pause(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(5)
        ok(run(engine.pause(USER, WS, reason="Call")))
        timer = ok(run(engine.describe(USER, WS, "notes")))
        assert timer.is_paused
        assert timer.pause_reason == "Call"

    def test_describe_without_timer(self, engine):
        assert run(engine.describe(USER, WS, "x")).error.code is ErrorCode.NOT_FOUND


# ---- Audit trail ----

class TestAuditTrail:
    def test_full_lifecycle_recorded_in_order(self, engine, clock):
        timer = ok(run(engine.start(USER, WS)))
        clock.advance(30)
        ok(run(engine.pause(USER, WS, reason="Lunch")))
        clock.advance(10)
        ok(run(engine.resume(USER, WS)))
        clock.advance(60)
        session = ok(run(engine.stop(USER, WS)))

        events = run(engine.history(timer.id))
        assert [e.action for e in events] == [
            TimerAction.STARTED, TimerAction.PAUSED, TimerAction.RESUMED, TimerAction.STOPPED,
        ]
        assert all(e.performed_by == USER for e in events)
        assert events[1].details["reason"] == "Lunch"
        assert events[2].details["pausedDuration"] == 10
        stopped = events[3].details
        assert stopped["totalDuration"] == 90
        assert stopped["pausedDuration"] == 10
        assert stopped["timeEntryId"] == session.entry.id
        assert stopped["workspaceId"] == WS

    def test_rejected_transition_not_recorded(self, engine):
        timer = ok(run(engine.start(USER, WS)))
        run(engine.resume(USER, WS))
        run(engine.start(USER, WS))
        assert [e.action for e in run(engine.history(timer.id))] == [TimerAction.STARTED]

    def test_cancel_recorded(self, engine, clock):
        timer = ok(run(engine.start(USER, WS)))
        clock.advance(12)
        ok(run(engine.cancel(USER, WS)))
        last = run(engine.history(timer.id))[-1]
        assert last.action is TimerAction.CANCELLED
        assert last.details["elapsedSeconds"] == 12


# ---- Atomicity ----

class TestAtomicity:
    def test_failed_audit_rolls_back_stop(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(30)
        with patch.object(engine.audit, "append", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                run(engine.stop(USER, WS))

        assert run(engine.status(USER, WS)).has_active_timer
        assert run(engine.entries.list_entries(USER, WS)) == []
        # Lock was released; a retry succeeds
        assert ok(run(engine.stop(USER, WS))).entry.duration_seconds == 30

    def test_failed_audit_rolls_back_start(self, engine):
        with patch.object(engine.audit, "append", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                run(engine.start(USER, WS))
        assert run(engine.store.count(USER, WS)) == 0

    def test_failed_audit_rolls_back_pause(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(5)
        with patch.object(engine.audit, "append", side_effect=RuntimeError("disk full")):
            with pytest.raises(RuntimeError):
                run(engine.pause(USER, WS))
        assert not run(engine.status(USER, WS)).timer.is_paused


# ---- Concurrency ----

class TestConcurrency:
    def test_concurrent_starts_one_wins(self, engine):
        async def _go():
            return await asyncio.gather(*(engine.start(USER, WS) for _ in range(5)))

        results = run(_go())
        winners = [r for r in results if r.ok]
        losers = [r for r in results if not r.ok]
        assert len(winners) == 1
        assert all(r.error.code is ErrorCode.ALREADY_RUNNING for r in losers)
        assert all(r.error.active_timer_id == winners[0].value.id for r in losers)
        assert run(engine.store.count(USER, WS)) == 1

    def test_concurrent_starts_across_engines(self, database, clock):
        # Two engines share the database but not their locks
        first = TimerLifecycleEngine(database, clock=clock)
        second = TimerLifecycleEngine(database, clock=clock)

        async def _go():
            return await asyncio.gather(first.start(USER, WS), second.start(USER, WS))

        results = run(_go())
        assert sorted(r.ok for r in results) == [False, True]
        assert run(first.store.count(USER, WS)) == 1

    def test_concurrent_stops_one_entry(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(45)

        async def _go():
            return await asyncio.gather(engine.stop(USER, WS), engine.stop(USER, WS))

        results = run(_go())
        assert sorted(r.ok for r in results) == [False, True]
        assert len(run(engine.entries.list_entries(USER, WS))) == 1

    def test_concurrent_pause_and_resume_consistent(self, engine, clock):
        ok(run(engine.start(USER, WS)))
        clock.advance(10)

        async def _go():
            return await asyncio.gather(engine.pause(USER, WS), engine.pause(USER, WS))

        results = run(_go())
        assert [r.ok for r in results].count(True) == 1
        assert run(engine.status(USER, WS)).timer.is_paused

    def test_different_users_parallel(self, engine, clock):
        async def _go():
            return await asyncio.gather(*(engine.start(f"user-{i}", WS) for i in range(4)))

        assert all(r.ok for r in run(_go()))


# ---- Storage contention ----

class TestBusyDatabase:
    def test_locked_database_raises_transient(self, database, db_path, clock):
        engine = TimerLifecycleEngine(Database(db_path, busy_timeout_ms=50), clock=clock)
        # Another process holds the SQLite writer lock
        other = sqlite3.connect(db_path, isolation_level=None)
        try:
            other.execute("BEGIN IMMEDIATE")
            with pytest.raises(TransientStorageError, match="locked"):
                run(engine.start(USER, WS))
        finally:
            other.execute("ROLLBACK")
            other.close()

        assert run(engine.store.count(USER, WS)) == 0
        assert len(engine.locks) == 0
        # Retry succeeds once the writer is gone
        ok(run(engine.start(USER, WS)))

    def test_locked_database_on_stop_keeps_timer(self, database, db_path, clock):
        engine = TimerLifecycleEngine(Database(db_path, busy_timeout_ms=50), clock=clock)
        ok(run(engine.start(USER, WS)))
        clock.advance(30)
        other = sqlite3.connect(db_path, isolation_level=None)
        try:
            other.execute("BEGIN IMMEDIATE")
            with pytest.raises(TransientStorageError):
                run(engine.stop(USER, WS))
        finally:
            other.execute("ROLLBACK")
            other.close()

        assert run(engine.status(USER, WS)).has_active_timer
        assert run(engine.entries.list_entries(USER, WS)) == []
