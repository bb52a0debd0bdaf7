"""Tests for ActivityAuditLog: standalone logging and queries."""

from datetime import date

import pytest

from conftest import run
from worktimer.audit import ActivityAuditLog
from worktimer.db import Database
from worktimer.models import TimerAction


@pytest.fixture
def audit(database, clock):
    return ActivityAuditLog(database, clock=clock)


class TestLog:
    def test_log_and_read_back(self, audit):
        event_id = run(audit.log("timer", "t1", TimerAction.STARTED, performed_by="alice",
                                 details={"taskId": "task-1"}))
        [event] = run(audit.entity_history("timer", "t1"))
        assert event.id == event_id
        assert event.action is TimerAction.STARTED
        assert event.details == {"taskId": "task-1"}

    def test_other_entity_actions_kept_as_strings(self, audit):
        run(audit.log("category", "c1", "created", performed_by="alice"))
        [event] = run(audit.entity_history("category", "c1"))
        assert event.action == "created"
        assert event.to_export_dict()["action"] == "created"

    def test_failure_is_swallowed(self, tmp_path, clock):
        # Parent directory does not exist, so the connection cannot open
        broken = ActivityAuditLog(Database(tmp_path / "missing" / "x.db"), clock=clock)
        assert run(broken.log("timer", "t1", TimerAction.STARTED)) is None


class TestGetActivities:
    def test_filter_by_workspace_before_limit(self, audit, clock):
        run(audit.log("timer", "t1", TimerAction.STARTED, performed_by="alice", details={"workspaceId": "ws1"}))
        for _ in range(3):
            clock.advance(60)
            run(audit.log("timer", "t2", TimerAction.STARTED, performed_by="alice", details={"workspaceId": "ws2"}))

        events = run(audit.get_activities(performed_by="alice", workspace_id="ws1", limit=2))
        assert [e.entity_id for e in events] == ["t1"]
        assert len(run(audit.get_activities(workspace_id="ws2", limit=2))) == 2

    def test_filters_and_order(self, audit, clock):
        run(audit.log("timer", "t1", TimerAction.STARTED, performed_by="alice"))
        clock.advance(60)
        run(audit.log("timer", "t1", TimerAction.PAUSED, performed_by="alice"))
        run(audit.log("timer", "t2", TimerAction.STARTED, performed_by="bob"))

        events = run(audit.get_activities(performed_by="alice"))
        assert [e.action for e in events] == [TimerAction.PAUSED, TimerAction.STARTED]

        events = run(audit.get_activities(entity_id="t2"))
        assert [e.performed_by for e in events] == ["bob"]

    def test_same_instant_newest_first(self, audit):
        run(audit.log("timer", "t1", TimerAction.STARTED))
        run(audit.log("timer", "t1", TimerAction.CANCELLED))
        events = run(audit.get_activities(entity_type="timer"))
        assert [e.action for e in events] == [TimerAction.CANCELLED, TimerAction.STARTED]

    def test_date_range_and_limit(self, audit, clock):
        for _ in range(3):
            run(audit.log("timer", "t1", TimerAction.STARTED))
            clock.advance(days=1)
        assert len(run(audit.get_activities(start_date=date(2026, 1, 6)))) == 2
        assert len(run(audit.get_activities(end_date=date(2026, 1, 5)))) == 1
        assert len(run(audit.get_activities(limit=2))) == 2
