"""Shared fixtures: temp SQLite database, manual clock, engine."""

import asyncio

import pytest

from worktimer.clock import ManualClock
from worktimer.collaborators import SqliteTaskRepository, SqliteWorkspaceMembership
from worktimer.db import Database
from worktimer.engine import TimerLifecycleEngine


def run(coro):
    """Run an async function in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "worktimer.db"


@pytest.fixture
def database(db_path):
    db = Database(db_path)
    run(db.init())
    return db


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def engine(database, clock):
    """Engine without membership or task checks."""
    return TimerLifecycleEngine(database, clock=clock, lock_timeout=1.0)


@pytest.fixture
def membership(database):
    members = SqliteWorkspaceMembership(database)
    run(members.add_member("alice", "ws1"))
    run(members.add_member("bob", "ws1"))
    return members


@pytest.fixture
def tasks(database):
    repo = SqliteTaskRepository(database)
    run(repo.add_task("task-1", "ws1", "Fix login bug"))
    return repo


@pytest.fixture
def guarded_engine(database, clock, membership, tasks):
    """Engine that validates membership and task existence."""
    return TimerLifecycleEngine(database, clock=clock, membership=membership, tasks=tasks, lock_timeout=1.0)
