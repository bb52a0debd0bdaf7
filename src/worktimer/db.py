"""SQLite storage: schema, connections and explicit transactions.

Connections are opened per operation (aiosqlite), in autocommit mode, so
every multi-statement write is wrapped in an explicit BEGIN IMMEDIATE ...
COMMIT via transaction().
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from .errors import TransientStorageError
from .log import logger

BUSY_MARKERS = ("database is locked", "database is busy", "database table is locked")


def is_busy_error(exc: Exception) -> bool:
    return isinstance(exc, aiosqlite.OperationalError) and any(
        marker in str(exc).lower() for marker in BUSY_MARKERS
    )


class Database:
    """Connection factory for the timer database."""

    def __init__(self, path: Path, busy_timeout_ms: int = 5000):
        self.path = Path(path)
        self.busy_timeout_ms = busy_timeout_ms

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection with busy_timeout configured.

        Busy/locked errors surface as TransientStorageError.
        """
        try:
            async with aiosqlite.connect(self.path, isolation_level=None) as db:
                db.row_factory = aiosqlite.Row
                # Bounded wait on lock contention instead of failing immediately
                await db.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
                await db.execute("PRAGMA foreign_keys=ON")
                yield db
        except aiosqlite.OperationalError as e:
            if is_busy_error(e):
                logger.warning(f"Storage busy: {e}")
                raise TransientStorageError(f"Storage busy: {e}") from e
            raise

    async def init(self) -> None:
        """Create the database file and all tables."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with self.connect() as db:
            # WAL lets status polling read while a transition is writing
            await db.execute("PRAGMA journal_mode=WAL")
            await init_tables(db)
        logger.info(f"Database initialized at {self.path}")


@asynccontextmanager
async def transaction(db: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """BEGIN IMMEDIATE ... COMMIT, rolling back on any exception."""
    await db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except BaseException:
        if db.in_transaction:
            await db.execute("ROLLBACK")
        raise
    else:
        await db.execute("COMMIT")


async def init_tables(db: aiosqlite.Connection) -> None:
    """Create timer tables. Safe to call repeatedly."""
    await db.execute("""
        CREATE TABLE IF NOT EXISTS active_timers (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            workspace_id TEXT NOT NULL,
            task_id TEXT,
            category_id TEXT,
            start_time TEXT NOT NULL,
            last_pause_time TEXT,
            total_paused_duration INTEGER NOT NULL DEFAULT 0,
            pause_reason TEXT,
            is_break INTEGER NOT NULL DEFAULT 0,
            description TEXT,
            created_at TEXT,
            updated_at TEXT,
            UNIQUE (user_id, workspace_id)
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS time_entries (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            workspace_id TEXT NOT NULL,
            task_id TEXT,
            category_id TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            duration_seconds INTEGER NOT NULL CHECK (duration_seconds >= 1),
            paused_seconds INTEGER NOT NULL DEFAULT 0,
            description TEXT,
            is_break INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'completed',
            created_at TEXT
        )
    """)
    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_time_entries_user
        ON time_entries(user_id, workspace_id, start_time DESC)
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS activity_log (
            id TEXT PRIMARY KEY,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            action TEXT NOT NULL,
            performed_by TEXT,
            details TEXT,
            created_at TEXT NOT NULL
        )
    """)
    await db.execute("CREATE INDEX IF NOT EXISTS idx_activity_entity ON activity_log(entity_type, entity_id)")
    await db.execute("CREATE INDEX IF NOT EXISTS idx_activity_time ON activity_log(created_at DESC)")

    await db.execute("""
        CREATE TABLE IF NOT EXISTS time_categories (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            color TEXT NOT NULL DEFAULT '#64748b',
            is_billable INTEGER NOT NULL DEFAULT 0,
            is_default INTEGER NOT NULL DEFAULT 0,
            created_at TEXT,
            UNIQUE (workspace_id, name)
        )
    """)

    # Reference tables owned by workspace/task management; read-only here
    await db.execute("""
        CREATE TABLE IF NOT EXISTS workspace_members (
            workspace_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            role TEXT DEFAULT 'member',
            PRIMARY KEY (workspace_id, user_id)
        )
    """)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            title TEXT
        )
    """)
