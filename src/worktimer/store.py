"""Keyed storage of active timers.

At most one row per (user_id, workspace_id): the UNIQUE constraint on
active_timers is the enforcement point, create() maps its violation to
ALREADY_EXISTS. Every method takes an optional open connection so callers can
group several writes into one transaction.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional

import aiosqlite

from .clock import to_iso
from .db import Database
from .models import ActiveTimer

# Columns update() may change. start_time, is_break and the key are immutable.
MUTABLE_COLUMNS = frozenset({
    "category_id",
    "description",
    "last_pause_time",
    "total_paused_duration",
    "pause_reason",
    "updated_at",
})


class StoreStatus(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    UPDATED = "updated"
    DELETED = "deleted"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class StoreResult:
    status: StoreStatus
    timer: Optional[ActiveTimer] = None
    existing_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (StoreStatus.CREATED, StoreStatus.UPDATED, StoreStatus.DELETED)


def _db_value(value):
    if hasattr(value, "isoformat"):
        return to_iso(value)
    return value


class ActiveTimerStore:
    """CRUD over the active_timers table."""

    def __init__(self, database: Database):
        self.database = database

    @asynccontextmanager
    async def _conn(self, db: Optional[aiosqlite.Connection]) -> AsyncIterator[aiosqlite.Connection]:
        if db is not None:
            yield db
        else:
            async with self.database.connect() as own:
                yield own

    async def get(self, user_id: str, workspace_id: str,
                  db: Optional[aiosqlite.Connection] = None) -> Optional[ActiveTimer]:
        async with self._conn(db) as conn:
            cursor = await conn.execute(
                "SELECT * FROM active_timers WHERE user_id = ? AND workspace_id = ?",
                (user_id, workspace_id),
            )
            row = await cursor.fetchone()
        return ActiveTimer.from_row(row) if row else None

    async def get_by_id(self, timer_id: str,
                        db: Optional[aiosqlite.Connection] = None) -> Optional[ActiveTimer]:
        async with self._conn(db) as conn:
            cursor = await conn.execute("SELECT * FROM active_timers WHERE id = ?", (timer_id,))
            row = await cursor.fetchone()
        return ActiveTimer.from_row(row) if row else None

    async def create(self, timer: ActiveTimer,
                     db: Optional[aiosqlite.Connection] = None) -> StoreResult:
        row = timer.to_row()
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        async with self._conn(db) as conn:
            try:
                await conn.execute(
                    f"INSERT INTO active_timers ({columns}) VALUES ({placeholders})",
                    tuple(row.values()),
                )
            except aiosqlite.IntegrityError:
                cursor = await conn.execute(
                    "SELECT id FROM active_timers WHERE user_id = ? AND workspace_id = ?",
                    (timer.user_id, timer.workspace_id),
                )
                existing = await cursor.fetchone()
                if existing is None:
                    # Constraint hit for another reason (duplicate id)
                    raise
                return StoreResult(StoreStatus.ALREADY_EXISTS, existing_id=existing["id"])
        return StoreResult(StoreStatus.CREATED, timer=timer)

    async def update(self, timer_id: str, db: Optional[aiosqlite.Connection] = None,
                     **changes) -> StoreResult:
        unknown = set(changes) - MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update columns: {', '.join(sorted(unknown))}")
        if not changes:
            raise ValueError("No changes given")

        assignments = ", ".join(f"{col} = ?" for col in changes)
        params = tuple(_db_value(v) for v in changes.values()) + (timer_id,)
        async with self._conn(db) as conn:
            cursor = await conn.execute(
                f"UPDATE active_timers SET {assignments} WHERE id = ?", params
            )
            if cursor.rowcount == 0:
                return StoreResult(StoreStatus.NOT_FOUND)
            cursor = await conn.execute("SELECT * FROM active_timers WHERE id = ?", (timer_id,))
            row = await cursor.fetchone()
        return StoreResult(StoreStatus.UPDATED, timer=ActiveTimer.from_row(row))

    async def delete(self, timer_id: str,
                     db: Optional[aiosqlite.Connection] = None) -> StoreResult:
        async with self._conn(db) as conn:
            cursor = await conn.execute("DELETE FROM active_timers WHERE id = ?", (timer_id,))
            deleted = cursor.rowcount
        if deleted == 0:
            return StoreResult(StoreStatus.NOT_FOUND)
        return StoreResult(StoreStatus.DELETED)

    async def count(self, user_id: str, workspace_id: str,
                    db: Optional[aiosqlite.Connection] = None) -> int:
        async with self._conn(db) as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM active_timers WHERE user_id = ? AND workspace_id = ?",
                (user_id, workspace_id),
            )
            row = await cursor.fetchone()
        return row[0]
