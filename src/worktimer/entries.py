"""Append-only repository of completed time entries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

import aiosqlite

from .db import Database
from .models import TimeEntry


@dataclass(frozen=True)
class CategoryTotal:
    category_id: str
    name: str | None
    color: str | None
    total_seconds: int
    entry_count: int

    def to_export_dict(self) -> dict:
        return {
            "categoryId": self.category_id,
            "categoryName": self.name,
            "categoryColor": self.color,
            "totalSeconds": self.total_seconds,
            "entryCount": self.entry_count,
        }


@dataclass(frozen=True)
class EntryStats:
    total_seconds: int = 0
    work_seconds: int = 0
    break_seconds: int = 0
    entry_count: int = 0
    by_category: list[CategoryTotal] = field(default_factory=list)

    def to_export_dict(self) -> dict:
        return {
            "totalSeconds": self.total_seconds,
            "workSeconds": self.work_seconds,
            "breakSeconds": self.break_seconds,
            "entryCount": self.entry_count,
            "byCategory": [c.to_export_dict() for c in self.by_category],
        }


def _filters(user_id: str, workspace_id: str, start_date: date | None, end_date: date | None,
             prefix: str = "") -> tuple[str, list]:
    conditions = [f"{prefix}user_id = ?", f"{prefix}workspace_id = ?"]
    params: list = [user_id, workspace_id]
    if start_date:
        conditions.append(f"date({prefix}start_time) >= date(?)")
        params.append(start_date.isoformat())
    if end_date:
        conditions.append(f"date({prefix}start_time) <= date(?)")
        params.append(end_date.isoformat())
    return " AND ".join(conditions), params


class TimeEntryRepository:
    def __init__(self, database: Database):
        self.database = database

    async def insert(self, entry: TimeEntry, db: aiosqlite.Connection) -> None:
        """Insert within the caller's transaction. Entries are never updated."""
        row = entry.to_row()
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        await db.execute(
            f"INSERT INTO time_entries ({columns}) VALUES ({placeholders})",
            tuple(row.values()),
        )

    async def get(self, entry_id: str, user_id: str, workspace_id: str) -> Optional[TimeEntry]:
        async with self.database.connect() as db:
            cursor = await db.execute(
                "SELECT * FROM time_entries WHERE id = ? AND user_id = ? AND workspace_id = ?",
                (entry_id, user_id, workspace_id),
            )
            row = await cursor.fetchone()
        return TimeEntry.from_row(row) if row else None

    async def list_entries(
        self,
        user_id: str,
        workspace_id: str,
        start_date: date | None = None,
        end_date: date | None = None,
        task_id: str | None = None,
        category_id: str | None = None,
        is_break: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[TimeEntry]:
        """Newest first."""
        where, params = _filters(user_id, workspace_id, start_date, end_date)
        if task_id:
            where += " AND task_id = ?"
            params.append(task_id)
        if category_id:
            where += " AND category_id = ?"
            params.append(category_id)
        if is_break is not None:
            where += " AND is_break = ?"
            params.append(1 if is_break else 0)
        params.extend([limit, offset])

        async with self.database.connect() as db:
            cursor = await db.execute(
                f"SELECT * FROM time_entries WHERE {where} ORDER BY start_time DESC LIMIT ? OFFSET ?",
                params,
            )
            rows = await cursor.fetchall()
        return [TimeEntry.from_row(row) for row in rows]

    async def stats(self, user_id: str, workspace_id: str,
                    start_date: date | None = None, end_date: date | None = None) -> EntryStats:
        where, params = _filters(user_id, workspace_id, start_date, end_date)
        async with self.database.connect() as db:
            cursor = await db.execute(
                f"""SELECT
                        COALESCE(SUM(duration_seconds), 0) AS total,
                        COALESCE(SUM(CASE WHEN is_break = 0 THEN duration_seconds ELSE 0 END), 0) AS work,
                        COALESCE(SUM(CASE WHEN is_break = 1 THEN duration_seconds ELSE 0 END), 0) AS brk,
                        COUNT(*) AS n
                    FROM time_entries WHERE {where}""",
                params,
            )
            totals = await cursor.fetchone()

            where_te, params_te = _filters(user_id, workspace_id, start_date, end_date, prefix="te.")
            cursor = await db.execute(
                f"""SELECT te.category_id, tc.name, tc.color,
                           SUM(te.duration_seconds) AS total, COUNT(*) AS n
                    FROM time_entries te
                    LEFT JOIN time_categories tc ON te.category_id = tc.id
                    WHERE {where_te}
                    GROUP BY te.category_id
                    ORDER BY total DESC""",
                params_te,
            )
            rows = await cursor.fetchall()

        return EntryStats(
            total_seconds=totals["total"],
            work_seconds=totals["work"],
            break_seconds=totals["brk"],
            entry_count=totals["n"],
            by_category=[
                CategoryTotal(
                    category_id=row["category_id"],
                    name=row["name"],
                    color=row["color"],
                    total_seconds=row["total"],
                    entry_count=row["n"],
                )
                for row in rows
            ],
        )
