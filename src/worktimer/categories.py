"""Billing categories for time entries.

resolve() is a find-or-create keyed on UNIQUE(workspace_id, name): the
INSERT OR IGNORE makes concurrent first use converge on a single row.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import aiosqlite

from .clock import SystemClock, to_iso
from .db import Database
from .errors import ErrorCode, TimerResult
from .log import logger
from .models import CategoryKind, TimeCategory

DEFAULT_CATEGORY_COLOR = "#64748b"


@dataclass(frozen=True)
class CategoryTemplate:
    name: str
    description: str
    color: str
    is_billable: bool


# Well-known categories created on first use per workspace
DEFAULT_CATEGORIES: dict[CategoryKind, CategoryTemplate] = {
    CategoryKind.BREAK: CategoryTemplate("Break", "Break and rest time", "#ef4444", False),
    CategoryKind.TASK: CategoryTemplate("Development", "Software development and coding", "#3b82f6", True),
    CategoryKind.GENERAL: CategoryTemplate("Administrative", "General and administrative work", "#10b981", True),
}


def kind_for(is_break: bool, task_id: str | None) -> CategoryKind:
    if is_break:
        return CategoryKind.BREAK
    if task_id:
        return CategoryKind.TASK
    return CategoryKind.GENERAL


class CategoryResolver:
    def __init__(self, database: Database, clock=None):
        self.database = database
        self.clock = clock or SystemClock()

    @asynccontextmanager
    async def _conn(self, db: Optional[aiosqlite.Connection]) -> AsyncIterator[aiosqlite.Connection]:
        if db is not None:
            yield db
        else:
            async with self.database.connect() as own:
                yield own

    async def resolve(self, workspace_id: str, kind: CategoryKind,
                      db: Optional[aiosqlite.Connection] = None) -> str:
        """Return the id of the workspace's category for kind, creating it if absent."""
        template = DEFAULT_CATEGORIES[kind]
        async with self._conn(db) as conn:
            cursor = await conn.execute(
                """INSERT OR IGNORE INTO time_categories
                   (id, workspace_id, name, description, color, is_billable, is_default, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, 1, ?)""",
                (
                    str(uuid.uuid4()), workspace_id, template.name, template.description,
                    template.color, 1 if template.is_billable else 0, to_iso(self.clock.now()),
                ),
            )
            if cursor.rowcount:
                logger.info(f"Created default category '{template.name}' in workspace {workspace_id}")
            cursor = await conn.execute(
                "SELECT id FROM time_categories WHERE workspace_id = ? AND name = ?",
                (workspace_id, template.name),
            )
            row = await cursor.fetchone()
        return row["id"]

    async def exists(self, workspace_id: str, category_id: str,
                     db: Optional[aiosqlite.Connection] = None) -> bool:
        async with self._conn(db) as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM time_categories WHERE id = ? AND workspace_id = ?",
                (category_id, workspace_id),
            )
            return await cursor.fetchone() is not None

    async def list_categories(self, workspace_id: str) -> list[TimeCategory]:
        async with self.database.connect() as db:
            cursor = await db.execute(
                "SELECT * FROM time_categories WHERE workspace_id = ? ORDER BY name ASC",
                (workspace_id,),
            )
            rows = await cursor.fetchall()
        return [TimeCategory.from_row(row) for row in rows]

    async def create(self, workspace_id: str, name: str, color: str = DEFAULT_CATEGORY_COLOR,
                     is_billable: bool = False, description: str | None = None) -> TimerResult[TimeCategory]:
        name = (name or "").strip()
        if not name:
            return TimerResult.failure(ErrorCode.VALIDATION, "Category name is required")

        category = TimeCategory(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            name=name,
            description=description,
            color=color,
            is_billable=is_billable,
        )
        async with self.database.connect() as db:
            try:
                await db.execute(
                    """INSERT INTO time_categories
                       (id, workspace_id, name, description, color, is_billable, is_default, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, 0, ?)""",
                    (category.id, workspace_id, name, description, color,
                     1 if is_billable else 0, to_iso(self.clock.now())),
                )
            except aiosqlite.IntegrityError:
                return TimerResult.failure(ErrorCode.VALIDATION, "Category with this name already exists")
        logger.info(f"Created category '{name}' in workspace {workspace_id}")
        return TimerResult.success(category)
