"""Lookups the engine consumes from workspace and task management.

Those systems own their data; this module only reads the workspace_members
and tasks reference tables. Any object with the same methods can be passed
to the engine instead.
"""

from __future__ import annotations

from typing import Protocol

from .db import Database


class WorkspaceMembership(Protocol):
    async def is_member(self, user_id: str, workspace_id: str) -> bool: ...


class TaskRepository(Protocol):
    async def exists(self, task_id: str, workspace_id: str) -> bool: ...


class SqliteWorkspaceMembership:
    def __init__(self, database: Database):
        self.database = database

    async def is_member(self, user_id: str, workspace_id: str) -> bool:
        async with self.database.connect() as db:
            cursor = await db.execute(
                "SELECT 1 FROM workspace_members WHERE user_id = ? AND workspace_id = ?",
                (user_id, workspace_id),
            )
            return await cursor.fetchone() is not None

    async def add_member(self, user_id: str, workspace_id: str, role: str = "member") -> None:
        """Seed a membership row (CLI bootstrap and tests)."""
        async with self.database.connect() as db:
            await db.execute(
                "INSERT OR IGNORE INTO workspace_members (workspace_id, user_id, role) VALUES (?, ?, ?)",
                (workspace_id, user_id, role),
            )


class SqliteTaskRepository:
    def __init__(self, database: Database):
        self.database = database

    async def exists(self, task_id: str, workspace_id: str) -> bool:
        async with self.database.connect() as db:
            cursor = await db.execute(
                "SELECT 1 FROM tasks WHERE id = ? AND workspace_id = ?",
                (task_id, workspace_id),
            )
            return await cursor.fetchone() is not None

    async def add_task(self, task_id: str, workspace_id: str, title: str | None = None) -> None:
        async with self.database.connect() as db:
            await db.execute(
                "INSERT OR IGNORE INTO tasks (id, workspace_id, title) VALUES (?, ?, ?)",
                (task_id, workspace_id, title),
            )
