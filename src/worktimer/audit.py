"""Append-only activity log of lifecycle transitions.

Engine transitions write their event with append() inside the same
transaction as the state change. log() is the standalone, best-effort path:
a failed write is reported and never propagated to the caller.
"""

from __future__ import annotations

import json
from datetime import date
from typing import Optional

import aiosqlite

from .clock import SystemClock, to_iso
from .db import Database
from .log import logger
from .models import LifecycleEvent, TimerAction


class ActivityAuditLog:
    def __init__(self, database: Database, clock=None):
        self.database = database
        self.clock = clock or SystemClock()

    async def append(self, event: LifecycleEvent, db: aiosqlite.Connection) -> str:
        """Insert event using the caller's connection (and transaction)."""
        created_at = event.created_at or self.clock.now()
        action = event.action.value if isinstance(event.action, TimerAction) else event.action
        await db.execute(
            """INSERT INTO activity_log (id, entity_type, entity_id, action, performed_by, details, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                event.id,
                event.entity_type,
                event.entity_id,
                action,
                event.performed_by,
                json.dumps(event.details or {}),
                to_iso(created_at),
            ),
        )
        return event.id

    async def log(self, entity_type: str, entity_id: str, action: TimerAction | str,
                  performed_by: str | None = None, details: dict | None = None) -> Optional[str]:
        """Best-effort append on its own connection. Returns None on failure."""
        event = LifecycleEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            performed_by=performed_by,
            details=details or {},
        )
        try:
            async with self.database.connect() as db:
                return await self.append(event, db)
        except Exception:
            logger.exception(f"Failed to write activity log for {entity_type} {entity_id} ({action})")
            return None

    async def get_activities(
        self,
        entity_type: str | None = None,
        entity_id: str | None = None,
        performed_by: str | None = None,
        workspace_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[LifecycleEvent]:
        """Newest first."""
        conditions = []
        params: list = []
        if entity_type:
            conditions.append("entity_type = ?")
            params.append(entity_type)
        if entity_id:
            conditions.append("entity_id = ?")
            params.append(entity_id)
        if performed_by:
            conditions.append("performed_by = ?")
            params.append(performed_by)
        if workspace_id:
            conditions.append("json_extract(details, '$.workspaceId') = ?")
            params.append(workspace_id)
        if start_date:
            conditions.append("date(created_at) >= date(?)")
            params.append(start_date.isoformat())
        if end_date:
            conditions.append("date(created_at) <= date(?)")
            params.append(end_date.isoformat())

        sql = "SELECT * FROM activity_log"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        # rowid breaks ties between events written in the same instant
        sql += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        async with self.database.connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [LifecycleEvent.from_row(row) for row in rows]

    async def entity_history(self, entity_type: str, entity_id: str) -> list[LifecycleEvent]:
        """All events for one entity, oldest first."""
        async with self.database.connect() as db:
            cursor = await db.execute(
                """SELECT * FROM activity_log
                   WHERE entity_type = ? AND entity_id = ?
                   ORDER BY created_at ASC, rowid ASC""",
                (entity_type, entity_id),
            )
            rows = await cursor.fetchall()
        return [LifecycleEvent.from_row(row) for row in rows]
