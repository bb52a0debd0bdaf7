"""
Worktimer API: FastAPI server for the timer lifecycle engine.

Caller identity arrives in the X-User-Id header and the target workspace in
X-Workspace-Id; authenticating those headers is the job of whatever sits in
front of this server.
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .collaborators import SqliteTaskRepository, SqliteWorkspaceMembership
from .config import Settings
from .db import Database
from .engine import TimerLifecycleEngine
from .errors import ErrorCode, TimerError, TimerResult, TransientStorageError
from .log import configure_logging, logger, recent_logs

STATUS_CODES = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_RUNNING: 409,
    ErrorCode.ALREADY_PAUSED: 400,
    ErrorCode.NOT_PAUSED: 400,
    ErrorCode.VALIDATION: 400,
    ErrorCode.FORBIDDEN: 403,
}


# Pydantic Models
class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StartTimerRequest(CamelModel):
    task_id: Optional[str] = Field(None, alias="taskId")
    category_id: Optional[str] = Field(None, alias="categoryId")
    description: Optional[str] = None
    is_break: bool = Field(False, alias="isBreak")


class PauseTimerRequest(CamelModel):
    reason: Optional[str] = None


class StopTimerRequest(CamelModel):
    description: Optional[str] = None


class DescribeTimerRequest(CamelModel):
    description: Optional[str] = None


class CategoryCreateRequest(CamelModel):
    name: str
    color: str = "#64748b"
    is_billable: bool = Field(False, alias="isBillable")
    description: Optional[str] = None


class LogEntry(BaseModel):
    """Single log entry."""
    timestamp: str
    level: str
    message: str


class LogsResponse(BaseModel):
    """Response for recent logs."""
    logs: List[LogEntry]
    count: int


class Identity(BaseModel):
    user_id: str
    workspace_id: str


def error_response(error: TimerError) -> HTTPException:
    detail = {"error": error.message, "code": error.code.value}
    if error.active_timer_id:
        detail["activeTimerId"] = error.active_timer_id
    return HTTPException(status_code=STATUS_CODES[error.code], detail=detail)


def unwrap(result: TimerResult):
    if not result.ok:
        raise error_response(result.error)
    return result.value


def create_app(settings: Optional[Settings] = None,
               engine: Optional[TimerLifecycleEngine] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    if engine is None:
        database = Database(settings.db_path, busy_timeout_ms=settings.busy_timeout_ms)
        engine = TimerLifecycleEngine(
            database,
            membership=SqliteWorkspaceMembership(database),
            tasks=SqliteTaskRepository(database),
            lock_timeout=settings.lock_timeout,
        )
    membership = engine.membership or SqliteWorkspaceMembership(engine.database)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        await engine.database.init()
        logger.info(f"Worktimer API ready (db={engine.database.path})")
        yield
        logger.info("Worktimer API stopping")

    app = FastAPI(
        title="Worktimer API",
        description="Timer lifecycle engine: active timers, pauses and time entries",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TransientStorageError)
    async def transient_error_handler(request: Request, exc: TransientStorageError):
        logger.warning(f"Transient storage error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"detail": {"error": str(exc), "code": "transient"}},
            headers={"Retry-After": str(max(1, round(exc.retry_after)))},
        )

    async def identity(
        x_user_id: str = Header(...),
        x_workspace_id: str = Header(...),
    ) -> Identity:
        if not await membership.is_member(x_user_id, x_workspace_id):
            raise error_response(TimerError.of(ErrorCode.FORBIDDEN))
        return Identity(user_id=x_user_id, workspace_id=x_workspace_id)

    # ============ Timer Control ============

    @app.get("/api/time-tracker/status")
    async def timer_status(who: Identity = Depends(identity)):
        """Current timer with live elapsed/paused seconds. Safe to poll."""
        status = await engine.status(who.user_id, who.workspace_id)
        return status.to_export_dict()

    @app.post("/api/time-tracker/start", status_code=201)
    async def start_timer(request: StartTimerRequest, who: Identity = Depends(identity)):
        result = await engine.start(
            who.user_id,
            who.workspace_id,
            task_id=request.task_id,
            category_id=request.category_id,
            description=request.description,
            is_break=request.is_break,
        )
        timer = unwrap(result)
        return {"message": "Timer started successfully", "timer": timer.to_export_dict()}

    @app.post("/api/time-tracker/pause")
    async def pause_timer(request: Optional[PauseTimerRequest] = None, who: Identity = Depends(identity)):
        reason = request.reason if request else None
        info = unwrap(await engine.pause(who.user_id, who.workspace_id, reason=reason))
        return {"message": "Timer paused successfully", **info.to_export_dict()}

    @app.post("/api/time-tracker/resume")
    async def resume_timer(who: Identity = Depends(identity)):
        info = unwrap(await engine.resume(who.user_id, who.workspace_id))
        return {"message": "Timer resumed successfully", **info.to_export_dict()}

    @app.post("/api/time-tracker/stop")
    async def stop_timer(request: Optional[StopTimerRequest] = None, who: Identity = Depends(identity)):
        description = request.description if request else None
        session = unwrap(await engine.stop(who.user_id, who.workspace_id, description=description))
        return {"message": "Timer stopped and time entry created", "timeEntry": session.to_export_dict()}

    @app.patch("/api/time-tracker/description")
    async def describe_timer(request: DescribeTimerRequest, who: Identity = Depends(identity)):
        timer = unwrap(await engine.describe(who.user_id, who.workspace_id, request.description))
        return {"message": "Timer updated", "timer": timer.to_export_dict()}

    @app.delete("/api/time-tracker")
    async def cancel_timer(who: Identity = Depends(identity)):
        info = unwrap(await engine.cancel(who.user_id, who.workspace_id))
        return {"message": "Timer cancelled successfully", "cancelledTimer": info.to_export_dict()}

    # ============ Categories ============

    @app.get("/api/time-tracker/categories")
    async def list_categories(who: Identity = Depends(identity)):
        categories = await engine.categories.list_categories(who.workspace_id)
        return {"categories": [c.to_export_dict() for c in categories]}

    @app.post("/api/time-tracker/categories", status_code=201)
    async def create_category(request: CategoryCreateRequest, who: Identity = Depends(identity)):
        category = unwrap(await engine.categories.create(
            who.workspace_id,
            request.name,
            color=request.color,
            is_billable=request.is_billable,
            description=request.description,
        ))
        return {"message": "Time category created successfully", "category": category.to_export_dict()}

    # ============ History ============

    @app.get("/api/time-tracker/activities")
    async def timer_activities(
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: int = 100,
        who: Identity = Depends(identity),
    ):
        """Timer lifecycle events performed by the caller."""
        events = await engine.audit.get_activities(
            entity_type="timer",
            performed_by=who.user_id,
            workspace_id=who.workspace_id,
            start_date=start_date,
            end_date=end_date,
            limit=min(max(limit, 1), 500),
        )
        return {"activities": [e.to_export_dict() for e in events], "count": len(events)}

    @app.get("/api/time-entries")
    async def list_time_entries(
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        task_id: Optional[str] = None,
        category_id: Optional[str] = None,
        is_break: Optional[bool] = None,
        limit: int = 50,
        offset: int = 0,
        who: Identity = Depends(identity),
    ):
        entries = await engine.entries.list_entries(
            who.user_id,
            who.workspace_id,
            start_date=start_date,
            end_date=end_date,
            task_id=task_id,
            category_id=category_id,
            is_break=is_break,
            limit=min(max(limit, 1), 500),
            offset=max(offset, 0),
        )
        return [e.to_export_dict() for e in entries]

    @app.get("/api/time-entries/stats")
    async def time_entry_stats(
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        who: Identity = Depends(identity),
    ):
        stats = await engine.entries.stats(who.user_id, who.workspace_id, start_date, end_date)
        return stats.to_export_dict()

    @app.get("/api/time-entries/{entry_id}")
    async def get_time_entry(entry_id: str, who: Identity = Depends(identity)):
        entry = await engine.entries.get(entry_id, who.user_id, who.workspace_id)
        if entry is None:
            raise HTTPException(status_code=404, detail={"error": "Time entry not found", "code": "not_found"})
        return entry.to_export_dict()

    # ============ Service ============

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now().isoformat()}

    @app.get("/api/logs/recent", response_model=LogsResponse)
    async def get_recent_logs(limit: int = 50):
        """Recent server logs from the circular buffer (max 100)."""
        logs = recent_logs(limit)
        return {"logs": logs, "count": len(logs)}

    return app
