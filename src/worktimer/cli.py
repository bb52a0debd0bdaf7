"""
Worktimer CLI

Drive the timer engine from a terminal against the local database.

Usage:
    worktimer init-db                     # Create tables, add --user to --workspace
    worktimer start -d "Fix login bug"    # Start a timer
    worktimer pause -r "Lunch"            # Pause it
    worktimer resume
    worktimer stop                        # Write a time entry
    worktimer status
    worktimer entries --since 2026-01-01
    worktimer serve                       # Run the HTTP API
"""

import asyncio
import getpass
from dataclasses import replace
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .collaborators import SqliteTaskRepository, SqliteWorkspaceMembership
from .config import Settings
from .db import Database
from .duration import format_duration
from .engine import TimerLifecycleEngine
from .errors import TimerResult, TransientStorageError
from .log import configure_logging

console = Console()


def _engine(ctx) -> TimerLifecycleEngine:
    settings = ctx.obj["settings"]
    database = Database(settings.db_path, busy_timeout_ms=settings.busy_timeout_ms)
    return TimerLifecycleEngine(
        database,
        tasks=SqliteTaskRepository(database),
        lock_timeout=settings.lock_timeout,
    )


def _run(coro):
    try:
        return asyncio.run(coro)
    except TransientStorageError as e:
        raise click.ClickException(f"{e} (retry in {e.retry_after:.0f}s)")


def _unwrap(result: TimerResult):
    if not result.ok:
        raise click.ClickException(result.error.message)
    return result.value


def _clock(dt) -> str:
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


@click.group()
@click.option("--user", envvar="WORKTIMER_USER", default=lambda: getpass.getuser(),
              show_default="current login", help="User id to act as")
@click.option("--workspace", envvar="WORKTIMER_WORKSPACE", default="default",
              show_default=True, help="Workspace id")
@click.option("--db", "db_path", type=click.Path(dir_okay=False, path_type=Path),
              help="SQLite database file (overrides WORKTIMER_DB)")
@click.pass_context
def cli(ctx, user, workspace, db_path):
    """Worktimer - track time against tasks from the command line."""
    # Terminal output stays quiet unless WORKTIMER_LOG_LEVEL asks otherwise
    settings = Settings.from_env(default_log_level="WARNING")
    if db_path:
        settings = replace(settings, db_path=db_path)
    try:
        settings.validate()
    except ValueError as e:
        raise click.ClickException(str(e))
    configure_logging(settings.log_level)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    ctx.obj["user"] = user
    ctx.obj["workspace"] = workspace


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create the database and register --user as a member of --workspace."""
    settings = ctx.obj["settings"]
    database = Database(settings.db_path, busy_timeout_ms=settings.busy_timeout_ms)

    async def _init():
        await database.init()
        await SqliteWorkspaceMembership(database).add_member(ctx.obj["user"], ctx.obj["workspace"], role="owner")

    _run(_init())
    console.print(f"[green]Database ready:[/green] {settings.db_path}")
    console.print(f"  {ctx.obj['user']} is a member of workspace '{ctx.obj['workspace']}'")


@cli.command()
@click.option("--task", "task_id", help="Task id to track against")
@click.option("--category", "category_id", help="Time category id")
@click.option("-d", "--description", help="What you are working on")
@click.option("--break", "is_break", is_flag=True, help="Track a break")
@click.pass_context
def start(ctx, task_id, category_id, description, is_break):
    """Start a timer."""
    engine = _engine(ctx)
    timer = _unwrap(_run(engine.start(
        ctx.obj["user"], ctx.obj["workspace"],
        task_id=task_id,
        category_id=category_id,
        description=description,
        is_break=is_break,
    )))
    label = "Break" if timer.is_break else "Timer"
    console.print(f"[green]{label} started[/green] at {_clock(timer.start_time)} ({timer.id[:8]})")


@cli.command()
@click.option("-r", "--reason", help="Why you are pausing")
@click.pass_context
def pause(ctx, reason):
    """Pause the running timer."""
    info = _unwrap(_run(_engine(ctx).pause(ctx.obj["user"], ctx.obj["workspace"], reason=reason)))
    console.print(f"[yellow]Paused[/yellow] at {_clock(info.paused_at)}: {info.reason}")


@cli.command()
@click.pass_context
def resume(ctx):
    """Resume a paused timer."""
    info = _unwrap(_run(_engine(ctx).resume(ctx.obj["user"], ctx.obj["workspace"])))
    console.print(f"[green]Resumed[/green] after {format_duration(info.paused_duration)} "
                  f"(total paused {format_duration(info.total_paused_duration)})")


@cli.command()
@click.option("-d", "--description", help="Description for the time entry")
@click.pass_context
def stop(ctx, description):
    """Stop the timer and record a time entry."""
    session = _unwrap(_run(_engine(ctx).stop(ctx.obj["user"], ctx.obj["workspace"], description=description)))
    console.print(f"[green]Stopped.[/green] Logged {format_duration(session.active_duration)} "
                  f"({session.active_duration}s) as entry {session.entry.id[:8]}")
    if session.paused_duration:
        console.print(f"  paused {format_duration(session.paused_duration)} "
                      f"of {format_duration(session.total_duration)}")


@cli.command()
@click.confirmation_option(prompt="Discard the active timer without logging time?")
@click.pass_context
def cancel(ctx):
    """Discard the active timer."""
    info = _unwrap(_run(_engine(ctx).cancel(ctx.obj["user"], ctx.obj["workspace"])))
    console.print(f"[red]Cancelled[/red] timer {info.cancelled_id[:8]} started {_clock(info.start_time)}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show the active timer."""
    current = _run(_engine(ctx).status(ctx.obj["user"], ctx.obj["workspace"]))
    if not current.has_active_timer:
        console.print("[dim]No active timer[/dim]")
        return

    timer = current.timer
    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("State", "[yellow]PAUSED[/yellow]" if timer.is_paused else "[green]RUNNING[/green]")
    table.add_row("Started", _clock(timer.start_time))
    table.add_row("Active", f"{format_duration(timer.elapsed_seconds)} ({timer.elapsed_seconds}s)")
    table.add_row("Paused", format_duration(timer.total_paused_duration))
    if timer.is_paused:
        table.add_row("Reason", timer.pause_reason or "")
    if timer.task_id:
        table.add_row("Task", timer.task_id)
    if timer.description:
        table.add_row("Description", timer.description)
    if timer.is_break:
        table.add_row("Break", "yes")
    console.print(table)


@cli.command()
@click.option("--since", type=click.DateTime(formats=["%Y-%m-%d"]), help="Start date (inclusive)")
@click.option("--until", type=click.DateTime(formats=["%Y-%m-%d"]), help="End date (inclusive)")
@click.option("--task", "task_id", help="Only entries for this task")
@click.option("-n", "--limit", default=20, show_default=True)
@click.pass_context
def entries(ctx, since, until, task_id, limit):
    """List recorded time entries, newest first."""
    engine = _engine(ctx)
    rows = _run(engine.entries.list_entries(
        ctx.obj["user"], ctx.obj["workspace"],
        start_date=since.date() if since else None,
        end_date=until.date() if until else None,
        task_id=task_id,
        limit=limit,
    ))
    if not rows:
        console.print("[dim]No time entries[/dim]")
        return

    table = Table(title=f"Time entries ({ctx.obj['workspace']})")
    table.add_column("Start", style="cyan", no_wrap=True)
    table.add_column("End", no_wrap=True)
    table.add_column("Duration", justify="right")
    table.add_column("Paused", justify="right", style="dim")
    table.add_column("Task")
    table.add_column("Description")
    total = 0
    for entry in rows:
        total += entry.duration_seconds
        table.add_row(
            _clock(entry.start_time),
            _clock(entry.end_time),
            format_duration(entry.duration_seconds),
            format_duration(entry.paused_seconds),
            entry.task_id or ("break" if entry.is_break else "-"),
            entry.description or "",
        )
    console.print(table)
    console.print(f"Total: [bold]{format_duration(total)}[/bold] across {len(rows)} entries")


@cli.command()
@click.option("--host", help="Bind address (default WORKTIMER_HOST)")
@click.option("--port", type=int, help="Port (default WORKTIMER_PORT)")
@click.pass_context
def serve(ctx, host, port):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from .api import create_app

    settings = ctx.obj["settings"]
    settings = replace(settings, host=host or settings.host, port=port or settings.port)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port,
                log_level=settings.log_level.lower())


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
