"""Configuration for the timer service.

Values come from environment variables, optionally seeded from a .env file
in the working directory.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_DB_PATH = Path.home() / ".worktimer" / "worktimer.db"
DEFAULT_PORT = 7780


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass
class Settings:
    """Runtime settings for the engine, API server and CLI."""

    db_path: Path = DEFAULT_DB_PATH
    lock_timeout: float = 5.0        # seconds to wait for a per-key lock
    busy_timeout_ms: int = 5000      # SQLite PRAGMA busy_timeout
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None, default_log_level: str = "INFO") -> "Settings":
        load_dotenv(env_file or Path.cwd() / ".env")
        db = os.environ.get("WORKTIMER_DB")
        return cls(
            db_path=Path(db).expanduser() if db else DEFAULT_DB_PATH,
            lock_timeout=_env_float("WORKTIMER_LOCK_TIMEOUT", 5.0),
            busy_timeout_ms=int(_env_float("WORKTIMER_BUSY_TIMEOUT_MS", 5000)),
            log_level=os.environ.get("WORKTIMER_LOG_LEVEL", default_log_level).upper(),
            host=os.environ.get("WORKTIMER_HOST", "127.0.0.1"),
            port=int(_env_float("WORKTIMER_PORT", DEFAULT_PORT)),
        )

    def validate(self) -> None:
        if self.lock_timeout <= 0:
            raise ValueError("lock_timeout must be positive")
        if self.busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must not be negative")
