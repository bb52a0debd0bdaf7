"""Logging setup: package logger plus an in-memory buffer of recent lines."""

import logging
import sys
from collections import deque
from datetime import datetime
from typing import Deque

logger = logging.getLogger("worktimer")

# Circular buffer of recent log entries, served by /api/logs/recent
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Logging handler that captures records into log_buffer."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


buffer_handler = LogBufferHandler()
buffer_handler.setLevel(logging.DEBUG)
buffer_handler.setFormatter(logging.Formatter("%(message)s"))
logger.addHandler(buffer_handler)


def configure_logging(level: str = "INFO") -> None:
    """Attach a stderr handler and share the buffer with uvicorn/fastapi."""
    logger.setLevel(level)
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(stream)

    for name in ("uvicorn", "fastapi"):
        other = logging.getLogger(name)
        if buffer_handler not in other.handlers:
            other.addHandler(buffer_handler)


def recent_logs(limit: int = 50) -> list[dict]:
    limit = max(0, min(limit, log_buffer.maxlen or 100))
    if limit == 0:
        return []
    return list(log_buffer)[-limit:]
