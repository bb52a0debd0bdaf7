"""Per-key mutual exclusion for timer transitions."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable

from .errors import TransientStorageError
from .log import logger


class KeyedLock:
    """One asyncio.Lock per key, created on demand.

    Locks for keys nobody holds or waits on are dropped, so the table only
    grows with concurrent activity.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._refs: dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Acquire the lock for key, waiting at most self.timeout seconds."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Lock timeout after {self.timeout}s for {key}")
                raise TransientStorageError(
                    f"Timed out waiting for timer lock after {self.timeout}s",
                    retry_after=self.timeout,
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]
