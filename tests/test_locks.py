"""Tests for KeyedLock: per-key exclusion, timeouts, cleanup."""

import asyncio

import pytest

from conftest import run
from worktimer.errors import TransientStorageError
from worktimer.locks import KeyedLock


class TestKeyedLock:
    def test_same_key_serialized(self):
        locks = KeyedLock(timeout=1.0)
        order = []

        async def worker(name):
            async with locks.hold(("alice", "ws1")):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        async def _go():
            await asyncio.gather(worker("a"), worker("b"))

        run(_go())
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    def test_different_keys_run_in_parallel(self):
        locks = KeyedLock(timeout=1.0)
        inside = []

        async def worker(key):
            async with locks.hold(key):
                inside.append(key)
                await asyncio.sleep(0.02)
                return len(inside)

        async def _go():
            return await asyncio.gather(worker(("alice", "ws1")), worker(("bob", "ws1")))

        # Both were inside before either finished
        assert run(_go()) == [2, 2]

    def test_timeout_raises_transient(self):
        locks = KeyedLock(timeout=0.05)

        async def _go():
            async with locks.hold("k"):
                with pytest.raises(TransientStorageError) as exc_info:
                    async with locks.hold("k"):
                        pass
                return exc_info.value

        err = run(_go())
        assert err.retry_after == 0.05

    def test_idle_locks_discarded(self):
        locks = KeyedLock(timeout=1.0)

        async def _go():
            async with locks.hold("k"):
                assert locks.locked("k")
                assert len(locks) == 1

        run(_go())
        assert len(locks) == 0
        assert not locks.locked("k")

    def test_lock_released_on_error(self):
        locks = KeyedLock(timeout=0.1)

        async def _go():
            with pytest.raises(RuntimeError):
                async with locks.hold("k"):
                    raise RuntimeError("boom")
            async with locks.hold("k"):
                return True

        assert run(_go())
        assert len(locks) == 0
