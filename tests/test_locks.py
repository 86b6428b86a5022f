"""Tests for per-key asyncio locks."""

import asyncio

import pytest

from evtally.engine.locks import KeyedLocks


@pytest.mark.unit
class TestKeyedLocks:
    async def test_locks_dropped_after_release(self):
        locks = KeyedLocks()

        async with locks.hold("user:U1", "point:P1"):
            assert len(locks) == 2

        assert len(locks) == 0

    async def test_lock_kept_while_someone_waits(self):
        locks = KeyedLocks()
        order = []

        async def second():
            async with locks.hold("session:S1"):
                order.append("second")

        async with locks.hold("session:S1"):
            waiter = asyncio.create_task(second())
            await asyncio.sleep(0)
            assert len(locks) == 1
            order.append("first")

        await waiter
        assert order == ["first", "second"]
        assert len(locks) == 0

    async def test_overlapping_key_sets_do_not_deadlock(self):
        locks = KeyedLocks()
        done = []

        async def worker(name, *keys):
            async with locks.hold(*keys):
                await asyncio.sleep(0)
                done.append(name)

        await asyncio.wait_for(
            asyncio.gather(
                worker("a", "user:U1", "point:P1"),
                worker("b", "point:P1", "user:U1"),
            ),
            timeout=1,
        )

        assert sorted(done) == ["a", "b"]
        assert len(locks) == 0

    async def test_released_on_error(self):
        locks = KeyedLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("session:S1"):
                raise RuntimeError("boom")

        assert len(locks) == 0
