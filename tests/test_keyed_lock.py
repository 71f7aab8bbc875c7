import asyncio

import pytest

from app.utils.keyed_lock import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLock()
    events = []

    async def worker(name):
        async with locks.hold("debt-1"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    locks = KeyedLock()
    inside = asyncio.Event()

    async def first():
        async with locks.hold("debt-1"):
            await asyncio.wait_for(inside.wait(), timeout=1)

    async def second():
        async with locks.hold("debt-2"):
            assert locks.is_locked("debt-1")
            inside.set()

    await asyncio.gather(first(), second())


@pytest.mark.asyncio
async def test_unused_locks_are_dropped():
    locks = KeyedLock()

    async with locks.hold("debt-1"):
        assert len(locks) == 1
        assert locks.is_locked("debt-1")

    assert len(locks) == 0
    assert not locks.is_locked("debt-1")


@pytest.mark.asyncio
async def test_lock_released_when_body_raises():
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("debt-1"):
            raise RuntimeError("boom")

    assert len(locks) == 0
