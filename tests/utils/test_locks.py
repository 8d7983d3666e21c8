"""Keyed lock tests."""

import asyncio

import pytest

from clarity.utils.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    """Test that holders of the same key run one at a time."""
    locks = KeyedLock()
    active = 0
    peak = 0

    async def critical():
        nonlocal active, peak
        async with locks.hold("a@x.com"):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(critical() for _ in range(5)))

    assert peak == 1


@pytest.mark.asyncio
async def test_different_keys_do_not_wait():
    """Test that different keys do not block each other."""
    locks = KeyedLock()
    entered = asyncio.Event()

    async def holder():
        async with locks.hold("a@x.com"):
            await asyncio.wait_for(entered.wait(), timeout=1)

    async def other():
        async with locks.hold("b@x.com"):
            entered.set()

    await asyncio.gather(holder(), other())


@pytest.mark.asyncio
async def test_released_keys_are_dropped():
    """Test that released keys do not accumulate."""
    locks = KeyedLock()

    async with locks.hold("a@x.com"):
        assert len(locks) == 1

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_released_after_error():
    """Test that a key is released when the holder raises."""
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("a@x.com"):
            raise RuntimeError("boom")

    assert len(locks) == 0
