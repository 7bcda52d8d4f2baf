"""
Order lock registry — bounded wait, token ownership, stale sweep.
"""
import asyncio

import pytest

from bistro.core.errors import BusyError
from bistro.core.order_locks import OrderLockRegistry


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_try_acquire_is_exclusive():
    registry = OrderLockRegistry()
    token = registry.try_acquire("a@example.com_ref-1")
    assert token is not None
    assert registry.try_acquire("a@example.com_ref-1") is None
    assert registry.try_acquire("a@example.com_ref-2") is not None
    assert len(registry) == 2


@pytest.mark.asyncio
async def test_waiter_proceeds_after_release():
    registry = OrderLockRegistry()
    first = registry.try_acquire("k")

    async def release_soon():
        await asyncio.sleep(0.05)
        registry.release(first)

    asyncio.create_task(release_soon())
    second = await registry.acquire("k", timeout=2)
    assert second.owner != first.owner
    assert "k" in registry


@pytest.mark.asyncio
async def test_acquire_times_out_with_busy():
    registry = OrderLockRegistry(retry_after=3)
    registry.try_acquire("k")
    with pytest.raises(BusyError) as exc:
        await registry.acquire("k", timeout=0.05)
    assert exc.value.retry_after == 3
    assert exc.value.status_code == 429


@pytest.mark.asyncio
async def test_only_the_owning_token_releases():
    clock = FakeClock()
    registry = OrderLockRegistry(stale_after=60, clock=clock)
    old = registry.try_acquire("k")
    clock.now += 61
    assert registry.sweep() == 1

    new = registry.try_acquire("k")
    assert registry.release(old) is False, "a swept holder must not free the new holder's lock"
    assert "k" in registry
    assert registry.release(new) is True
    assert "k" not in registry


@pytest.mark.asyncio
async def test_sweep_keeps_fresh_entries():
    clock = FakeClock()
    registry = OrderLockRegistry(stale_after=60, clock=clock)
    registry.try_acquire("old")
    clock.now += 30
    registry.try_acquire("fresh")
    clock.now += 31
    assert registry.sweep() == 1
    assert "old" not in registry and "fresh" in registry


@pytest.mark.asyncio
async def test_background_sweep_wakes_waiter():
    """A holder that never releases is evicted by the sweeper and the waiter gets the key."""
    registry = OrderLockRegistry(stale_after=0.05, sweep_interval=0.05)
    await registry.start()
    try:
        registry.try_acquire("k")
        token = await registry.acquire("k", timeout=2)
        assert registry.release(token) is True
    finally:
        await registry.stop()


@pytest.mark.asyncio
async def test_hold_releases_on_error():
    registry = OrderLockRegistry()
    with pytest.raises(RuntimeError):
        async with registry.hold("k", timeout=1):
            raise RuntimeError("boom")
    assert "k" not in registry


@pytest.mark.asyncio
async def test_stop_wakes_waiters_and_clears():
    registry = OrderLockRegistry()
    registry.try_acquire("k")
    waiter = asyncio.create_task(registry.acquire("k", timeout=2))
    await asyncio.sleep(0.01)
    await registry.stop()
    token = await waiter
    assert token.key == "k"
