"""
Bistro — Process-local order lock registry

Serializes concurrent checkout requests that carry the same lock key inside
one process. A request that finds the key taken waits for the holder to
finish (bounded by `timeout`) instead of racing it to the database.

The registry is advisory: each process has its own table, and the unique
constraint on orders.client_reference_id is what actually guarantees one
order per purchase. Stale entries (a holder that never released) are evicted
by a background sweep so a key cannot be starved forever.
"""
import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from bistro.core.config import get_settings
from bistro.core.errors import BusyError

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockToken:
    key: str
    owner: str


@dataclass
class _LockEntry:
    owner: str
    acquired_at: float
    released: asyncio.Event = field(default_factory=asyncio.Event)


class OrderLockRegistry:
    def __init__(
        self,
        stale_after: float | None = None,
        sweep_interval: float | None = None,
        retry_after: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_after = stale_after if stale_after is not None else settings.LOCK_STALE_AFTER_SECONDS
        self.sweep_interval = (
            sweep_interval if sweep_interval is not None else settings.LOCK_SWEEP_INTERVAL_SECONDS
        )
        self.retry_after = retry_after if retry_after is not None else settings.LOCK_RETRY_AFTER_SECONDS
        self._clock = clock
        self._locks: dict[str, _LockEntry] = {}
        self._sweeper: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    # ── Lifecycle ─────────────────────────────────────────────
    async def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(), name="order-lock-sweeper")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        for entry in self._locks.values():
            entry.released.set()
        self._locks.clear()

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    # ── Acquire / release ─────────────────────────────────────
    def try_acquire(self, key: str) -> LockToken | None:
        if key in self._locks:
            return None
        token = LockToken(key=key, owner=uuid.uuid4().hex)
        self._locks[key] = _LockEntry(owner=token.owner, acquired_at=self._clock())
        return token

    async def acquire(self, key: str, timeout: float | None = None) -> LockToken:
        """Wait until `key` is free and take it. Raises BusyError after `timeout` seconds."""
        wait_for = timeout if timeout is not None else settings.LOCK_WAIT_TIMEOUT_SECONDS
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_for

        while True:
            token = self.try_acquire(key)
            if token is not None:
                return token

            entry = self._locks[key]
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise self._busy(key)
            try:
                await asyncio.wait_for(entry.released.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                raise self._busy(key)

    def release(self, token: LockToken) -> bool:
        """Release `token`'s key. A token whose entry was swept no longer owns anything."""
        entry = self._locks.get(token.key)
        if entry is None or entry.owner != token.owner:
            return False
        del self._locks[token.key]
        entry.released.set()
        return True

    @asynccontextmanager
    async def hold(self, key: str, timeout: float | None = None) -> AsyncIterator[LockToken]:
        token = await self.acquire(key, timeout)
        try:
            yield token
        finally:
            self.release(token)

    def sweep(self) -> int:
        """Evict entries held longer than `stale_after` and wake their waiters."""
        now = self._clock()
        stale = [key for key, entry in self._locks.items() if now - entry.acquired_at > self.stale_after]
        for key in stale:
            entry = self._locks.pop(key)
            entry.released.set()
        if stale:
            logger.info("Cleaned up %d expired order locks", len(stale))
        return len(stale)

    def _busy(self, key: str) -> BusyError:
        logger.warning("Timed out waiting for order lock %s", key)
        return BusyError("Server busy, please try again later", retry_after=self.retry_after)
