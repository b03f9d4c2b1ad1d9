import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Hashable, List, Optional, TypeVar

from .errors import UpstreamServiceError

T = TypeVar("T")


async def with_deadline(awaitable: Awaitable[T], seconds: Optional[float], service: str) -> T:
    """Await a collaborator call, turning an expired deadline into an upstream timeout."""
    if seconds is None or seconds <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise UpstreamServiceError(
            f"{service} did not answer within {seconds:g}s", service=service, kind="timeout"
        ) from exc


class KeyedLocks:
    """One asyncio.Lock per key, dropped again once nobody holds or waits for it."""

    def __init__(self):
        # key -> [lock, holders + waiters]
        self._locks: Dict[Hashable, List] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __call__(self, key: Hashable):
        return self._hold(key)

    @asynccontextmanager
    async def _hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if not entry[1]:
                del self._locks[key]


class RateLimiter:
    """Spaces successive acquire() calls at least 1/per_second apart."""

    def __init__(
        self,
        per_second: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.interval = 1.0 / per_second if per_second > 0 else 0.0
        self._clock = clock
        self._sleep = sleep
        self._next_slot: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        if not self.interval:
            return
        async with self._lock:
            now = self._clock()
            if self._next_slot is not None and now < self._next_slot:
                await self._sleep(self._next_slot - now)
                now = self._next_slot
            self._next_slot = now + self.interval
