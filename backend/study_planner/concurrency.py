"""Coordination primitives for asynchronous planner mutations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _TaskReentrantLock:
    """asyncio lock that the owning task may re-acquire without deadlocking."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._owner: Optional[asyncio.Task] = None
        self._depth = 0

    async def acquire(self) -> None:
        task = asyncio.current_task()
        if task is not None and self._owner is task:
            self._depth += 1
            return
        await self._lock.acquire()
        self._owner = task
        self._depth = 1

    def release(self) -> None:
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
            self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()


class WeekLockRegistry:
    """Serializes read-modify-write cycles per week document.

    Schedule and achievement documents for the same week share one lock, so
    an add-slot racing a save-achievement cannot lose either write. Distinct
    weeks never block each other. A week's lock is dropped once no task holds
    or waits for it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, _TaskReentrantLock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, week_id: str) -> bool:
        lock = self._locks.get(week_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def with_week_lock(self, week_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(week_id)
        if lock is None:
            lock = _TaskReentrantLock()
            self._locks[week_id] = lock
        self._users[week_id] = self._users.get(week_id, 0) + 1
        try:
            await lock.acquire()
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[week_id] -= 1
            if self._users[week_id] == 0:
                del self._users[week_id]
                del self._locks[week_id]

    @asynccontextmanager
    async def with_week_locks(self, week_ids: Iterable[str]) -> AsyncIterator[None]:
        """Hold several week locks, always taken in sorted order."""
        async with AsyncExitStack() as stack:
            for week_id in sorted(set(week_ids)):
                await stack.enter_async_context(self.with_week_lock(week_id))
            yield


class SupersedingRunner:
    """Runs at most one request per key, discarding results of superseded calls.

    A newer ``run`` for the same key cancels the in-flight task; the older
    caller then receives ``None`` instead of a stale result.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def run(
        self,
        key: str,
        factory: Callable[[], Awaitable[T]],
        *,
        debounce: float = 0.0,
    ) -> Optional[T]:
        previous = self._tasks.get(key)
        if previous is not None and not previous.done():
            previous.cancel()
            logger.debug("Superseded in-flight request for %s", key)

        async def _job() -> T:
            if debounce > 0:
                await asyncio.sleep(debounce)
            return await factory()

        task = asyncio.ensure_future(_job())
        self._tasks[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self._tasks.get(key) is not task:
                return None
            raise
        finally:
            if self._tasks.get(key) is task:
                del self._tasks[key]


__all__ = ["SupersedingRunner", "WeekLockRegistry"]
