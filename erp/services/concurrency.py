# erp/services/concurrency.py
import asyncio
import logging
from contextlib import asynccontextmanager, AsyncExitStack
from typing import Awaitable, Callable, Dict, Hashable, Iterable, Optional, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from erp.core.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StockLockRegistry:
    """
    Per-key asyncio locks serializing stock writers inside one process.

    Keys are usually product ids. The registry is application-scoped
    (created by create_app) so every request shares the same locks. A
    key's lock is dropped once nobody holds or waits for it.
    """

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}  # key: holders + waiters

    def lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self.lock_for(key)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                self._locks.pop(key, None)

    @asynccontextmanager
    async def hold_many(self, keys: Iterable[Hashable]):
        """Acquire several locks in a stable order so two batches cannot deadlock"""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys), key=str):
                await stack.enter_async_context(self.hold(key))
            yield

    def __len__(self) -> int:
        return len(self._locks)


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    session: Optional[AsyncSession] = None,
    *,
    attempts: int = 3,
    backoff_base: float = 0.05,
) -> T:
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on ConcurrencyConflictError (optimistic version check lost)
    and OperationalError (database locked). The last failure is re-raised.
    """
    for attempt in range(attempts):
        try:
            return await func()
        except (ConcurrencyConflictError, OperationalError) as exc:
            if session is not None:
                await session.rollback()
            if attempt >= attempts - 1:
                logger.warning(f"Giving up after {attempts} attempts: {exc}")
                raise
            delay = backoff_base * (2 ** attempt)
            logger.info(f"Concurrent update detected, retrying in {delay:.3f}s (attempt {attempt + 1}/{attempts})")
            await asyncio.sleep(delay)
    raise ConcurrencyConflictError()
