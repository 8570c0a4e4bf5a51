"""
Keyed Mutex - per-resource reentrant locks for critical sections.

Cart, order, payment and stock mutations are serialized per resource key
(``cart:<id>``, ``stock:<product>:<variant>`` ...). Locks are created lazily
on first use and removed by ``sweep()`` once nobody holds or waits on them.

Ownership is the current asyncio task: a task that already holds a key may
enter it again (depth counter), any other task waits. The registry belongs
to one event loop; it is built once in the application lifespan and passed
to the services that need it.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional, TypeVar

from storefront.exceptions import LockOperationFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LockStatistics:
    """Point-in-time view of the lock registry."""
    total_locks: int
    active_locks: int


class _ReentrantLock:
    """asyncio.Lock plus an owner token and hold depth."""

    __slots__ = ("key", "owner", "depth", "waiters", "_lock")

    def __init__(self, key: str):
        self.key = key
        self.owner: Optional[asyncio.Task] = None
        self.depth = 0
        self.waiters = 0
        self._lock = asyncio.Lock()

    @property
    def held(self) -> bool:
        return self.depth > 0

    async def acquire(self, owner: Optional[asyncio.Task]) -> None:
        if owner is not None and self.owner is owner:
            self.depth += 1
            return

        self.waiters += 1
        try:
            await self._lock.acquire()
        finally:
            self.waiters -= 1

        self.owner = owner
        self.depth = 1

    def release(self) -> None:
        self.depth -= 1
        if self.depth == 0:
            self.owner = None
            self._lock.release()


class KeyedMutex:
    """
    Registry of named reentrant locks.

    Usage:
        mutex = KeyedMutex()
        order = await mutex.cart_operation(cart.id, build_order)
    """

    def __init__(self):
        self._locks: Dict[str, _ReentrantLock] = {}

    def _lock_for(self, key: str) -> _ReentrantLock:
        lock = self._locks.get(key)
        if lock is None:
            lock = _ReentrantLock(key)
            self._locks[key] = lock
        return lock

    async def run_exclusive(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` while holding the lock for ``key``.

        Any exception from the operation is re-raised as a
        LockOperationFailedError naming the key, with the original as cause.
        Errors already wrapped by a nested guarded call pass through as is.
        """
        lock = self._lock_for(key)
        await lock.acquire(asyncio.current_task())
        logger.debug(f"Acquired lock {key} (depth {lock.depth})")
        try:
            return await operation()
        except LockOperationFailedError:
            raise
        except Exception as e:
            logger.error(f"Guarded operation failed for {key}: {e}")
            raise LockOperationFailedError(key, e) from e
        finally:
            lock.release()
            logger.debug(f"Released lock {key}")

    async def run_exclusive_many(
        self, keys: Iterable[str], operation: Callable[[], Awaitable[T]]
    ) -> T:
        """
        Hold every lock in ``keys`` while running ``operation``.

        Keys are de-duplicated and acquired in sorted order so that two
        callers locking overlapping sets cannot deadlock.
        """
        ordered = sorted(set(keys))

        async def nest(index: int) -> T:
            if index == len(ordered):
                return await operation()
            return await self.run_exclusive(ordered[index], lambda: nest(index + 1))

        return await nest(0)

    # Key scheme ------------------------------------------------------------

    @staticmethod
    def stock_key(product_id: str, variant_id: Optional[str]) -> str:
        return f"stock:{product_id}:{variant_id or 'default'}"

    async def cart_operation(self, cart_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.run_exclusive(f"cart:{cart_id}", operation)

    async def order_operation(self, order_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.run_exclusive(f"order:{order_id}", operation)

    async def payment_operation(self, payment_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.run_exclusive(f"payment:{payment_id}", operation)

    async def stock_operation(
        self,
        product_id: str,
        variant_id: Optional[str],
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        return await self.run_exclusive(self.stock_key(product_id, variant_id), operation)

    async def tenant_operation(
        self, tenant_id: str, kind: str, operation: Callable[[], Awaitable[T]]
    ) -> T:
        return await self.run_exclusive(f"tenant:{tenant_id}:{kind}", operation)

    # Housekeeping ----------------------------------------------------------

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.held

    def sweep(self) -> int:
        """Drop locks that are neither held nor awaited. Returns how many were removed."""
        idle = [
            key for key, lock in self._locks.items()
            if not lock.held and lock.waiters == 0
        ]
        for key in idle:
            del self._locks[key]
        if idle:
            logger.debug(f"Swept {len(idle)} idle locks, {len(self._locks)} remaining")
        return len(idle)

    def statistics(self) -> LockStatistics:
        active = sum(1 for lock in self._locks.values() if lock.held)
        return LockStatistics(total_locks=len(self._locks), active_locks=active)
