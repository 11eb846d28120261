"""
Per-key locking used to serialize token refreshes for a single account
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as aioredis

from utils.config import get_config
from utils.logging import get_logger

logger = get_logger(__name__)


class KeyedLock:
    """
    One asyncio.Lock per key.

    Different keys never contend with each other. Entries are dropped once no
    coroutine holds or waits on them, so the map does not grow with the number
    of accounts ever seen.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class RedisKeyedLock:
    """Cross-process variant backed by redis-py's Lock (SET NX PX)"""

    def __init__(self, redis_url: str, timeout: int, prefix: str = "lock:account"):
        self._redis = aioredis.from_url(redis_url, decode_responses=True)
        self._timeout = timeout
        self._prefix = prefix

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        # timeout bounds how long a crashed holder can block others
        lock = self._redis.lock(
            f"{self._prefix}:{key}",
            timeout=self._timeout,
            blocking_timeout=self._timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            raise TimeoutError(f"Could not acquire lock for {key} within {self._timeout}s")
        try:
            yield
        finally:
            try:
                await lock.release()
            except Exception as e:
                # Lock expired while held; the next holder already owns it
                logger.warning(f"Failed to release lock for {key}: {e}")


class AccountLock:
    """Local lock always; Redis lock on top when DISTRIBUTED_LOCKS is enabled"""

    def __init__(self, distributed: Optional[RedisKeyedLock] = None):
        self._local = KeyedLock()
        self._distributed = distributed

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self._local.hold(key):
            if self._distributed is None:
                yield
            else:
                async with self._distributed.hold(key):
                    yield

    def is_locked(self, key: str) -> bool:
        return self._local.is_locked(key)


_account_lock: Optional[AccountLock] = None


def get_account_lock() -> AccountLock:
    """Process-wide account lock"""
    global _account_lock
    if _account_lock is None:
        config = get_config()
        distributed = None
        if config.distributed_locks:
            distributed = RedisKeyedLock(config.redis_url, config.lock_timeout_seconds)
        _account_lock = AccountLock(distributed)
    return _account_lock
