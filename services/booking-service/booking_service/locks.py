import asyncio
import logging
from contextlib import asynccontextmanager

from redis.exceptions import LockError, RedisError

from shared.errors import TransientError

logger = logging.getLogger(__name__)


def provider_day_key(provider_id: str, day) -> str:
    return f"{provider_id}:{day.isoformat()}"


class KeyedLock:
    """
    One asyncio.Lock per key, created on demand and dropped once nobody holds
    or waits for it. Unrelated keys never contend.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)


class RedisKeyedLock:
    """
    Cross-instance provider-day lock. The local KeyedLock keeps same-process
    callers off Redis while one of them already holds the key.
    """

    def __init__(self, redis_client, timeout: float = 10.0, blocking_timeout: float = 5.0, prefix: str = "lock:slot:"):
        self._redis = redis_client
        self._local = KeyedLock()
        self._timeout = timeout
        self._blocking_timeout = blocking_timeout
        self._prefix = prefix

    @asynccontextmanager
    async def hold(self, key: str):
        async with self._local.hold(key):
            lock = self._redis.lock(
                f"{self._prefix}{key}",
                timeout=self._timeout,
                blocking_timeout=self._blocking_timeout,
            )
            try:
                acquired = await lock.acquire()
            except RedisError as e:
                raise TransientError("Slot lock unavailable") from e
            if not acquired:
                raise TransientError("Timed out waiting for slot lock")

            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError:
                    # expired while held; the DB re-check still guards the insert
                    logger.warning("Slot lock expired before release", extra={"reason": key})
                except RedisError as e:
                    logger.warning("Slot lock release failed", extra={"reason": key, "error": str(e)})
