"""
Redis-backed shared bucket store.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import StorageCorrupt, StorageError, StorageUnavailable
from shared.logging import get_logger
from .base import BucketStore, pack_double, unpack_double


class RedisBucketStore(BucketStore):
    """Stores each bucket timestamp as an 8 byte string key.

    The mutex is a redis-py lock on ``<key>:lock`` held against the same
    connection, so refill-then-consume is atomic across processes.
    """

    def __init__(self,
                 client: redis.Redis,
                 key_prefix: str = "rate_limit:",
                 mutex_timeout: float = 5.0,
                 mutex_blocking_timeout: float = 5.0,
                 mutex_sleep: float = 0.005):
        self._client = client
        self.key_prefix = key_prefix
        self.mutex_timeout = mutex_timeout
        self.mutex_blocking_timeout = mutex_blocking_timeout
        self.mutex_sleep = mutex_sleep
        self.logger = get_logger("limiter.storage.redis")

    def _make_key(self, name: str) -> str:
        """Generate bucket key."""
        return f"{self.key_prefix}{name}"

    def _make_mutex_key(self, name: str) -> str:
        return f"{self._make_key(name)}:lock"

    def _unavailable(self, action: str, name: str, error: Exception) -> StorageUnavailable:
        self.logger.error("Bucket store error", action=action, bucket=name, error=str(error))
        return StorageUnavailable(
            f"Failed to {action}",
            details={"bucket": name, "error": str(error)}
        )

    async def is_bootstrapped(self, name: str) -> bool:
        try:
            return bool(await self._client.exists(self._make_key(name)))
        except RedisError as e:
            raise self._unavailable("check for key existence", name, e) from e

    async def bootstrap(self, name: str, microtime: float) -> bool:
        try:
            created = await self._client.set(self._make_key(name), pack_double(microtime), nx=True)
        except RedisError as e:
            raise self._unavailable("bootstrap bucket", name, e) from e
        return bool(created)

    async def read(self, name: str) -> float:
        try:
            data = await self._client.get(self._make_key(name))
        except RedisError as e:
            raise self._unavailable("get microtime", name, e) from e
        if data is None:
            raise StorageCorrupt("No timestamp stored for bucket", details={"bucket": name})
        return unpack_double(data)

    async def write(self, name: str, microtime: float) -> None:
        try:
            stored = await self._client.set(self._make_key(name), pack_double(microtime))
        except RedisError as e:
            raise self._unavailable("store microtime", name, e) from e
        if not stored:
            raise StorageUnavailable("Failed to store microtime", details={"bucket": name})

    async def remove(self, name: str) -> None:
        try:
            deleted = await self._client.delete(self._make_key(name))
        except RedisError as e:
            raise self._unavailable("delete key", name, e) from e
        if not deleted:
            raise StorageError("Failed to delete key", details={"bucket": name})

    @asynccontextmanager
    async def mutex(self, name: str) -> AsyncIterator[None]:
        lock = self._client.lock(
            self._make_mutex_key(name),
            timeout=self.mutex_timeout,
            sleep=self.mutex_sleep,
            blocking_timeout=self.mutex_blocking_timeout
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise self._unavailable("acquire bucket mutex", name, e) from e
        if not acquired:
            raise StorageUnavailable(
                "Timed out acquiring bucket mutex",
                details={"bucket": name, "blocking_timeout": self.mutex_blocking_timeout}
            )

        try:
            yield
        except BaseException:
            # The block's own failure wins over a failed release.
            try:
                await lock.release()
            except RedisError as e:
                self.logger.error("Bucket mutex release failed", bucket=name, error=str(e))
            raise

        try:
            await lock.release()
        except RedisError as e:
            # The lease expired mid-update; another process may have raced us.
            raise self._unavailable("release bucket mutex", name, e) from e
