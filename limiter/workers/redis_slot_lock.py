"""
Redis-backed worker slot lock.
"""

import time
from typing import Callable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import LockBackendError
from shared.logging import get_logger
from .slot_lock import SlotLock


class RedisSlotLock(SlotLock):
    """Keeps the leases of a name in a sorted set scored by expiry time.

    Acquisition runs as one Lua script: prune expired leases, refuse when
    ``max_workers`` remain, otherwise add a fresh worker id from a counter.
    """

    _ACQUIRE = """
    local slots_key = KEYS[1]
    local counter_key = KEYS[2]
    local max_workers = tonumber(ARGV[1])
    local now = tonumber(ARGV[2])
    local lease = tonumber(ARGV[3])

    redis.call('ZREMRANGEBYSCORE', slots_key, '-inf', now)
    if redis.call('ZCARD', slots_key) >= max_workers then
      return false
    end

    local worker_id = redis.call('INCR', counter_key)
    local expires_at = '+inf'
    if lease > 0 then
      expires_at = now + lease
    end
    redis.call('ZADD', slots_key, expires_at, worker_id)
    return worker_id
    """

    def __init__(self,
                 client: redis.Redis,
                 key_prefix: str = "worker_limit:",
                 clock: Callable[[], float] = time.time):
        self._client = client
        self.key_prefix = key_prefix
        self._clock = clock
        self.logger = get_logger("limiter.workers.redis")
        self._acquire_script = self._client.register_script(self._ACQUIRE)

    def _make_key(self, name: str) -> str:
        """Generate slot set key."""
        return f"{self.key_prefix}{name}"

    def _make_counter_key(self, name: str) -> str:
        return f"{self.key_prefix}{name}:seq"

    async def acquire(self, name: str, max_workers: int, lease_timeout: Optional[float] = None) -> Optional[str]:
        try:
            worker_id = await self._acquire_script(
                keys=[self._make_key(name), self._make_counter_key(name)],
                args=[max_workers, self._clock(), lease_timeout or 0],
            )
        except RedisError as e:
            self.logger.error("Worker slot acquire error", worker_pool=name, error=str(e))
            raise LockBackendError("Failed to acquire worker slot", details={"name": name, "error": str(e)}) from e
        if worker_id is None:
            return None
        if isinstance(worker_id, bytes):
            worker_id = worker_id.decode("utf-8")
        return str(worker_id)

    async def release(self, name: str, worker_id: str) -> None:
        try:
            await self._client.zrem(self._make_key(name), worker_id)
        except RedisError as e:
            self.logger.error("Worker slot release error", worker_pool=name, worker_id=worker_id, error=str(e))
            raise LockBackendError("Failed to release worker slot", details={"name": name, "error": str(e)}) from e

    async def held(self, name: str) -> int:
        """Number of unexpired leases for ``name``."""
        try:
            return await self._client.zcount(self._make_key(name), f"({self._clock()}", "+inf")
        except RedisError as e:
            raise LockBackendError("Failed to count worker slots", details={"name": name, "error": str(e)}) from e
