"""
In-process bucket store for tests and single-process deployments.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

from shared.errors import StorageCorrupt, StorageError
from .base import BucketStore, pack_double, unpack_double


class InMemoryBucketStore(BucketStore):
    """Bucket store kept in a dict, one asyncio lock per bucket.

    Values go through the same 8 byte encoding as the Redis store. A lock
    only exists while some caller holds or waits for it.
    """

    def __init__(self) -> None:
        self._values: Dict[str, bytes] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def is_bootstrapped(self, name: str) -> bool:
        return name in self._values

    async def bootstrap(self, name: str, microtime: float) -> bool:
        if name in self._values:
            return False
        self._values[name] = pack_double(microtime)
        return True

    async def read(self, name: str) -> float:
        try:
            data = self._values[name]
        except KeyError:
            raise StorageCorrupt("No timestamp stored for bucket", details={"bucket": name}) from None
        return unpack_double(data)

    async def write(self, name: str, microtime: float) -> None:
        self._values[name] = pack_double(microtime)

    async def remove(self, name: str) -> None:
        if self._values.pop(name, None) is None:
            raise StorageError("Failed to delete key", details={"bucket": name})

    @asynccontextmanager
    async def mutex(self, name: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._lock_users[name] = self._lock_users.get(name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[name] -= 1
            if not self._lock_users[name]:
                del self._lock_users[name]
                del self._locks[name]

    def raw(self, name: str) -> bytes:
        """Stored bytes for ``name``; lets tests corrupt or inspect state."""
        return self._values[name]

    def set_raw(self, name: str, data: bytes) -> None:
        self._values[name] = data
