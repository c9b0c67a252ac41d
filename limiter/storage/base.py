"""
Shared bucket store contract.

A bucket persists exactly one value: the refill timestamp (seconds since the
epoch, as a double). Token counts are always derived from it, never stored.
"""

import struct
from abc import ABC, abstractmethod
from typing import AsyncContextManager, Awaitable, Callable, TypeVar

from shared.errors import StorageCorrupt

T = TypeVar("T")

_DOUBLE = struct.Struct("<d")


def pack_double(value: float) -> bytes:
    """Encode a timestamp as a fixed-width 64 bit double."""
    return _DOUBLE.pack(value)


def unpack_double(data: bytes) -> float:
    """Decode a timestamp written by pack_double."""
    if not isinstance(data, (bytes, bytearray)):
        raise StorageCorrupt("Stored timestamp is not binary", details={"type": type(data).__name__})
    if len(data) != _DOUBLE.size:
        raise StorageCorrupt("Stored timestamp is not 64 bits long", details={"length": len(data)})
    return _DOUBLE.unpack(bytes(data))[0]


class BucketStore(ABC):
    """Persists one timestamp per bucket name, guarded by a named mutex.

    No state may be cached in-process: every read goes to the backend, and
    read-modify-write sequences must run inside ``mutex(name)``.
    """

    @abstractmethod
    async def is_bootstrapped(self, name: str) -> bool:
        """Whether a timestamp exists for ``name``."""

    @abstractmethod
    async def bootstrap(self, name: str, microtime: float) -> bool:
        """Write ``microtime`` only if no timestamp exists yet.

        Returns True when this call created the bucket.
        """

    @abstractmethod
    async def read(self, name: str) -> float:
        """Return the stored timestamp."""

    @abstractmethod
    async def write(self, name: str, microtime: float) -> None:
        """Persist the timestamp."""

    @abstractmethod
    async def remove(self, name: str) -> None:
        """Delete the bucket."""

    @abstractmethod
    def mutex(self, name: str) -> AsyncContextManager[None]:
        """Exclusive lock scoped to ``name`` across all processes."""

    async def with_mutex(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` while holding the bucket mutex."""
        async with self.mutex(name):
            return await fn()
