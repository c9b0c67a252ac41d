"""
Shared bucket storage.

Buckets persist only their refill timestamp; implementations must not cache
it in-process because other processes mutate it under the same mutex.
"""

from .base import BucketStore, pack_double, unpack_double
from .memory import InMemoryBucketStore
from .redis_store import RedisBucketStore

__all__ = [
    "BucketStore",
    "InMemoryBucketStore",
    "RedisBucketStore",
    "pack_double",
    "unpack_double",
]
