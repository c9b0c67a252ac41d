"""
Worker concurrency limiting package.
"""

from .redis_slot_lock import RedisSlotLock
from .slot_lock import InMemorySlotLock, SlotLock
from .worker_limiter import WorkerConcurrencyLimiter

__all__ = [
    "InMemorySlotLock",
    "RedisSlotLock",
    "SlotLock",
    "WorkerConcurrencyLimiter",
]
