"""
Worker slot lock contract and an in-process implementation.
"""

import asyncio
import math
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional


class SlotLock(ABC):
    """Grants at most ``max_workers`` concurrent leases per name.

    A lease that is not released expires after ``lease_timeout`` seconds
    (never, when None) and its slot becomes available again.
    """

    @abstractmethod
    async def acquire(self, name: str, max_workers: int, lease_timeout: Optional[float] = None) -> Optional[str]:
        """Claim a slot; return its worker id, or None when all are held."""

    @abstractmethod
    async def release(self, name: str, worker_id: str) -> None:
        """Return a slot. Safe to repeat, and safe after the lease expired."""


class InMemorySlotLock(SlotLock):
    """Slot lock for tests and local runs."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._leases: Dict[str, Dict[str, float]] = {}
        self._counter = 0
        self._lock = asyncio.Lock()

    def _prune(self, name: str, now: float) -> Dict[str, float]:
        leases = self._leases.setdefault(name, {})
        for worker_id, expires_at in list(leases.items()):
            if expires_at <= now:
                del leases[worker_id]
        return leases

    async def acquire(self, name: str, max_workers: int, lease_timeout: Optional[float] = None) -> Optional[str]:
        async with self._lock:
            now = self._clock()
            leases = self._prune(name, now)
            if len(leases) >= max_workers:
                return None
            self._counter += 1
            worker_id = str(self._counter)
            leases[worker_id] = math.inf if lease_timeout is None else now + lease_timeout
            return worker_id

    async def release(self, name: str, worker_id: str) -> None:
        async with self._lock:
            self._leases.get(name, {}).pop(worker_id, None)

    async def held(self, name: str) -> int:
        """Number of unexpired leases for ``name``."""
        async with self._lock:
            return len(self._prune(name, self._clock()))
