"""
Distributed worker concurrency limiter.
"""

import asyncio
import random
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional, Set, Tuple

from shared.errors import LockBackendError, ValidationError, WorkerLimitExceeded
from shared.logging import get_logger
from shared.metrics import LimiterMetrics
from limiter.callbacks import DenyCallback, deny, resolve
from .slot_lock import SlotLock

Work = Callable[[], Any]


class WorkerConcurrencyLimiter:
    """Bounds how many calls for a name run at once across all processes.

    A slot is taken before the work starts and always handed back afterwards,
    whether the work returns, raises, or the calling task is cancelled.
    Waiting callers retry after a random jitter; there is no FIFO ordering.
    """

    LIMITER = "worker"

    def __init__(self,
                 lock: SlotLock,
                 pools: Optional[Mapping[str, SlotLock]] = None,
                 *,
                 metrics: Optional[LimiterMetrics] = None,
                 jitter_ms: Tuple[int, int] = (1, 10),
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 rng: Optional[random.Random] = None):
        if jitter_ms[0] <= 0 or jitter_ms[0] > jitter_ms[1]:
            raise ValidationError("Invalid jitter window", details={"jitter_ms": list(jitter_ms)})
        self.lock = lock
        self.pools = dict(pools or {})
        self.metrics = metrics
        self.jitter_ms = jitter_ms
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.logger = get_logger("limiter.worker_limiter")
        self._orphan_releases: Set[asyncio.Task] = set()

    def _lock_for(self, pool: Optional[str]) -> SlotLock:
        if pool is None:
            return self.lock
        try:
            return self.pools[pool]
        except KeyError:
            raise ValidationError(f"Unknown pool: {pool}", details={"pool": pool}) from None

    @staticmethod
    def _validate(name: str, max_workers: int, lease_timeout: Optional[float]):
        if max_workers <= 0:
            raise ValidationError("max_workers must be positive", details={"name": name, "max_workers": max_workers})
        if lease_timeout is not None and lease_timeout <= 0:
            raise ValidationError("lease_timeout must be positive", details={"name": name, "lease_timeout": lease_timeout})

    def _record(self, outcome: str):
        if self.metrics:
            self.metrics.record_decision(self.LIMITER, outcome)

    def _release_orphan(self, lock: SlotLock, name: str, acquiring: asyncio.Future):
        """Hand back a slot granted to a caller that was cancelled mid-acquire."""
        if acquiring.cancelled() or acquiring.exception() is not None:
            return
        worker_id = acquiring.result()
        if worker_id is None:
            return
        self.logger.info("Releasing slot of cancelled caller", worker_pool=name, worker_id=worker_id)
        task = asyncio.ensure_future(lock.release(name, worker_id))
        self._orphan_releases.add(task)
        task.add_done_callback(self._orphan_releases.discard)

    async def _release(self, lock: SlotLock, name: str, worker_id: str):
        try:
            await lock.release(name, worker_id)
        except LockBackendError as e:
            if self.metrics:
                self.metrics.record_backend_error(self.LIMITER, e.code)
            raise
        finally:
            if self.metrics:
                self.metrics.slot_released(name)
        self.logger.debug("Worker slot released", worker_pool=name, worker_id=worker_id)

    @asynccontextmanager
    async def slot(self,
                   name: str,
                   max_workers: int,
                   lease_timeout: Optional[float] = None,
                   pool: Optional[str] = None) -> AsyncIterator[Optional[str]]:
        """Hold one slot for the duration of the block.

        Yields the worker id, or None when every slot is taken. A granted
        slot is released on exit even if the block raises or is cancelled.
        """
        self._validate(name, max_workers, lease_timeout)
        lock = self._lock_for(pool)

        acquiring = asyncio.ensure_future(lock.acquire(name, max_workers, lease_timeout))
        try:
            worker_id = await asyncio.shield(acquiring)
        except asyncio.CancelledError:
            acquiring.add_done_callback(lambda fut: self._release_orphan(lock, name, fut))
            raise
        except LockBackendError as e:
            if self.metrics:
                self.metrics.record_backend_error(self.LIMITER, e.code)
            raise

        if worker_id is None:
            yield None
            return

        if self.metrics:
            self.metrics.slot_acquired(name)
        self.logger.debug("Worker slot acquired", worker_pool=name, worker_id=worker_id, max_workers=max_workers)
        try:
            yield worker_id
        finally:
            await asyncio.shield(self._release(lock, name, worker_id))

    async def run(self,
                  work: Work,
                  name: str,
                  max_workers: int,
                  lease_timeout: Optional[float] = None,
                  callback: Optional[DenyCallback] = None,
                  pool: Optional[str] = None) -> Any:
        """Run ``work`` in a free slot or deny immediately.

        ``work`` may be a plain or async callable. When denied, returns
        ``callback(name)`` if given, otherwise raises WorkerLimitExceeded.
        """
        async with self.slot(name, max_workers, lease_timeout, pool) as worker_id:
            if worker_id is not None:
                self._record("allowed")
                return await resolve(work())

        self._record("denied")
        self.logger.warning("Worker limit exceeded", worker_pool=name, max_workers=max_workers, kind="denied")
        return await deny(callback, WorkerLimitExceeded(name))

    def _jitter(self) -> float:
        """Random retry delay within the jitter window, in seconds."""
        return self.rng.uniform(*self.jitter_ms) / 1000.0

    async def run_blocking(self,
                           work: Work,
                           name: str,
                           max_workers: int,
                           lease_timeout: Optional[float] = None,
                           blocking_timeout: Optional[float] = None,
                           callback: Optional[DenyCallback] = None,
                           pool: Optional[str] = None) -> Any:
        """Run ``work`` in a slot, retrying for up to ``blocking_timeout`` seconds.

        ``blocking_timeout=None`` retries forever. Running out of time goes
        through the same callback/exception path as ``run``, flagged as a
        timeout.
        """
        if blocking_timeout is not None and blocking_timeout < 0:
            raise ValidationError("Blocking timeout must not be negative", details={"timeout": blocking_timeout})

        started: Optional[float] = None
        # Set once a wait has been clipped to the end of the budget.
        exhausted = False
        while True:
            async with self.slot(name, max_workers, lease_timeout, pool) as worker_id:
                if worker_id is not None:
                    self._record("allowed")
                    if started is not None and self.metrics:
                        self.metrics.record_wait(self.LIMITER, self.clock() - started)
                    return await resolve(work())

            now = self.clock()
            if started is None:
                started = now
            remaining = None if blocking_timeout is None else blocking_timeout - (now - started)

            if remaining is not None and (remaining <= 0 or exhausted):
                waited = now - started
                self._record("timeout")
                if self.metrics:
                    self.metrics.record_wait(self.LIMITER, waited)
                self.logger.warning(
                    "Worker slot wait timed out",
                    worker_pool=name,
                    max_workers=max_workers,
                    blocking_timeout=blocking_timeout,
                    waited=waited,
                    kind="timeout"
                )
                return await deny(callback, WorkerLimitExceeded(name, timed_out=True))

            delay = self._jitter()
            if remaining is not None and delay >= remaining:
                delay = remaining
                exhausted = True
            await self.sleep(delay)
