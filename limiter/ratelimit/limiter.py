"""
Distributed token bucket rate limiter.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from shared.errors import RateLimitExceeded, StorageError, ValidationError
from shared.logging import get_logger
from shared.metrics import LimiterMetrics
from limiter.callbacks import DenyCallback, deny
from limiter.storage import BucketStore
from .rate import Rate, TimeUnit
from .token_bucket import BlockingConsumer, ConsumeTimeout, TokenBucket


class TokenBucketLimiter:
    """Rate limits named resources against buckets shared by every process.

    ``store`` serves the default pool; ``pools`` maps pool names to the
    stores of other connections. Nothing about a bucket is cached here:
    each call re-reads the store under the bucket mutex.
    """

    LIMITER = "rate"

    def __init__(self,
                 store: BucketStore,
                 pools: Optional[Mapping[str, BucketStore]] = None,
                 *,
                 metrics: Optional[LimiterMetrics] = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.store = store
        self.pools = dict(pools or {})
        self.metrics = metrics
        self.clock = clock
        self.sleep = sleep
        self.logger = get_logger("limiter.rate_limiter")

    def _store_for(self, pool: Optional[str]) -> BucketStore:
        if pool is None:
            return self.store
        try:
            return self.pools[pool]
        except KeyError:
            raise ValidationError(f"Unknown pool: {pool}", details={"pool": pool}) from None

    def _bucket(self,
                name: str,
                capacity: int,
                fill: Optional[int],
                unit: Union[TimeUnit, str],
                pool: Optional[str]) -> TokenBucket:
        rate = Rate(capacity if fill is None else fill, TimeUnit.parse(unit))
        return TokenBucket(name, capacity, rate, self._store_for(pool), clock=self.clock)

    @asynccontextmanager
    async def _backend(self):
        try:
            yield
        except StorageError as e:
            if self.metrics:
                self.metrics.record_backend_error(self.LIMITER, e.code)
            raise

    def _record(self, outcome: str):
        if self.metrics:
            self.metrics.record_decision(self.LIMITER, outcome)

    async def consume(self,
                      name: str,
                      capacity: int,
                      callback: Optional[DenyCallback] = None,
                      fill: Optional[int] = None,
                      unit: Union[TimeUnit, str] = TimeUnit.SECOND,
                      deduct: int = 1,
                      pool: Optional[str] = None) -> Any:
        """Take ``deduct`` tokens or deny immediately.

        Returns True when allowed. When denied, returns ``callback(name)``
        if a callback is given, otherwise raises RateLimitExceeded.
        """
        bucket = self._bucket(name, capacity, fill, unit, pool)
        async with self._backend():
            await bucket.bootstrap(capacity)
            result = await bucket.consume(deduct)

        if result.allowed:
            self._record("allowed")
            return True

        self._record("denied")
        self.logger.warning(
            "Rate limit exceeded",
            bucket=name,
            capacity=capacity,
            deduct=deduct,
            retry_after=result.retry_after,
            kind="denied"
        )
        return await deny(callback, RateLimitExceeded(name))

    async def consume_blocking(self,
                               name: str,
                               capacity: int,
                               callback: Optional[DenyCallback] = None,
                               blocking_timeout: Optional[float] = None,
                               fill: Optional[int] = None,
                               unit: Union[TimeUnit, str] = TimeUnit.SECOND,
                               deduct: int = 1,
                               pool: Optional[str] = None) -> Any:
        """Take ``deduct`` tokens, waiting up to ``blocking_timeout`` seconds.

        ``blocking_timeout=None`` waits indefinitely. A timeout goes through
        the same callback/exception path as an immediate denial, flagged as
        a timeout.
        """
        bucket = self._bucket(name, capacity, fill, unit, pool)
        consumer = BlockingConsumer(bucket, blocking_timeout, sleep=self.sleep)

        try:
            async with self._backend():
                await bucket.bootstrap(capacity)
                waited = await consumer.consume(deduct)
        except ConsumeTimeout as e:
            self._record("timeout")
            if self.metrics:
                self.metrics.record_wait(self.LIMITER, e.waited)
            self.logger.warning(
                "Rate limit wait timed out",
                bucket=name,
                capacity=capacity,
                deduct=deduct,
                blocking_timeout=blocking_timeout,
                waited=e.waited,
                kind="timeout"
            )
            return await deny(callback, RateLimitExceeded(name, timed_out=True))

        self._record("allowed")
        if self.metrics and waited > 0:
            self.metrics.record_wait(self.LIMITER, waited)
        return True

    async def available_tokens(self,
                               name: str,
                               capacity: int,
                               fill: Optional[int] = None,
                               unit: Union[TimeUnit, str] = TimeUnit.SECOND,
                               pool: Optional[str] = None) -> int:
        """Tokens currently available; bootstraps a missing bucket as full."""
        bucket = self._bucket(name, capacity, fill, unit, pool)
        async with self._backend():
            await bucket.bootstrap(capacity)
            return await bucket.tokens()

    async def remove(self, name: str, pool: Optional[str] = None) -> None:
        """Delete a bucket; the next call re-bootstraps it full."""
        async with self._backend():
            await self._store_for(pool).remove(name)
        self.logger.info("Bucket removed", bucket=name)
