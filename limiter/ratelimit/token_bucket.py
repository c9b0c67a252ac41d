"""
Token bucket algorithm over a shared bucket store.

The store holds a single timestamp per bucket. The number of tokens is the
time elapsed since that timestamp multiplied by the refill rate, capped at
the capacity. Consuming tokens moves the timestamp forward by the time those
tokens take to refill, so fractional balances survive between calls.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from shared.errors import ValidationError
from shared.logging import get_logger
from limiter.storage import BucketStore
from .rate import Rate

# Shortest sleep between blocking consume attempts.
MIN_SLEEP = 0.001


@dataclass(frozen=True)
class ConsumeResult:
    """Outcome of one consume attempt."""

    allowed: bool
    # Seconds until enough tokens will have refilled (0 when allowed).
    retry_after: float = 0.0


class ConsumeTimeout(Exception):
    """A blocking consume ran out of time."""

    def __init__(self, waited: float):
        self.waited = waited
        super().__init__(f"Timed out after {waited:.3f}s")


class TokenBucket:
    """One named bucket bound to a store."""

    def __init__(self,
                 name: str,
                 capacity: int,
                 rate: Rate,
                 store: BucketStore,
                 clock: Callable[[], float] = time.time):
        if capacity <= 0:
            raise ValidationError("Capacity must be positive", details={"name": name, "capacity": capacity})
        self.name = name
        self.capacity = capacity
        self.rate = rate
        self.store = store
        self.clock = clock
        self.logger = get_logger("limiter.token_bucket")

    async def bootstrap(self, tokens: Optional[int] = None) -> bool:
        """Create the bucket holding ``tokens`` (default: full) if it does not exist."""
        if tokens is None:
            tokens = self.capacity
        if tokens > self.capacity:
            raise ValidationError(
                f"Initial token amount ({tokens}) is larger than the capacity ({self.capacity})",
                details={"name": self.name}
            )

        async with self.store.mutex(self.name):
            if await self.store.is_bootstrapped(self.name):
                return False
            created = await self.store.bootstrap(
                self.name, self.rate.tokens_to_microtime(tokens, self.clock())
            )

        if created:
            self.logger.debug("Bucket bootstrapped", bucket=self.name, tokens=tokens)
        return created

    async def _load(self) -> Tuple[int, float, float]:
        """Read (tokens, timestamp, now); caller must hold the mutex."""
        microtime = await self.store.read(self.name)
        now = self.clock()

        # Drop tokens beyond capacity
        min_microtime = self.rate.tokens_to_microtime(self.capacity, now)
        if min_microtime > microtime:
            microtime = min_microtime

        tokens = min(self.capacity, self.rate.microtime_to_tokens(microtime, now))
        return tokens, microtime, now

    async def consume(self, tokens: int = 1) -> ConsumeResult:
        """Take ``tokens`` if available; never blocks beyond the mutex."""
        if tokens <= 0:
            raise ValidationError("Token amount must be positive", details={"name": self.name, "tokens": tokens})
        if tokens > self.capacity:
            raise ValidationError(
                f"Token amount ({tokens}) is larger than the capacity ({self.capacity})",
                details={"name": self.name}
            )

        async with self.store.mutex(self.name):
            available, microtime, now = await self._load()
            if available < tokens:
                passed = now - microtime
                return ConsumeResult(False, max(0.0, self.rate.tokens_to_seconds(tokens) - passed))

            await self.store.write(self.name, microtime + self.rate.tokens_to_seconds(tokens))
            return ConsumeResult(True)

    async def tokens(self) -> int:
        """Currently available tokens, without consuming."""
        async with self.store.mutex(self.name):
            available, _, _ = await self._load()
        return max(0, available)


class BlockingConsumer:
    """Retries a bucket until it yields tokens or the timeout passes.

    Each wait is the bucket's own projection of when enough tokens will be
    back, clipped to the remaining timeout.
    """

    def __init__(self,
                 bucket: TokenBucket,
                 timeout: Optional[float] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if timeout is not None and timeout < 0:
            raise ValidationError("Blocking timeout must not be negative", details={"timeout": timeout})
        self.bucket = bucket
        self.timeout = timeout
        self.sleep = sleep

    async def consume(self, tokens: int = 1) -> float:
        """Consume ``tokens``; return the seconds spent waiting."""
        clock = self.bucket.clock
        started = clock()
        deadline = None if self.timeout is None else started + self.timeout

        while True:
            result = await self.bucket.consume(tokens)
            now = clock()
            if result.allowed:
                return now - started
            if deadline is not None and now >= deadline:
                raise ConsumeTimeout(now - started)

            seconds = result.retry_after
            if deadline is not None:
                seconds = min(seconds, deadline - now)
            await self.sleep(max(MIN_SLEEP, seconds))
