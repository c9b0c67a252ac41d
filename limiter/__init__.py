"""
Distributed admission control backed by a shared Redis store.

- ratelimit: token bucket rate limiting with immediate and blocking consume
- workers: bounded concurrent execution per named resource
- storage: shared bucket timestamp store and its mutex
- factory: limiters wired to configured Redis pools
"""

from .factory import create_rate_limiter, create_worker_limiter
from .ratelimit import Rate, TimeUnit, TokenBucketLimiter
from .workers import WorkerConcurrencyLimiter

__all__ = [
    "Rate",
    "TimeUnit",
    "TokenBucketLimiter",
    "WorkerConcurrencyLimiter",
    "create_rate_limiter",
    "create_worker_limiter",
]
