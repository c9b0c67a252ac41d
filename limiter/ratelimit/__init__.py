"""
Rate limiting package.

Holds the token bucket algorithm and the limiter that enforces a shared
refill rate per named resource, with immediate and blocking consumption.
"""

from .limiter import TokenBucketLimiter
from .rate import Rate, TimeUnit
from .token_bucket import BlockingConsumer, ConsumeResult, ConsumeTimeout, TokenBucket

__all__ = [
    "BlockingConsumer",
    "ConsumeResult",
    "ConsumeTimeout",
    "Rate",
    "TimeUnit",
    "TokenBucket",
    "TokenBucketLimiter",
]
