"""
Builds Redis-backed limiters from configuration.
"""

from typing import Optional

from shared.config import LimiterConfig, get_config
from shared.logging import get_logger
from shared.metrics import LimiterMetrics, get_limiter_metrics
from shared.redis_pool import RedisPoolManager
from limiter.ratelimit import TokenBucketLimiter
from limiter.storage import RedisBucketStore
from limiter.workers import RedisSlotLock, WorkerConcurrencyLimiter

logger = get_logger("limiter.factory")


def _metrics(config: LimiterConfig, metrics: Optional[LimiterMetrics]) -> Optional[LimiterMetrics]:
    if metrics is not None:
        return metrics
    return get_limiter_metrics() if config.enable_metrics else None


def _bucket_store(config: LimiterConfig, pools: RedisPoolManager, pool_name: Optional[str]) -> RedisBucketStore:
    return RedisBucketStore(
        pools.get_client(pool_name),
        key_prefix=config.bucket_key_prefix,
        mutex_timeout=config.mutex_timeout,
        mutex_blocking_timeout=config.mutex_blocking_timeout
    )


def create_rate_limiter(config: Optional[LimiterConfig] = None,
                        pools: Optional[RedisPoolManager] = None,
                        metrics: Optional[LimiterMetrics] = None) -> TokenBucketLimiter:
    """Create a token bucket limiter with one store per configured pool."""
    config = config or get_config()
    pools = pools or RedisPoolManager(config)

    limiter = TokenBucketLimiter(
        _bucket_store(config, pools, None),
        {name: _bucket_store(config, pools, name) for name in config.redis_pools},
        metrics=_metrics(config, metrics)
    )
    logger.info("Rate limiter created", pools=sorted(config.redis_pools))
    return limiter


def create_worker_limiter(config: Optional[LimiterConfig] = None,
                          pools: Optional[RedisPoolManager] = None,
                          metrics: Optional[LimiterMetrics] = None) -> WorkerConcurrencyLimiter:
    """Create a worker limiter with one slot lock per configured pool."""
    config = config or get_config()
    pools = pools or RedisPoolManager(config)

    def slot_lock(pool_name: Optional[str]) -> RedisSlotLock:
        return RedisSlotLock(pools.get_client(pool_name), key_prefix=config.worker_key_prefix)

    limiter = WorkerConcurrencyLimiter(
        slot_lock(None),
        {name: slot_lock(name) for name in config.redis_pools},
        metrics=_metrics(config, metrics),
        jitter_ms=(config.worker_jitter_min_ms, config.worker_jitter_max_ms)
    )
    logger.info("Worker limiter created", pools=sorted(config.redis_pools))
    return limiter
