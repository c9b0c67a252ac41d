"""
Unit tests for the limiter factory functions.
"""

import pytest
from unittest.mock import MagicMock

from prometheus_client import CollectorRegistry

from limiter import create_rate_limiter, create_worker_limiter
from limiter.storage import RedisBucketStore
from limiter.workers import RedisSlotLock
from shared.config import LimiterConfig
from shared.metrics import LimiterMetrics


class TestFactory:
    """Test cases for create_rate_limiter and create_worker_limiter."""

    @pytest.fixture
    def config(self):
        return LimiterConfig(
            _env_file=None,
            redis_pools={"reports": "redis://localhost:6379/3"},
            bucket_key_prefix="rl:",
            worker_key_prefix="wl:",
            mutex_timeout=2.0,
            worker_jitter_min_ms=2,
            worker_jitter_max_ms=5
        )

    @pytest.fixture
    def pools(self):
        """Mock pool manager handing out one mock client per pool."""
        clients = {}
        manager = MagicMock()
        manager.get_client.side_effect = lambda name=None: clients.setdefault(name, MagicMock())
        manager.clients = clients
        return manager

    @pytest.fixture
    def metrics(self):
        return LimiterMetrics(CollectorRegistry())

    def test_create_rate_limiter(self, config, pools, metrics):
        """One bucket store per pool, all sharing the configured prefix."""
        rate_limiter = create_rate_limiter(config, pools, metrics)

        assert isinstance(rate_limiter.store, RedisBucketStore)
        assert rate_limiter.store.key_prefix == "rl:"
        assert rate_limiter.store.mutex_timeout == 2.0
        assert list(rate_limiter.pools) == ["reports"]
        assert rate_limiter.pools["reports"]._client is pools.clients["reports"]
        assert rate_limiter.metrics is metrics

    def test_create_worker_limiter(self, config, pools, metrics):
        """One slot lock per pool, with the configured jitter window."""
        worker_limiter = create_worker_limiter(config, pools, metrics)

        assert isinstance(worker_limiter.lock, RedisSlotLock)
        assert worker_limiter.lock.key_prefix == "wl:"
        assert worker_limiter.pools["reports"]._client is pools.clients["reports"]
        assert worker_limiter.jitter_ms == (2, 5)

    def test_metrics_disabled(self, config, pools):
        """enable_metrics=False builds limiters without metrics."""
        config.enable_metrics = False

        assert create_rate_limiter(config, pools).metrics is None
        assert create_worker_limiter(config, pools).metrics is None
