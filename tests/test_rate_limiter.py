"""
Unit tests for TokenBucketLimiter.
"""

import pytest
from unittest.mock import AsyncMock

from prometheus_client import CollectorRegistry

from limiter.ratelimit import TimeUnit, TokenBucketLimiter
from limiter.ratelimit.token_bucket import MIN_SLEEP
from limiter.storage import InMemoryBucketStore
from shared.errors import RateLimitExceeded, StorageCorrupt, StorageUnavailable, ValidationError
from shared.metrics import LimiterMetrics
from shared.test_helpers import DenialRecorder, FakeClock


class TestTokenBucketLimiter:
    """Test cases for TokenBucketLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self):
        return InMemoryBucketStore()

    @pytest.fixture
    def registry(self):
        return CollectorRegistry()

    @pytest.fixture
    def rate_limiter(self, store, clock, registry):
        """Create TokenBucketLimiter instance."""
        return TokenBucketLimiter(
            store,
            metrics=LimiterMetrics(registry),
            clock=clock,
            sleep=clock.sleep
        )

    def decisions(self, registry, outcome):
        return registry.get_sample_value(
            "limiter_decisions_total", {"limiter": "rate", "outcome": outcome}
        ) or 0

    @pytest.mark.asyncio
    async def test_five_per_second_scenario(self, rate_limiter, clock):
        """Five consumes pass, the sixth is denied, one more after a second."""
        for _ in range(5):
            assert await rate_limiter.consume("api", 5, fill=5, unit="second") is True

        with pytest.raises(RateLimitExceeded) as exc_info:
            await rate_limiter.consume("api", 5, fill=5, unit="second")

        clock.advance(1)
        assert await rate_limiter.consume("api", 5, fill=5, unit="second") is True

        error = exc_info.value
        assert error.name == "api"
        assert str(error) == "api Rate Limit"
        assert error.timed_out is False
        assert error.kind == "denied"

    @pytest.mark.asyncio
    async def test_denial_callback_result_is_returned(self, rate_limiter):
        """A callback replaces the exception and its result is returned."""
        callback = DenialRecorder("cached response")

        await rate_limiter.consume("api", 1, callback=callback)
        result = await rate_limiter.consume("api", 1, callback=callback)

        assert result == "cached response"
        assert callback.names == ["api"]

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self, rate_limiter):
        """Coroutine callbacks are awaited."""
        callback = AsyncMock(return_value="later")

        await rate_limiter.consume("api", 1, callback=callback)
        result = await rate_limiter.consume("api", 1, callback=callback)

        assert result == "later"
        callback.assert_awaited_once_with("api")

    @pytest.mark.asyncio
    async def test_fill_defaults_to_capacity(self, rate_limiter, clock):
        """Without a fill amount the bucket refills fully once per unit."""
        callback = DenialRecorder()
        for _ in range(2):
            assert await rate_limiter.consume("api", 2, unit="minute") is True
        assert await rate_limiter.consume("api", 2, callback=callback, unit="minute") == "degraded"

        clock.advance(30)

        assert await rate_limiter.consume("api", 2, unit="minute") is True

    @pytest.mark.asyncio
    async def test_deduct_amount(self, rate_limiter):
        """Each call removes ``deduct`` tokens."""
        callback = DenialRecorder()

        results = [await rate_limiter.consume("api", 10, callback=callback, deduct=4) for _ in range(3)]

        assert results == [True, True, "degraded"]

    @pytest.mark.asyncio
    async def test_available_tokens(self, rate_limiter):
        """The projection bootstraps full and does not consume."""
        assert await rate_limiter.available_tokens("api", 5) == 5
        await rate_limiter.consume("api", 5, deduct=2)

        assert await rate_limiter.available_tokens("api", 5) == 3
        assert await rate_limiter.available_tokens("api", 5) == 3

    @pytest.mark.asyncio
    async def test_microsecond_unit_stays_within_capacity(self, rate_limiter):
        """Even at a microsecond rate a full bucket holds and yields exactly capacity."""
        assert await rate_limiter.available_tokens("fast", 5, unit=TimeUnit.MICROSECOND) == 5

        allowed = 0
        with pytest.raises(RateLimitExceeded):
            while await rate_limiter.consume("fast", 5, unit=TimeUnit.MICROSECOND):
                allowed += 1

        assert allowed == 5

    @pytest.mark.asyncio
    async def test_consume_blocking_waits_for_refill(self, rate_limiter, clock, registry):
        """Blocking consume sleeps until the next token is due."""
        for _ in range(5):
            await rate_limiter.consume("api", 5)

        assert await rate_limiter.consume_blocking("api", 5, blocking_timeout=1) is True

        assert clock.slept == pytest.approx(0.2)
        assert registry.get_sample_value("limiter_wait_seconds_count", {"limiter": "rate"}) == 1

    @pytest.mark.asyncio
    async def test_consume_blocking_unbounded(self, rate_limiter, clock):
        """No timeout waits as long as the refill takes."""
        await rate_limiter.consume("api", 1, unit="hour")

        assert await rate_limiter.consume_blocking("api", 1, unit="hour") is True
        assert clock.slept == pytest.approx(3600)

    @pytest.mark.asyncio
    async def test_consume_blocking_timeout(self, rate_limiter, clock, registry):
        """A timeout raises through the denial path, flagged as a timeout."""
        await rate_limiter.consume("api", 1, unit="minute")

        with pytest.raises(RateLimitExceeded) as exc_info:
            await rate_limiter.consume_blocking("api", 1, blocking_timeout=2, unit="minute")

        assert exc_info.value.timed_out is True
        assert exc_info.value.kind == "timeout"
        assert clock.slept <= 2 + MIN_SLEEP
        assert self.decisions(registry, "timeout") == 1
        assert self.decisions(registry, "denied") == 0

    @pytest.mark.asyncio
    async def test_consume_blocking_timeout_callback(self, rate_limiter):
        """Timeouts use the configured callback too."""
        callback = DenialRecorder("fallback")
        await rate_limiter.consume("api", 1, unit="minute")

        result = await rate_limiter.consume_blocking(
            "api", 1, callback=callback, blocking_timeout=0.5, unit="minute"
        )

        assert result == "fallback"
        assert callback.names == ["api"]

    @pytest.mark.asyncio
    async def test_decision_metrics(self, rate_limiter, registry):
        """Allowed and denied decisions are counted separately."""
        callback = DenialRecorder()
        for _ in range(3):
            await rate_limiter.consume("api", 2, callback=callback)

        assert self.decisions(registry, "allowed") == 2
        assert self.decisions(registry, "denied") == 1

    @pytest.mark.asyncio
    async def test_storage_errors_propagate(self, rate_limiter, store, registry):
        """Backend failures are raised, not routed to the callback."""
        callback = DenialRecorder()
        store.read = AsyncMock(side_effect=StorageUnavailable("Failed to get microtime"))

        with pytest.raises(StorageUnavailable):
            await rate_limiter.consume("api", 5, callback=callback)

        assert callback.names == []
        assert registry.get_sample_value(
            "limiter_backend_errors_total", {"limiter": "rate", "error": "STORAGE_UNAVAILABLE"}
        ) == 1

    @pytest.mark.asyncio
    async def test_corrupt_state_propagates(self, rate_limiter, store):
        """Undecodable bucket state is raised."""
        store.set_raw("api", b"garbage")

        with pytest.raises(StorageCorrupt):
            await rate_limiter.consume("api", 5)

    @pytest.mark.asyncio
    async def test_remove_resets_bucket(self, rate_limiter):
        """A removed bucket comes back full."""
        await rate_limiter.consume("api", 3, deduct=3)
        await rate_limiter.remove("api")

        assert await rate_limiter.available_tokens("api", 3) == 3

    @pytest.mark.asyncio
    async def test_pools_select_stores(self, store, clock):
        """Pool names route buckets to their own store."""
        reports = InMemoryBucketStore()
        rate_limiter = TokenBucketLimiter(store, {"reports": reports}, clock=clock)

        await rate_limiter.consume("api", 5, pool="reports")

        assert await reports.is_bootstrapped("api") is True
        assert await store.is_bootstrapped("api") is False
        with pytest.raises(ValidationError):
            await rate_limiter.consume("api", 5, pool="missing")

    @pytest.mark.asyncio
    async def test_instances_share_state_through_store(self, store, clock):
        """Two limiters on one store enforce one limit."""
        first = TokenBucketLimiter(store, clock=clock)
        second = TokenBucketLimiter(store, clock=clock)
        callback = DenialRecorder()

        results = [
            await first.consume("api", 3, callback=callback),
            await second.consume("api", 3, callback=callback),
            await first.consume("api", 3, callback=callback),
            await second.consume("api", 3, callback=callback),
        ]

        assert results == [True, True, True, "degraded"]

    @pytest.mark.asyncio
    async def test_unknown_unit(self, rate_limiter):
        """Unsupported units are rejected before touching the store."""
        with pytest.raises(ValidationError):
            await rate_limiter.consume("api", 5, unit="fortnight")
