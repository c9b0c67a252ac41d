"""
Shared utilities for the distributed limiters.

This package aggregates common building blocks consumed by every limiter:

- config: Limiter configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus decision, wait and backend-error metrics
- errors: Canonical error types and responses
- redis_pool: Named Redis connection pools
- test_helpers: Deterministic clocks and denial callbacks for tests

Do not import from the limiter package into shared/.
"""
