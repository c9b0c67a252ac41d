"""
Shared configuration management for the distributed limiters.
"""

from functools import lru_cache
from typing import Dict

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LimiterConfig(BaseSettings):
    """Limiter configuration loaded from LIMITER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LIMITER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    service_name: str = Field(default="limiter")

    # Redis connection pools; None selects redis_url
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_pools: Dict[str, str] = Field(default_factory=dict)

    # Key namespaces
    bucket_key_prefix: str = Field(default="rate_limit:")
    worker_key_prefix: str = Field(default="worker_limit:")

    # Bucket mutex
    mutex_timeout: float = Field(default=5.0, gt=0)
    mutex_blocking_timeout: float = Field(default=5.0, gt=0)

    # Worker retry jitter window
    worker_jitter_min_ms: int = Field(default=1, ge=1)
    worker_jitter_max_ms: int = Field(default=10, ge=1)

    # Observability
    enable_metrics: bool = Field(default=True)

    @model_validator(mode="after")
    def _check_jitter_window(self) -> "LimiterConfig":
        if self.worker_jitter_min_ms > self.worker_jitter_max_ms:
            raise ValueError("worker_jitter_min_ms must not exceed worker_jitter_max_ms")
        return self


@lru_cache()
def get_config() -> LimiterConfig:
    """Get the process-wide limiter configuration."""
    return LimiterConfig()
