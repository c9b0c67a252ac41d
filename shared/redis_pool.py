"""
Named Redis connection pools shared by the limiter backends.
"""

from typing import Dict, Optional

import redis.asyncio as redis

from shared.config import LimiterConfig
from shared.errors import ValidationError
from shared.logging import get_logger


class RedisPoolManager:
    """Resolves a pool selector to a connected Redis client."""

    def __init__(self, config: LimiterConfig):
        self.config = config
        self.logger = get_logger("limiter.redis_pool")
        self._clients: Dict[Optional[str], redis.Redis] = {}

    def _url_for(self, pool_name: Optional[str]) -> str:
        if pool_name is None:
            return self.config.redis_url
        try:
            return self.config.redis_pools[pool_name]
        except KeyError:
            raise ValidationError(
                f"Unknown redis pool: {pool_name}",
                details={"pool": pool_name, "known_pools": sorted(self.config.redis_pools)}
            ) from None

    def get_client(self, pool_name: Optional[str] = None) -> redis.Redis:
        """Get (or lazily create) the client for a pool."""
        client = self._clients.get(pool_name)
        if client is None:
            client = redis.from_url(
                self._url_for(pool_name),
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30
            )
            self._clients[pool_name] = client
            self.logger.info("Redis pool created", pool=pool_name or "default")
        return client

    @property
    def pool_names(self):
        return [None, *self.config.redis_pools]

    async def close(self):
        """Close every open client."""
        for pool_name, client in list(self._clients.items()):
            await client.aclose()
            self.logger.info("Redis pool closed", pool=pool_name or "default")
        self._clients.clear()
