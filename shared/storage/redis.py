"""Redis async client wrapper for shared job state.

Provides a thin interface over ``redis.asyncio`` with connection
pooling, lazy connection, script registration and error logging.
"""

from typing import Dict, List, Optional, AsyncIterator
from dataclasses import dataclass
import structlog

import redis.asyncio as redis
from redis.commands.core import AsyncScript


logger = structlog.get_logger()


@dataclass
class RedisConfig:
    """Redis configuration."""
    url: str
    max_connections: int = 20
    timeout: int = 5
    retry_on_timeout: bool = True


class RedisClient:
    """
    Async Redis client with connection pooling.

    Commands connect on first use. Every failure is logged with
    its key and re-raised unchanged so callers decide how to map it.
    """

    def __init__(self, config: RedisConfig | str):
        if isinstance(config, str):
            config = RedisConfig(url=config)
        self.config = config
        self.logger = structlog.get_logger("redis-client")
        self.client: Optional[redis.Redis] = None
        self.is_connected: bool = False

    async def connect(self) -> None:
        """Connect to Redis."""
        if self.client:
            return

        self.client = redis.from_url(
            self.config.url,
            decode_responses=True,
            max_connections=self.config.max_connections,
            socket_timeout=self.config.timeout,
            socket_connect_timeout=self.config.timeout,
            retry_on_timeout=self.config.retry_on_timeout
        )

        await self.client.ping()
        self.is_connected = True
        self.logger.info("Connected to Redis")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.client:
            await self.client.aclose()
            self.client = None
            self.is_connected = False
            self.logger.info("Disconnected from Redis")

    async def close(self) -> None:
        """Close Redis connection."""
        await self.disconnect()

    async def connection(self) -> redis.Redis:
        """Return the underlying client, connecting if needed."""
        if not self.client:
            await self.connect()
        return self.client

    async def register_script(self, source: str) -> AsyncScript:
        """Register a Lua script; it is loaded by SHA on first call."""
        client = await self.connection()
        return client.register_script(source)

    async def pipeline(self, transaction: bool = True):
        """Create a pipeline; ``transaction=True`` wraps it in MULTI/EXEC."""
        client = await self.connection()
        return client.pipeline(transaction=transaction)

    async def hgetall(self, key: str) -> Dict[str, str]:
        """Get all hash fields."""
        client = await self.connection()
        try:
            return await client.hgetall(key)
        except redis.RedisError as e:
            self.logger.error("Redis hgetall error", error=str(e), key=key)
            raise

    async def zrevrange(self, key: str, start: int, end: int) -> List[str]:
        """Sorted set members, highest score first."""
        client = await self.connection()
        try:
            return await client.zrevrange(key, start, end)
        except redis.RedisError as e:
            self.logger.error("Redis zrevrange error", error=str(e), key=key)
            raise

    async def scan_iter(self, match: str, count: int = 200) -> AsyncIterator[str]:
        """Iterate keys matching a pattern without blocking the server."""
        client = await self.connection()
        try:
            async for key in client.scan_iter(match=match, count=count):
                yield key
        except redis.RedisError as e:
            self.logger.error("Redis scan error", error=str(e), pattern=match)
            raise

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            client = await self.connection()
            return await client.ping() is True
        except redis.RedisError as e:
            self.logger.error("Redis health check failed", error=str(e))
            return False
