"""Unit tests for storage components."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import redis.asyncio as redis

from shared.storage.redis import RedisClient, RedisConfig


REDIS_URL = "redis://:test_password@localhost:6379/0"


class TestRedisClient:
    """Test RedisClient class."""

    @pytest.mark.asyncio
    async def test_client_lifecycle(self):
        """Test client lifecycle."""
        client = RedisClient(RedisConfig(url=REDIS_URL))

        mock_connection = MagicMock()
        mock_connection.ping = AsyncMock(return_value=True)
        mock_connection.aclose = AsyncMock()

        with patch("shared.storage.redis.redis.from_url", return_value=mock_connection) as from_url:
            await client.connect()
            assert client.is_connected
            assert client.client is mock_connection
            assert from_url.call_args.kwargs["decode_responses"] is True

            # Already connected
            await client.connect()
            from_url.assert_called_once()

            await client.close()
            mock_connection.aclose.assert_awaited()
            assert not client.is_connected
            assert client.client is None

    @pytest.mark.asyncio
    async def test_lazy_connection(self):
        """Commands connect on first use."""
        client = RedisClient(REDIS_URL)
        assert client.config.url == REDIS_URL

        mock_connection = MagicMock()
        mock_connection.ping = AsyncMock(return_value=True)
        mock_connection.hgetall = AsyncMock(return_value={"status": "Running"})

        with patch("shared.storage.redis.redis.from_url", return_value=mock_connection):
            assert await client.hgetall("meta:1") == {"status": "Running"}
            assert client.is_connected

    @pytest.mark.asyncio
    async def test_errors_reraised(self):
        """Command failures are logged and re-raised unchanged."""
        client = RedisClient(RedisConfig(url=REDIS_URL))

        mock_connection = MagicMock()
        mock_connection.zrevrange = AsyncMock(side_effect=redis.ConnectionError("down"))
        client.client = mock_connection

        with pytest.raises(redis.ConnectionError):
            await client.zrevrange("index:0xaa", 0, 4)

    @pytest.mark.asyncio
    async def test_health_check(self):
        """Health check reports ping failures as unhealthy."""
        client = RedisClient(RedisConfig(url=REDIS_URL))

        mock_connection = MagicMock()
        mock_connection.ping = AsyncMock(return_value=True)
        client.client = mock_connection
        assert await client.health_check()

        mock_connection.ping.side_effect = redis.ConnectionError("down")
        assert not await client.health_check()

    @pytest.mark.asyncio
    async def test_register_script_and_pipeline(self):
        """Scripts and pipelines come from the underlying client."""
        client = RedisClient(RedisConfig(url=REDIS_URL))

        mock_connection = MagicMock()
        mock_connection.register_script.return_value = "script"
        mock_connection.pipeline.return_value = "pipe"
        client.client = mock_connection

        assert await client.register_script("return 1") == "script"
        assert await client.pipeline() == "pipe"
        mock_connection.pipeline.assert_called_once_with(transaction=True)
