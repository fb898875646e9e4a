"""
Shared Redis connection for the settings store.

The connection is opened on first use and checked with a PING. When the
server cannot be reached the caller gets ``None`` and falls back to
process-local storage.
"""

import logging
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = 5.0


class RedisClient:
    """Lazily connected ``redis.asyncio`` client."""

    def __init__(self, redis_url: str) -> None:
        self.redis_url = redis_url
        self._client: Optional[redis.Redis] = None
        self._connection_error: Optional[str] = None

    async def get_client(self) -> Optional[redis.Redis]:
        """
        Return the connected client, connecting first if needed.

        Returns:
            The client, or None when the server did not answer a PING
        """
        if self._client is not None:
            return self._client

        candidate = redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=CONNECT_TIMEOUT_SECONDS,
            socket_timeout=CONNECT_TIMEOUT_SECONDS,
            retry_on_timeout=True,
        )
        try:
            await candidate.ping()
        except (redis.ConnectionError, redis.TimeoutError) as e:
            self._connection_error = f"{type(e).__name__}: {e}"
            logger.warning(
                "Redis is unreachable",
                extra={"redis_error": self._connection_error},
            )
            return None

        self._client = candidate
        self._connection_error = None
        logger.info("Connected to Redis")
        return self._client

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except redis.RedisError as e:
            logger.warning(f"Closing the Redis connection failed: {e}")

    @property
    def is_available(self) -> bool:
        return self._client is not None

    @property
    def connection_error(self) -> Optional[str]:
        return self._connection_error
