"""Redis connection used to relay change notifications between processes.

Only publish, pub/sub and ping are needed; without ``REDIS_URL`` every call
degrades to a no-op and the change feed stays in-process.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime
from functools import wraps
from typing import Any, TypeVar

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from src.core.config import Constants, settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retry(
    max_retries: int = 3, base_delay: float = 0.1
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """Retry an async Redis call with exponential backoff.

    Args:
        max_retries: Total attempts before the last RedisError is re-raised
        base_delay: Delay before the second attempt; doubles on each retry
    """

    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:  # noqa: ANN401
            for attempt in range(1, max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except RedisError as e:
                    if attempt == max_retries:
                        logger.error("Redis call failed after %d attempts: %s", max_retries, e)
                        raise
                    delay = base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "Redis call failed (attempt %d/%d): %s. Retrying in %.2fs", attempt, max_retries, e, delay
                    )
                    await asyncio.sleep(delay)
            msg = "max_retries must be at least 1"
            raise ValueError(msg)

        return wrapper

    return decorator


class RedisClient:
    """Pooled async Redis connection for the change-feed relay."""

    def __init__(self, url: str | None = None) -> None:
        self._url = url if url is not None else settings.redis_url
        self._client: Redis | None = None
        self._enabled = bool(self._url)

        self._published = 0
        self._failed_publishes = 0
        self._last_published_at: datetime | None = None

        if not self._url:
            logger.info("REDIS_URL not set; change notifications stay in-process")
            return

        try:
            pool = ConnectionPool.from_url(
                self._url, decode_responses=True, max_connections=Constants.REDIS_MAX_CONNECTIONS
            )
        except (RedisError, ValueError) as e:
            logger.warning("Invalid Redis configuration, relay disabled: %s", e)
            self._enabled = False
            return
        self._client = Redis(connection_pool=pool)
        logger.info("Redis relay connection configured", extra={"url": self._url})

    @property
    def is_available(self) -> bool:
        return self._enabled and self._client is not None

    def get_health_status(self) -> dict[str, Any]:
        """Relay connection state and publish counters for the health endpoint."""
        return {
            "enabled": self._enabled,
            "connected": self.is_available,
            "published": self._published,
            "failed_publishes": self._failed_publishes,
            "last_published_at": self._last_published_at.isoformat() if self._last_published_at else None,
        }

    async def publish(self, channel: str, message: str) -> bool:
        """Publish with retries. Returns False when Redis is off or every attempt failed."""
        client = self._client
        if not self.is_available or client is None:
            return False

        @with_retry(max_retries=Constants.REDIS_PUBLISH_MAX_RETRIES)
        async def _publish() -> None:
            await client.publish(channel, message)

        try:
            await _publish()
        except RedisError:
            self._failed_publishes += 1
            return False

        self._published += 1
        self._last_published_at = datetime.now(UTC)
        logger.debug("Published change", extra={"channel": channel})
        return True

    def pubsub(self) -> PubSub | None:
        if not self.is_available or self._client is None:
            return None
        return self._client.pubsub()

    async def ping(self) -> bool:
        if not self.is_available or self._client is None:
            return False
        try:
            return bool(await self._client.ping())  # type: ignore[misc]
        except RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            logger.info("Redis relay connection closed")


redis_client = RedisClient()
