"""Change feed: push notifications telling listeners that a stream's contents changed.

Notifications carry only the topic; listeners re-read the store to build a
snapshot. Delivery is in-process unless the Redis relay is running, in which
case every process subscribed to the channel prefix (this one included)
receives each notification exactly once through Redis.
"""

import asyncio
import contextlib
import logging
from collections import defaultdict

from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from src.core.config import settings
from src.core.redis_client import RedisClient, redis_client


logger = logging.getLogger(__name__)


class Listener:
    """One subscriber's queue of pending change notifications for a topic."""

    def __init__(self, feed: "ChangeFeed", topic: str) -> None:
        self.topic = topic
        self._feed = feed
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self) -> None:
        if not self._closed:
            self._queue.put_nowait(self.topic)

    async def wait(self) -> bool:
        """Wait for the next change. Returns False once the listener is closed."""
        if self._closed:
            return False
        item = await self._queue.get()
        return item is not None and not self._closed

    def close(self) -> None:
        """Stop receiving notifications and wake any pending wait(). Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._feed._remove(self)
        self._queue.put_nowait(None)


class ChangeFeed:
    """Topic-keyed fan-out of change notifications."""

    def __init__(self, *, redis: RedisClient | None = None, channel_prefix: str | None = None) -> None:
        self._redis = redis
        self._prefix = channel_prefix or settings.change_feed_channel_prefix
        self._listeners: dict[str, set[Listener]] = defaultdict(set)
        self._pubsub: PubSub | None = None
        self._relay_task: asyncio.Task[None] | None = None

    @property
    def listener_count(self) -> int:
        return sum(len(listeners) for listeners in self._listeners.values())

    @property
    def is_relaying(self) -> bool:
        return self._relay_task is not None and not self._relay_task.done()

    def listen(self, topic: str) -> Listener:
        listener = Listener(self, topic)
        self._listeners[topic].add(listener)
        return listener

    def _remove(self, listener: Listener) -> None:
        listeners = self._listeners.get(listener.topic)
        if listeners is None:
            return
        listeners.discard(listener)
        if not listeners:
            del self._listeners[listener.topic]

    def deliver(self, topic: str) -> None:
        """Notify every local listener of a topic."""
        for listener in list(self._listeners.get(topic, ())):
            listener.notify()

    async def publish(self, topic: str) -> None:
        """Announce that a topic changed, through Redis when relaying, otherwise locally."""
        if self.is_relaying and self._redis is not None:
            if await self._redis.publish(f"{self._prefix}{topic}", topic):
                return
            logger.warning("Change fan-out failed, delivering in-process only", extra={"topic": topic})
        self.deliver(topic)

    async def start(self) -> None:
        """Start relaying Redis notifications to local listeners, if Redis is configured."""
        if self.is_relaying:
            return
        pubsub = self._redis.pubsub() if self._redis is not None else None
        if pubsub is None:
            logger.info("Change feed running in-process only")
            return

        try:
            await pubsub.psubscribe(f"{self._prefix}*")
        except RedisError as e:
            logger.warning("Could not subscribe to change channel, running in-process: %s", e)
            await pubsub.aclose()
            return

        self._pubsub = pubsub
        self._relay_task = asyncio.create_task(self._relay(pubsub))
        logger.info("Change feed relay started", extra={"channel_prefix": self._prefix})

    async def stop(self) -> None:
        if self._relay_task is not None:
            self._relay_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._relay_task
            self._relay_task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.punsubscribe()
                await self._pubsub.aclose()
            except RedisError as e:
                logger.warning("Error closing change channel: %s", e)
            self._pubsub = None
            logger.info("Change feed relay stopped")

    async def _relay(self, pubsub: PubSub) -> None:
        try:
            async for message in pubsub.listen():
                if message["type"] == "pmessage":
                    self.deliver(message["data"])
        except RedisError as e:
            # Publishing falls back to in-process delivery once this task is done
            logger.error("Change feed relay stopped on Redis error: %s", e)


_change_feed = ChangeFeed(redis=redis_client)


def get_change_feed() -> ChangeFeed:
    """Get the process-wide change feed."""
    return _change_feed
