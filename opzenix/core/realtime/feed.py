"""
Realtime change feed for dashboard clients.

Every write to a watched table is published as a ``ChangeEvent``. Clients
subscribe to a set of tables and receive the events as an async iterator.
The in-process backend fans events out to bounded queues; the Redis backend
uses pub/sub so several API workers share one feed.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Iterable, List, Optional, Set

import redis.asyncio as aioredis

from ..config import RedisConfig, get_config
from ..logging import get_logger
from .events import ChangeEvent

logger = get_logger(__name__)

_CLOSED = object()


class Subscription:
    """A client's view of the feed, filtered to a set of tables."""

    def __init__(self, feed: "ChangeFeed", tables: Iterable[str], queue_size: int):
        self.feed = feed
        self.tables: Set[str] = set(tables)
        self.queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        """An empty table set receives every table."""
        return not self.tables or event.table in self.tables

    def offer(self, item: Any) -> None:
        """Enqueue without blocking; a full queue loses its oldest event."""
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
            logger.warning(
                "Subscriber queue full, dropping oldest event",
                tables=sorted(self.tables),
                dropped=self.dropped,
            )
        self.queue.put_nowait(item)

    async def set_tables(self, tables: Iterable[str]) -> None:
        """Replace the tables this subscription receives."""
        self.tables = set(tables)

    async def get(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Next event, or None once the subscription is closed."""
        if self.closed and self.queue.empty():
            return None
        if timeout is None:
            item = await self.queue.get()
        else:
            item = await asyncio.wait_for(self.queue.get(), timeout)
        if item is _CLOSED:
            return None
        return item

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def close(self) -> None:
        """Detach from the feed and wake any pending reader."""
        if self.closed:
            return
        self.closed = True
        await self.feed.unsubscribe(self)
        self.offer(_CLOSED)


class ChangeFeed(ABC):
    """Publish/subscribe interface for row changes."""

    @abstractmethod
    async def start(self) -> None:
        """Connect resources needed by the feed."""

    @abstractmethod
    async def stop(self) -> None:
        """Close all subscriptions and release resources."""

    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        """Deliver an event to every matching subscriber."""

    @abstractmethod
    async def subscribe(self, tables: Iterable[str] = ()) -> Subscription:
        """Open a subscription for the given tables."""

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        """Forget a subscription."""


class MemoryChangeFeed(ChangeFeed):
    """In-process fan-out, one bounded queue per subscriber."""

    def __init__(self, queue_size: int = 1000):
        self.queue_size = queue_size
        self.subscriptions: List[Subscription] = []

    async def start(self) -> None:
        logger.info("Memory change feed started")

    async def stop(self) -> None:
        for subscription in list(self.subscriptions):
            await subscription.close()
        logger.info("Memory change feed stopped")

    async def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self.subscriptions):
            if subscription.matches(event):
                subscription.offer(event)

    async def subscribe(self, tables: Iterable[str] = ()) -> Subscription:
        subscription = Subscription(self, tables, self.queue_size)
        self.subscriptions.append(subscription)
        logger.debug("Subscribed to change feed", tables=sorted(subscription.tables))
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)


class RedisSubscription(Subscription):
    """Subscription backed by its own Redis pub/sub connection."""

    def __init__(
        self,
        feed: "RedisChangeFeed",
        tables: Iterable[str],
        queue_size: int,
    ):
        super().__init__(feed, tables, queue_size)
        self.redis_feed = feed
        self.pubsub = feed.client.pubsub(ignore_subscribe_messages=True)
        self._reader: Optional[asyncio.Task] = None

    async def _listen(self) -> None:
        if self.tables:
            await self.pubsub.subscribe(
                *(self.redis_feed.channel(table) for table in self.tables)
            )
        else:
            await self.pubsub.psubscribe(f"{self.redis_feed.channel_prefix}*")

    async def _unlisten(self) -> None:
        await self.pubsub.unsubscribe()
        await self.pubsub.punsubscribe()

    async def open(self) -> None:
        await self._listen()
        self._reader = asyncio.create_task(self._read())

    async def _read(self) -> None:
        try:
            async for message in self.pubsub.listen():
                if message.get("type") not in ("message", "pmessage"):
                    continue
                data = message["data"]
                if isinstance(data, bytes):
                    data = data.decode("utf-8")
                event = ChangeEvent.model_validate(json.loads(data))
                if self.matches(event):
                    self.offer(event)
        except asyncio.CancelledError:
            raise
        except (aioredis.RedisError, ValueError) as e:
            logger.error("Change feed subscription failed", error=str(e))
            self.offer(_CLOSED)

    async def set_tables(self, tables: Iterable[str]) -> None:
        await self._unlisten()
        await super().set_tables(tables)
        await self._listen()

    async def close(self) -> None:
        if self.closed:
            return
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        await self.pubsub.aclose()
        await super().close()


class RedisChangeFeed(ChangeFeed):
    """Change feed over Redis pub/sub, one channel per table."""

    def __init__(
        self,
        redis_config: RedisConfig,
        channel_prefix: str = "opzenix:changes:",
        queue_size: int = 1000,
        client: Optional[aioredis.Redis] = None,
    ):
        self.redis_config = redis_config
        self.channel_prefix = channel_prefix
        self.queue_size = queue_size
        self._client = client
        self.subscriptions: List[Subscription] = []

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            raise RuntimeError("Redis change feed is not started")
        return self._client

    def channel(self, table: str) -> str:
        """Get the full Redis channel name for a table."""
        return f"{self.channel_prefix}{table}"

    async def start(self) -> None:
        if self._client is None:
            self._client = aioredis.Redis(
                host=self.redis_config.host,
                port=self.redis_config.port,
                password=self.redis_config.password,
                db=self.redis_config.db,
                max_connections=self.redis_config.max_connections,
                socket_timeout=self.redis_config.socket_timeout,
                socket_connect_timeout=self.redis_config.socket_connect_timeout,
            )
        await self._client.ping()
        logger.info(
            "Redis change feed started",
            host=self.redis_config.host,
            port=self.redis_config.port,
            channel_prefix=self.channel_prefix,
        )

    async def stop(self) -> None:
        for subscription in list(self.subscriptions):
            await subscription.close()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Redis change feed stopped")

    async def publish(self, event: ChangeEvent) -> None:
        await self.client.publish(self.channel(event.table), event.model_dump_json())

    async def subscribe(self, tables: Iterable[str] = ()) -> Subscription:
        subscription = RedisSubscription(self, tables, self.queue_size)
        await subscription.open()
        self.subscriptions.append(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self.subscriptions:
            self.subscriptions.remove(subscription)


# Global change feed instance
_feed: Optional[ChangeFeed] = None


def create_change_feed() -> ChangeFeed:
    """Create the change feed selected by configuration."""
    config = get_config()
    if config.realtime.backend == "redis":
        return RedisChangeFeed(
            config.redis,
            channel_prefix=config.realtime.channel_prefix,
            queue_size=config.realtime.queue_size,
        )
    return MemoryChangeFeed(queue_size=config.realtime.queue_size)


def get_change_feed() -> ChangeFeed:
    """Get the global change feed instance."""
    global _feed
    if _feed is None:
        _feed = create_change_feed()
    return _feed


def set_change_feed(feed: Optional[ChangeFeed]) -> None:
    """Set the global change feed instance."""
    global _feed
    _feed = feed
