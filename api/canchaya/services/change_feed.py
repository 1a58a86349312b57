"""Change feed: in-process publish/subscribe of row changes.

Routes publish an event after every committed insert, update or delete on
courts, customers and bookings; the expiry sweeper publishes one UPDATE per
booking it cancels. Subscribers (the websocket endpoint, tests) receive
events on their own bounded queue, so one slow reader never blocks a write.

A feed is an ordinary object with an explicit start()/stop() lifecycle. The
application creates one at import time and the lifespan starts and stops it.
Events published while the feed is stopped are dropped.

The Celery worker runs its sweeps in another process. It publishes through
a RedisChangePublisher onto a Redis channel, and the API runs a RedisRelay
that forwards those messages into its own feed.
"""

import asyncio
import contextlib
import enum
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any

import redis
import redis.asyncio as aioredis
from sqlalchemy import inspect

logger = logging.getLogger(__name__)

TABLES = ("courts", "customers", "bookings")


class ChangeType(enum.StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    table: str
    event: ChangeType
    record: dict[str, Any]
    old_record: dict[str, Any] | None = None
    at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "event": self.event.value,
            "record": self.record,
            "old_record": self.old_record,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeEvent":
        if data["table"] not in TABLES:
            raise ValueError(f"Unknown table: {data['table']}")
        return cls(
            table=data["table"],
            event=ChangeType(data["event"]),
            record=data["record"],
            old_record=data.get("old_record"),
        )


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def snapshot(row: Any) -> dict[str, Any]:
    """Loaded column values of an ORM row as JSON-friendly primitives.

    Reads the instance state directly so expired attributes are skipped
    instead of triggering a lazy load.
    """
    state = inspect(row)
    loaded = state.dict
    return {
        attr.key: _plain(loaded[attr.key]) for attr in state.mapper.column_attrs if attr.key in loaded
    }


_STOP = object()


class ChangeFeed:
    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: dict[asyncio.Queue, str | None] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def start(self) -> None:
        self._running = True
        logger.info("Change feed started")

    async def stop(self) -> None:
        self._running = False
        for queue in list(self._subscribers):
            self._offer(queue, _STOP)
        self._subscribers.clear()
        logger.info("Change feed stopped")

    def subscribe(self, table: str | None = None) -> asyncio.Queue:
        """Register a queue for events on one table (or all tables when None)."""
        if table is not None and table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers[queue] = table
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.pop(queue, None)

    def publish(self, event: ChangeEvent) -> int:
        """Fan an event out to matching subscribers. Returns how many received it."""
        if not self._running:
            return 0

        delivered = 0
        for queue, table in list(self._subscribers.items()):
            if table is None or table == event.table:
                self._offer(queue, event)
                delivered += 1
        return delivered

    def publish_record(
        self, table: str, event: ChangeType, record: dict[str, Any], old_record: dict | None = None
    ) -> int:
        return self.publish(ChangeEvent(table=table, event=event, record=record, old_record=old_record))

    def publish_row(self, table: str, event: ChangeType, row: Any, old_record: dict | None = None) -> int:
        return self.publish_record(table, event, snapshot(row), old_record)

    async def listen(self, queue: asyncio.Queue) -> AsyncIterator[ChangeEvent]:
        """Iterate over a subscribed queue until the feed stops, then unsubscribe it."""
        try:
            while True:
                item = await queue.get()
                if item is _STOP:
                    return
                yield item
        finally:
            self.unsubscribe(queue)

    def _offer(self, queue: asyncio.Queue, item: Any) -> None:
        # Full queue: drop the oldest event, the reader re-polls anyway
        if queue.full():
            queue.get_nowait()
            logger.warning("Change feed subscriber lagging, dropped oldest event")
        queue.put_nowait(item)


class RedisChangePublisher:
    """Publishes change events onto a Redis channel from outside the API process.

    Same publish_record signature as ChangeFeed. A Redis outage is logged
    and the event dropped; the rows are already committed.
    """

    def __init__(self, client: redis.Redis, channel: str):
        self.client = client
        self.channel = channel

    def publish_record(
        self, table: str, event: ChangeType, record: dict[str, Any], old_record: dict | None = None
    ) -> int:
        payload = ChangeEvent(table=table, event=event, record=record, old_record=old_record).to_dict()
        try:
            return self.client.publish(self.channel, json.dumps(payload))
        except redis.RedisError:
            logger.warning("Could not publish %s %s change to Redis", table, event, exc_info=True)
            return 0


ChangePublisher = ChangeFeed | RedisChangePublisher


class RedisRelay:
    """Forwards events from a Redis channel into a local ChangeFeed."""

    def __init__(self, feed: ChangeFeed, url: str, channel: str):
        self.feed = feed
        self.url = url
        self.channel = channel
        self._client: aioredis.Redis | None = None
        self._pubsub = None
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._client = aioredis.Redis.from_url(self.url)
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(self.channel)
        self._task = asyncio.create_task(self._run())
        logger.info("Relaying changes from Redis channel %s", self.channel)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def dispatch(self, data: bytes | str) -> int:
        """Publish one raw channel message into the feed. Malformed messages are skipped."""
        try:
            event = ChangeEvent.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring malformed change message: %r", data)
            return 0
        return self.feed.publish(event)

    async def _run(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message["type"] == "message":
                    self.dispatch(message["data"])
        except redis.RedisError:
            logger.exception("Change relay lost its Redis connection")
