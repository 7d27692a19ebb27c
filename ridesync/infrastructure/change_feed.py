"""
Row-level change feed.

The record store publishes a ``ChangeEvent`` after every committed write;
engines subscribe per table and event type.  Two transports:

* ``LocalChangeFeed``  -- in-process fan-out, used by a single API worker
  and by the test-suite.
* ``RedisChangeFeed``  -- Redis pub/sub, one channel per table, so every
  API process sees every write.  Reconnects with exponential backoff and
  reports each reconnect through ``on_gap`` since events published while
  disconnected are lost.

Delivery order per subscription is the publish order.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable, Optional, Union

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ridesync.domain.entities import ChangeEvent
from ridesync.domain.enums import ChangeType, Table

logger = logging.getLogger(__name__)

EventCallback = Callable[[ChangeEvent], Union[None, Awaitable[None]]]
GapCallback = Callable[[], Union[None, Awaitable[None]]]


async def _maybe_await(result) -> None:
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Handle returned by ``ChangeFeed.subscribe``; closing it unsubscribes."""

    def __init__(
        self,
        feed: "ChangeFeed",
        table: Table,
        event_types: Iterable[ChangeType],
        callback: EventCallback,
        on_gap: Optional[GapCallback] = None,
    ):
        self.id = str(uuid.uuid4())
        self.feed = feed
        self.table = table
        self.event_types = frozenset(event_types)
        self.callback = callback
        self.on_gap = on_gap
        self.closed = False

    def accepts(self, event: ChangeEvent) -> bool:
        return (
            not self.closed
            and event.table == self.table
            and event.type in self.event_types
        )

    async def deliver(self, event: ChangeEvent) -> None:
        try:
            await _maybe_await(self.callback(event))
        except Exception:
            logger.exception(
                "Subscriber %s failed handling %s on %s",
                self.id, event.type.value, event.table.value,
            )

    async def notify_gap(self) -> None:
        if self.on_gap is None:
            return
        try:
            await _maybe_await(self.on_gap())
        except Exception:
            logger.exception("Gap handler of subscriber %s failed", self.id)

    async def close(self) -> None:
        if not self.closed:
            await self.feed.unsubscribe(self)

    # context-manager support
    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()


class ChangeFeed(ABC):
    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None: ...

    @abstractmethod
    async def subscribe(
        self,
        table: Table,
        event_types: Iterable[ChangeType],
        callback: EventCallback,
        on_gap: Optional[GapCallback] = None,
    ) -> Subscription: ...

    @abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None: ...

    async def close(self) -> None:
        """Release transport resources."""


# ── In-process ────────────────────────────────────────────────────────


class LocalChangeFeed(ChangeFeed):
    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions.values()):
            if sub.accepts(event):
                await sub.deliver(event)

    async def subscribe(self, table, event_types, callback, on_gap=None) -> Subscription:
        sub = Subscription(self, table, event_types, callback, on_gap)
        self._subscriptions[sub.id] = sub
        logger.debug("Local subscription %s opened on %s", sub.id, table.value)
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.closed = True
        if self._subscriptions.pop(subscription.id, None) is not None:
            logger.debug("Local subscription %s closed", subscription.id)

    async def close(self) -> None:
        for sub in list(self._subscriptions.values()):
            await self.unsubscribe(sub)


# ── Redis pub/sub ─────────────────────────────────────────────────────


class RedisChangeFeed(ChangeFeed):
    def __init__(
        self,
        client: aioredis.Redis,
        channel_prefix: str = "changes",
        reconnect_delay: float = 0.5,
        max_reconnect_delay: float = 10.0,
    ):
        self.redis = client
        self.channel_prefix = channel_prefix
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self._tasks: dict[str, asyncio.Task] = {}

    def channel(self, table: Table) -> str:
        return f"{self.channel_prefix}:{table.value}"

    async def publish(self, event: ChangeEvent) -> None:
        await self.redis.publish(self.channel(event.table), event.model_dump_json())

    async def subscribe(self, table, event_types, callback, on_gap=None) -> Subscription:
        sub = Subscription(self, table, event_types, callback, on_gap)
        # Subscribe before returning so no event published afterwards is missed.
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel(table))
        self._tasks[sub.id] = asyncio.create_task(self._listen(sub, pubsub))
        logger.info("Redis subscription %s opened on %s", sub.id, self.channel(table))
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.closed = True
        task = self._tasks.pop(subscription.id, None)
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Redis subscription %s closed", subscription.id)

    async def close(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
        await self.redis.aclose()

    # ── Internals ─────────────────────────────────────────────────────

    async def _listen(self, sub: Subscription, pubsub) -> None:
        delay = self.reconnect_delay
        while not sub.closed:
            try:
                if pubsub is None:
                    pubsub = self.redis.pubsub()
                    await pubsub.subscribe(self.channel(sub.table))
                    logger.info("Redis subscription %s reconnected", sub.id)
                    delay = self.reconnect_delay
                    await sub.notify_gap()
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    await self._dispatch(sub, message["data"])
                logger.warning("Redis subscription %s stream ended", sub.id)
                await asyncio.sleep(delay)
            except (RedisError, OSError) as exc:
                logger.warning(
                    "Redis subscription %s dropped (%s); retrying in %.1fs",
                    sub.id, exc, delay,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_reconnect_delay)
            finally:
                if pubsub is not None:
                    try:
                        await pubsub.aclose()
                    except (RedisError, OSError):
                        logger.debug("Ignoring error closing pubsub of %s", sub.id)
                    pubsub = None

    async def _dispatch(self, sub: Subscription, raw: str) -> None:
        try:
            event = ChangeEvent.model_validate(json.loads(raw))
        except ValueError:
            logger.warning("Discarding malformed change event on %s", sub.table.value)
            return
        if sub.accepts(event):
            await sub.deliver(event)
