"""
Change-feed transport tests.

1. Local fan-out preserves publish order and filters by table / type.
2. Closing a subscription stops delivery.
3. Redis transport publishes JSON per table channel and reports gaps
   after reconnecting (Redis mocked).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ridesync.domain.entities import ChangeEvent, RideRequest
from ridesync.domain.enums import ChangeType, RideStatus, Table
from ridesync.infrastructure.change_feed import LocalChangeFeed, RedisChangeFeed

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def ride_event(ride_id: str, change: ChangeType = ChangeType.INSERT) -> ChangeEvent:
    ride = RideRequest(
        id=ride_id,
        rider_id="rider-1",
        pickup_location="123 Main St",
        destination="456 Oak Ave",
        status=RideStatus.REQUESTED,
        created_at=NOW,
    )
    if change == ChangeType.DELETE:
        return ChangeEvent(table=Table.RIDE_REQUESTS, type=change, old=ride)
    return ChangeEvent(table=Table.RIDE_REQUESTS, type=change, new=ride)


class TestChangeEvent:
    def test_json_round_trip_restores_typed_rows(self):
        event = ride_event("r1")
        parsed = ChangeEvent.model_validate_json(event.model_dump_json())
        assert isinstance(parsed.new, RideRequest)
        assert parsed == event

    def test_record_of_delete_is_old_row(self):
        event = ride_event("r1", ChangeType.DELETE)
        assert event.record.id == "r1"
        assert event.new is None


class TestLocalChangeFeed:
    @pytest.mark.asyncio
    async def test_delivers_in_publish_order(self):
        feed = LocalChangeFeed()
        received = []
        await feed.subscribe(
            Table.RIDE_REQUESTS, [ChangeType.INSERT], lambda e: received.append(e.new.id)
        )
        for ride_id in ("r1", "r2", "r3"):
            await feed.publish(ride_event(ride_id))
        assert received == ["r1", "r2", "r3"]

    @pytest.mark.asyncio
    async def test_filters_by_event_type_and_table(self):
        feed = LocalChangeFeed()
        callback = AsyncMock()
        await feed.subscribe(Table.RIDE_REQUESTS, [ChangeType.UPDATE], callback)
        await feed.subscribe(Table.ACTIVITY_LOGS, [ChangeType.INSERT], callback)

        await feed.publish(ride_event("r1", ChangeType.INSERT))
        callback.assert_not_awaited()

        await feed.publish(ride_event("r1", ChangeType.UPDATE))
        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_delivery(self):
        feed = LocalChangeFeed()
        callback = AsyncMock()
        async with await feed.subscribe(
            Table.RIDE_REQUESTS, [ChangeType.INSERT], callback
        ) as sub:
            assert feed.subscriber_count == 1
        assert sub.closed
        assert feed.subscriber_count == 0

        await feed.publish(ride_event("r1"))
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_starve_others(self):
        feed = LocalChangeFeed()
        healthy = AsyncMock()
        await feed.subscribe(
            Table.RIDE_REQUESTS, [ChangeType.INSERT], AsyncMock(side_effect=RuntimeError)
        )
        await feed.subscribe(Table.RIDE_REQUESTS, [ChangeType.INSERT], healthy)

        await feed.publish(ride_event("r1"))
        healthy.assert_awaited_once()


class _FakePubSub:
    """Yields *messages*, then either drops the connection or idles."""

    def __init__(self, messages, drop: bool = False):
        self.messages = messages
        self.drop = drop
        self.subscribe = AsyncMock()
        self.aclose = AsyncMock()

    async def listen(self):
        yield {"type": "subscribe", "data": 1}
        for message in self.messages:
            yield {"type": "message", "data": message}
        if self.drop:
            raise RedisConnectionError("connection lost")
        await asyncio.Event().wait()


class TestRedisChangeFeed:
    @pytest.mark.asyncio
    async def test_publish_uses_table_channel(self):
        client = MagicMock()
        client.publish = AsyncMock(return_value=1)
        feed = RedisChangeFeed(client)

        event = ride_event("r1")
        await feed.publish(event)

        client.publish.assert_awaited_once_with(
            "changes:ride_requests", event.model_dump_json()
        )

    @pytest.mark.asyncio
    async def test_dispatches_messages_and_reports_gap_after_reconnect(self):
        first = _FakePubSub([ride_event("r1").model_dump_json()], drop=True)
        second = _FakePubSub(["not json", ride_event("r2").model_dump_json()])
        client = MagicMock()
        client.pubsub = MagicMock(side_effect=[first, second])
        feed = RedisChangeFeed(client, reconnect_delay=0)

        received = []
        done = asyncio.Event()
        gaps = AsyncMock()

        def on_event(event):
            received.append(event.new.id)
            if len(received) == 2:
                done.set()

        sub = await feed.subscribe(
            Table.RIDE_REQUESTS, [ChangeType.INSERT], on_event, on_gap=gaps
        )
        first.subscribe.assert_awaited_once_with("changes:ride_requests")

        await asyncio.wait_for(done.wait(), timeout=2)
        await sub.close()

        assert received == ["r1", "r2"]
        gaps.assert_awaited_once()
        first.aclose.assert_awaited()
        second.aclose.assert_awaited()
        second.subscribe.assert_awaited_once_with("changes:ride_requests")
