"""Tests for the notification outbox and dispatchers."""

import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cuehall.models.table import Table, TableStatus
from cuehall.services.notifications import (
    EventType,
    LoggingNotificationDispatcher,
    Notification,
    NotificationDispatcher,
    Outbox,
    RedisNotificationDispatcher,
    Scope,
)


def make_table(**overrides) -> Table:
    values = dict(
        id="t1",
        venue_id="v1",
        table_number=1,
        status=TableStatus.AVAILABLE,
        queue=[],
        invited=[],
        state_version=3,
    )
    values.update(overrides)
    return Table(**values)


class FailingDispatcher(NotificationDispatcher):
    def __init__(self, fail_on: set[EventType]) -> None:
        self.fail_on = fail_on
        self.delivered: list[Notification] = []

    async def publish(self, notification: Notification) -> None:
        if notification.event in self.fail_on:
            raise RuntimeError("socket closed")
        self.delivered.append(notification)


# =============================================================================
# Outbox
# =============================================================================


class TestOutbox:
    def test_channels(self):
        assert Notification(EventType.INVITATION, Scope.USER, "alice").channel == "user:alice"
        assert Notification(EventType.QUEUE_UPDATE, Scope.VENUE, "v1").channel == "venue:v1"
        assert Notification(EventType.DISPUTE_OPENED, Scope.ADMIN, None).channel == "admin:alerts"

    def test_message_shape(self):
        message = Notification(EventType.INVITATION, Scope.USER, "alice", {"tableId": "t1"}).to_message()
        assert message == {"type": "invitation", "payload": {"tableId": "t1"}}

    def test_table_broadcasts_come_first(self):
        outbox = Outbox()
        table = make_table()
        outbox.to_user("alice", EventType.INVITATION, tableId=table.id)
        outbox.table_changed(table, queue=True)

        events = [n.event for n in outbox.drain()]

        assert events == [EventType.TABLE_STATUS_UPDATE, EventType.QUEUE_UPDATE, EventType.INVITATION]

    def test_snapshot_rendered_at_drain(self):
        """Changes made after scheduling, including the version bump, are broadcast."""
        outbox = Outbox()
        table = make_table()
        outbox.table_changed(table)
        table.player1_id = "alice"
        table.state_version = 4

        update = outbox.drain()[0]

        assert update.scope == Scope.VENUE
        assert update.target == "v1"
        assert update.payload["player1Id"] == "alice"
        assert update.payload["stateVersion"] == 4

    def test_one_broadcast_per_table(self):
        outbox = Outbox()
        table = make_table()
        outbox.table_changed(table)
        outbox.table_changed(table, queue=True)
        outbox.table_changed(table)

        events = [n.event for n in outbox.drain()]

        assert events.count(EventType.TABLE_STATUS_UPDATE) == 1
        assert events.count(EventType.QUEUE_UPDATE) == 1

    def test_drain_empties(self):
        outbox = Outbox()
        outbox.to_admins(EventType.DISPUTE_OPENED, tableId="t1")
        assert len(outbox) == 1

        outbox.drain()

        assert len(outbox) == 0
        assert outbox.drain() == []


# =============================================================================
# Dispatchers
# =============================================================================


class TestDispatch:
    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_batch(self):
        dispatcher = FailingDispatcher({EventType.INVITATION})
        batch = [
            Notification(EventType.INVITATION, Scope.USER, "alice"),
            Notification(EventType.GAME_STARTED, Scope.USER, "bob"),
        ]

        delivered = await dispatcher.dispatch(batch)

        assert delivered == 1
        assert [n.target for n in dispatcher.delivered] == ["bob"]

    @pytest.mark.asyncio
    async def test_logging_dispatcher(self):
        delivered = await LoggingNotificationDispatcher().dispatch(
            [Notification(EventType.INVITATION, Scope.USER, "alice")]
        )
        assert delivered == 1


class TestRedisNotificationDispatcher:
    @pytest.mark.asyncio
    async def test_publishes_json(self):
        redis = AsyncMock()
        dispatcher = RedisNotificationDispatcher(redis)

        await dispatcher.publish(Notification(EventType.INVITATION, Scope.USER, "alice", {"tableId": "t1"}))

        channel, message = redis.publish.await_args.args
        assert channel == "user:alice"
        assert json.loads(message) == {"type": "invitation", "payload": {"tableId": "t1"}}

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        redis = AsyncMock()
        redis.publish.side_effect = [RedisConnectionError("reset"), 1]
        dispatcher = RedisNotificationDispatcher(redis, attempts=3)

        await dispatcher.publish(Notification(EventType.GAME_STARTED, Scope.USER, "bob"))

        assert redis.publish.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        redis = AsyncMock()
        redis.publish.side_effect = RedisConnectionError("down")
        dispatcher = RedisNotificationDispatcher(redis, attempts=2)

        delivered = await dispatcher.dispatch([Notification(EventType.GAME_STARTED, Scope.USER, "bob")])

        assert delivered == 0
        assert redis.publish.await_count == 2
