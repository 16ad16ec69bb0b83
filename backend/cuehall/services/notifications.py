"""Real-time notifications.

Operations collect notifications in an ``Outbox`` while they mutate state; the
outbox is drained and handed to a ``NotificationDispatcher`` only after the
transaction commits, so clients never see a state that was rolled back.
Delivery failures are logged and never fail the operation.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cuehall.models.table import Table
from cuehall.services.table_machine import table_snapshot
from cuehall.utils.json_utils import json_dumps

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Broadcast topics."""

    # Venue-scoped
    TABLE_STATUS_UPDATE = "tableStatusUpdate"
    QUEUE_UPDATE = "queueUpdate"

    # User-scoped
    TOKEN_BALANCE_UPDATE = "tokenBalanceUpdate"
    INVITATION = "invitation"
    WIN_CLAIMED = "winClaimed"
    WIN_CONFIRMED = "winConfirmed"
    WIN_DISPUTED = "winDisputed"
    GAME_STARTED = "gameStarted"
    SESSION_CANCELLED = "sessionCancelled"
    QUEUE_DROPPED = "queueDropped"
    QUEUE_DISPLACED = "queueDisplaced"
    PAYMENT_FAILED = "paymentFailed"

    # Admin channel
    DISPUTE_OPENED = "disputeOpened"
    UNAPPLIED_PAYMENT = "unappliedPayment"


class Scope(str, Enum):
    VENUE = "venue"
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class Notification:
    """A single message for one channel."""

    event: EventType
    scope: Scope
    target: str | None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def channel(self) -> str:
        if self.scope == Scope.ADMIN:
            return "admin:alerts"
        return f"{self.scope.value}:{self.target}"

    def to_message(self) -> dict[str, Any]:
        return {"type": self.event.value, "payload": self.payload}


class Outbox:
    """Notifications collected during one unit of work."""

    def __init__(self) -> None:
        self._messages: list[Notification] = []
        self._tables: dict[str, Table] = {}
        self._queues: set[str] = set()

    def __len__(self) -> int:
        return len(self._messages) + len(self._tables) + len(self._queues)

    def to_user(self, user_id: str, event: EventType, **payload: Any) -> None:
        self._messages.append(Notification(event, Scope.USER, user_id, payload))

    def to_admins(self, event: EventType, **payload: Any) -> None:
        self._messages.append(Notification(event, Scope.ADMIN, None, payload))

    def table_changed(self, table: Table, *, queue: bool = False) -> None:
        """Schedule a venue broadcast of the table's post-commit snapshot."""
        self._tables[table.id] = table
        if queue:
            self._queues.add(table.id)

    def clear(self) -> None:
        self._messages.clear()
        self._tables.clear()
        self._queues.clear()

    def drain(self) -> list[Notification]:
        """Render pending notifications and empty the outbox.

        Table snapshots are rendered here, after commit, so they carry the
        committed ``state_version``.
        """
        rendered: list[Notification] = []
        for table_id, table in self._tables.items():
            snapshot = table_snapshot(table)
            rendered.append(
                Notification(EventType.TABLE_STATUS_UPDATE, Scope.VENUE, table.venue_id, snapshot)
            )
            if table_id in self._queues:
                rendered.append(
                    Notification(
                        EventType.QUEUE_UPDATE,
                        Scope.VENUE,
                        table.venue_id,
                        {
                            "tableId": table.id,
                            "queue": snapshot["queue"],
                            "stateVersion": snapshot["stateVersion"],
                        },
                    )
                )
        rendered.extend(self._messages)
        self.clear()
        return rendered


class NotificationDispatcher(ABC):
    """Delivers notifications to connected clients."""

    @abstractmethod
    async def publish(self, notification: Notification) -> None:
        """Deliver one notification; may raise."""

    async def dispatch(self, notifications: list[Notification]) -> int:
        """Deliver a batch, logging failures. Returns the delivered count."""
        delivered = 0
        for notification in notifications:
            try:
                await self.publish(notification)
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Notification delivery failed: event={notification.event.value} "
                    f"channel={notification.channel} error={e}"
                )
        return delivered


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Log-only delivery, used when no broadcast channel is configured."""

    async def publish(self, notification: Notification) -> None:
        logger.debug(
            f"Notification {notification.event.value} -> {notification.channel}"
        )


class RedisNotificationDispatcher(NotificationDispatcher):
    """Publishes to Redis pub/sub channels (``venue:{id}``, ``user:{id}``, ``admin:alerts``)."""

    def __init__(self, redis: Redis, attempts: int = 3) -> None:
        self.redis = redis
        self.attempts = max(1, attempts)

    async def publish(self, notification: Notification) -> None:
        message = json_dumps(notification.to_message())
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
            retry=retry_if_exception_type((RedisError, OSError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                await self.redis.publish(notification.channel, message)
