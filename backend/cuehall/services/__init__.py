"""Business logic services."""

from cuehall.services.admission import AdmissionController
from cuehall.services.game_session import GameSessionLifecycle
from cuehall.services.identity import Identity, IdentityVerifier, JwtIdentityVerifier
from cuehall.services.ledger import TokenLedger
from cuehall.services.notifications import (
    EventType,
    LoggingNotificationDispatcher,
    Notification,
    NotificationDispatcher,
    Outbox,
    RedisNotificationDispatcher,
)
from cuehall.services.payments import (
    PaymentEvent,
    PaymentGateway,
    PaymentService,
    StripePaymentGateway,
)
from cuehall.services.table_machine import TableStateMachine
from cuehall.services.user import UserService
from cuehall.services.venue import VenueService
from cuehall.services.wait_queue import WaitQueue
from cuehall.services.win_resolution import WinResolutionProtocol

__all__ = [
    "AdmissionController",
    "GameSessionLifecycle",
    "Identity",
    "IdentityVerifier",
    "JwtIdentityVerifier",
    "TokenLedger",
    "EventType",
    "LoggingNotificationDispatcher",
    "Notification",
    "NotificationDispatcher",
    "Outbox",
    "RedisNotificationDispatcher",
    "PaymentEvent",
    "PaymentGateway",
    "PaymentService",
    "StripePaymentGateway",
    "TableStateMachine",
    "UserService",
    "VenueService",
    "WaitQueue",
    "WinResolutionProtocol",
]
