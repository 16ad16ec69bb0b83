"""Shared fixtures: a throwaway SQLite database per test, recording
notification dispatcher and a fake payment gateway."""

import json
import os
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from cuehall.config import Settings
from cuehall.models import Base, User
from cuehall.models.venue import Venue
from cuehall.services.admission import AdmissionController
from cuehall.services.notifications import EventType, Notification, NotificationDispatcher
from cuehall.services.payments import PaymentEvent, PaymentGateway, PaymentIntent
from cuehall.services.venue import VenueService
from cuehall.utils.db import create_engine_for, create_session_factory
from cuehall.utils.errors import PaymentVerificationError


# =============================================================================
# Test Settings
# =============================================================================

# PostgreSQL URL for the concurrency tests; SQLite files are used otherwise
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

TEST_JWT_SECRET = "test-secret-key-for-testing-only"
VALID_SIGNATURE = "t=1,v1=valid"


def get_test_settings(database_url: str, **overrides: Any) -> Settings:
    """Get test-specific settings."""
    values: dict[str, Any] = {
        "app_env": "test",
        "app_debug": False,
        "database_url": database_url,
        "jwt_secret_key": TEST_JWT_SECRET,
        "redis_url": None,
        "stripe_api_key": None,
        "cents_per_token": 100,
        "payment_window_seconds": 300,
    }
    values.update(overrides)
    return Settings(**values)


# =============================================================================
# Test Doubles
# =============================================================================


class RecordingDispatcher(NotificationDispatcher):
    """Keeps every published notification in order."""

    def __init__(self) -> None:
        self.published: list[Notification] = []

    async def publish(self, notification: Notification) -> None:
        self.published.append(notification)

    def events(self, event: EventType, target: str | None = None) -> list[Notification]:
        return [
            n
            for n in self.published
            if n.event == event and (target is None or n.target == target)
        ]

    def reset(self) -> None:
        self.published.clear()


class FakePaymentGateway(PaymentGateway):
    """In-memory gateway; webhooks are plain JSON events signed with VALID_SIGNATURE."""

    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        intent_id = f"pi_test_{len(self.created) + 1}"
        self.created.append(
            {
                "id": intent_id,
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        return PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            amount=amount,
            currency=currency,
        )

    def verify_webhook(self, payload: bytes, signature: str | None) -> PaymentEvent:
        if signature != VALID_SIGNATURE:
            raise PaymentVerificationError("Invalid webhook signature")
        event = json.loads(payload)
        obj = event["data"]["object"]
        return PaymentEvent(
            event_id=event["id"],
            type=event["type"],
            payment_intent_id=obj["id"],
            amount=obj.get("amount", 0),
            metadata=obj.get("metadata", {}),
        )


def webhook_payload(
    event_type: str,
    intent_id: str,
    metadata: dict[str, str],
    amount: int = 0,
    event_id: str = "evt_test_1",
) -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "type": event_type,
            "data": {"object": {"id": intent_id, "amount": amount, "metadata": metadata}},
        }
    ).encode()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return get_test_settings(f"sqlite+aiosqlite:///{tmp_path / 'cuehall-test.db'}")


@pytest_asyncio.fixture
async def test_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh schema for each test."""
    engine = create_engine_for(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def controller(db, dispatcher, gateway, test_settings) -> AdmissionController:
    return AdmissionController(db, dispatcher=dispatcher, gateway=gateway, settings=test_settings)


# =============================================================================
# Data Helpers
# =============================================================================


async def create_user(
    session: AsyncSession,
    user_id: str,
    balance: int = 50,
    is_admin: bool = False,
) -> User:
    user = User(
        id=user_id,
        email=f"{user_id}@example.com",
        display_name=user_id.capitalize(),
        is_admin=is_admin,
        token_balance=balance,
        fcm_tokens=[],
    )
    session.add(user)
    await session.commit()
    return user


async def create_venue(
    session: AsyncSession,
    per_game_cost: int = 10,
    table_count: int = 1,
) -> Venue:
    venue = await VenueService(session).create_venue(
        "Corner Pocket",
        address="1 Rack St",
        per_game_cost=per_game_cost,
        table_count=table_count,
    )
    await session.commit()
    return venue


@pytest_asyncio.fixture
async def venue(db) -> Venue:
    return await create_venue(db)


@pytest.fixture
def table_id(venue: Venue) -> str:
    return venue.tables[0].id


@pytest_asyncio.fixture
async def players(db) -> dict[str, User]:
    """alice, bob and carol with 50 tokens each; dave with none."""
    return {
        "alice": await create_user(db, "alice"),
        "bob": await create_user(db, "bob"),
        "carol": await create_user(db, "carol"),
        "dave": await create_user(db, "dave", balance=0),
    }
