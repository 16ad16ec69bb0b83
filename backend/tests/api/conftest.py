"""Fixtures for API tests: the real app with its database, notification and
payment dependencies pointed at the per-test doubles."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from cuehall.api.deps import get_dispatcher, get_identity_verifier, get_payment_gateway
from cuehall.main import app
from cuehall.services.identity import JwtIdentityVerifier
from cuehall.utils.db import get_db
from tests.conftest import TEST_JWT_SECRET, create_user

verifier = JwtIdentityVerifier(TEST_JWT_SECRET)


def auth_headers(user_id: str, *, is_admin: bool = False) -> dict[str, str]:
    return {"Authorization": f"Bearer {verifier.issue(user_id, is_admin=is_admin)}"}


@pytest_asyncio.fixture
async def client(session_factory, dispatcher, gateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app; every request gets its own session."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_identity_verifier] = lambda: verifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin(db):
    return await create_user(db, "root", balance=0, is_admin=True)
