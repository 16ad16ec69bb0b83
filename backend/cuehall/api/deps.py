"""API dependencies: database session, caller identity and service wiring."""

from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from cuehall.config import get_settings
from cuehall.middleware.sentry import set_user_context
from cuehall.services.admission import AdmissionController
from cuehall.services.identity import Identity, IdentityVerifier, JwtIdentityVerifier
from cuehall.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    RedisNotificationDispatcher,
)
from cuehall.services.payments import PaymentGateway, StripePaymentGateway
from cuehall.utils.db import get_db
from cuehall.utils.errors import ErrorCode, ForbiddenError, UnauthorizedError
from cuehall.utils.redis_client import get_redis

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


def get_identity_verifier() -> IdentityVerifier:
    return JwtIdentityVerifier.from_settings(get_settings())


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    verifier: Annotated[IdentityVerifier, Depends(get_identity_verifier)],
) -> Identity:
    """Verified caller from the bearer token.

    Raises:
        UnauthorizedError: No token, or the token failed verification.
    """
    if not credentials:
        raise UnauthorizedError("Authentication required")

    identity = verifier.verify(credentials.credentials)
    set_user_context(identity.user_id)
    return identity


async def get_admin_identity(
    identity: Annotated[Identity, Depends(get_current_identity)],
) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError(
            "Administrator privileges required",
            code=ErrorCode.ADMIN_REQUIRED,
            details={"userId": identity.user_id},
        )
    return identity


def get_dispatcher() -> NotificationDispatcher:
    """Redis pub/sub when Redis is up, otherwise log-only delivery."""
    redis = get_redis()
    if redis is None:
        return LoggingNotificationDispatcher()
    return RedisNotificationDispatcher(
        redis, attempts=get_settings().notification_publish_attempts
    )


def get_payment_gateway() -> PaymentGateway | None:
    settings = get_settings()
    if not settings.stripe_api_key:
        return None
    return StripePaymentGateway(settings.stripe_api_key, settings.stripe_webhook_secret)


async def get_controller(
    db: Annotated[AsyncSession, Depends(get_db)],
    dispatcher: Annotated[NotificationDispatcher, Depends(get_dispatcher)],
    gateway: Annotated[PaymentGateway | None, Depends(get_payment_gateway)],
) -> AdmissionController:
    return AdmissionController(db, dispatcher=dispatcher, gateway=gateway, settings=get_settings())


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
AdminIdentity = Annotated[Identity, Depends(get_admin_identity)]
Controller = Annotated[AdmissionController, Depends(get_controller)]
Gateway = Annotated[PaymentGateway | None, Depends(get_payment_gateway)]
