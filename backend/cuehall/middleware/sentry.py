"""Sentry error tracking integration."""

import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from cuehall import __version__

# Business outcomes reported to the caller, not bugs
EXPECTED_ERRORS = {
    "NotFoundError",
    "ForbiddenError",
    "ConflictError",
    "InvalidStateError",
    "InvalidRequestError",
    "InsufficientFundsError",
    "PaymentVerificationError",
    "UnauthorizedError",
    "RequestValidationError",
}


def init_sentry(
    dsn: str | None,
    environment: str = "development",
    traces_sample_rate: float = 0.0,
) -> bool:
    """Initialize Sentry SDK.

    Returns:
        True if Sentry was initialized, False when no DSN is configured
    """
    if not dsn:
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=f"cuehall@{__version__}",
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=traces_sample_rate,
        send_default_pii=False,
        before_send=_before_send,
        before_send_transaction=_before_send_transaction,
    )
    return True


def _before_send(event: dict, hint: dict) -> dict | None:
    """Drop expected business errors."""
    if "exc_info" in hint:
        exc_type, _, _ = hint["exc_info"]
        if exc_type.__name__ in EXPECTED_ERRORS:
            return None
    return event


def _before_send_transaction(event: dict, hint: dict) -> dict | None:
    """Drop health check transactions."""
    if "/health" in event.get("transaction", ""):
        return None
    return event


def set_user_context(user_id: str) -> None:
    sentry_sdk.set_user({"id": user_id})
