"""Payment endpoints: token purchases and the gateway webhook.

The webhook is unauthenticated; the gateway signature is the only proof of
origin. Verification failures return 400 so the gateway retries delivery.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, Request

from cuehall.api.deps import Controller, CurrentIdentity, Gateway
from cuehall.schemas import (
    ErrorResponse,
    PaymentIntentResponse,
    TokenPurchaseRequest,
    WebhookAck,
)
from cuehall.utils.errors import ErrorCode, ExternalServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post(
    "/tokens",
    response_model=PaymentIntentResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Amount out of range"},
        503: {"model": ErrorResponse, "description": "Payment provider unavailable"},
    },
)
async def create_token_purchase(
    body: TokenPurchaseRequest,
    identity: CurrentIdentity,
    controller: Controller,
):
    """Start a token purchase; tokens are credited when the webhook confirms payment."""
    purchase, intent = await controller.create_token_purchase(identity.user_id, body.amount_cents)
    return PaymentIntentResponse(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        amount=intent.amount,
        currency=intent.currency,
        session_id=purchase.id,
        tokens=purchase.purchased_tokens,
    )


@router.post(
    "/webhook",
    response_model=WebhookAck,
    responses={400: {"model": ErrorResponse, "description": "Signature or metadata verification failed"}},
)
async def payment_webhook(
    request: Request,
    controller: Controller,
    gateway: Gateway,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
):
    if gateway is None:
        raise ExternalServiceError(
            "Card payments are not configured",
            code=ErrorCode.PAYMENTS_DISABLED,
        )

    payload = await request.body()
    event = gateway.verify_webhook(payload, stripe_signature)
    logger.info(f"Payment webhook received: event={event.event_id} type={event.type}")
    await controller.on_payment_event(event)
    return WebhookAck()
