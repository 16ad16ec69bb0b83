"""Payment gateway integration.

``PaymentGateway`` is the seam to the card processor; ``StripePaymentGateway``
is the production adapter. ``PaymentService`` creates payment intents for
token purchases and per-game sessions and settles token purchases from
verified webhook events.

Webhook metadata contract (set on every intent we create):
    userId        paying user
    sessionType   "token_purchase" | "per_game"
    sessionId     GameSession id
    tokensAmount  tokens to credit (token purchases only)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cuehall.config import Settings
from cuehall.models.base import utcnow
from cuehall.models.game_session import GameSession, SessionStatus, SessionType
from cuehall.models.ledger import LedgerEntry, LedgerEntryType
from cuehall.services.ledger import TokenLedger
from cuehall.services.notifications import EventType, Outbox
from cuehall.utils.errors import (
    ConflictError,
    ErrorCode,
    ExternalServiceError,
    InvalidRequestError,
    PaymentVerificationError,
)

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str | None
    amount: int
    currency: str


@dataclass(frozen=True)
class PaymentEvent:
    """A verified gateway event about a payment intent."""

    event_id: str
    type: str
    payment_intent_id: str
    amount: int
    metadata: dict[str, Any] = field(default_factory=dict)
    failure_message: str | None = None

    @property
    def user_id(self) -> str | None:
        return self.metadata.get("userId")

    @property
    def session_id(self) -> str | None:
        return self.metadata.get("sessionId")

    @property
    def session_type(self) -> str | None:
        return self.metadata.get("sessionType")

    def tokens_amount(self) -> int:
        try:
            return int(self.metadata.get("tokensAmount", 0))
        except (TypeError, ValueError):
            raise PaymentVerificationError(
                "Invalid tokensAmount in payment metadata",
                code=ErrorCode.PAYMENT_METADATA_MISMATCH,
                details={"paymentIntentId": self.payment_intent_id},
            )


class PaymentGateway(ABC):
    """Card processor seam."""

    @abstractmethod
    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, signature: str | None) -> PaymentEvent:
        """Check the signature and parse the event; raise PaymentVerificationError."""


class StripePaymentGateway(PaymentGateway):
    """Stripe adapter (PaymentIntents + signed webhooks)."""

    def __init__(self, api_key: str, webhook_secret: str | None) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(stripe.APIConnectionError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _create(self, **params: Any) -> Any:
        return await asyncio.to_thread(stripe.PaymentIntent.create, api_key=self.api_key, **params)

    async def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        try:
            intent = await self._create(
                amount=amount,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent creation failed: {e}")
            raise ExternalServiceError(
                "Payment provider unavailable",
                details={"provider": "stripe", "error": type(e).__name__},
            ) from e

        return PaymentIntent(
            id=intent["id"],
            client_secret=intent.get("client_secret"),
            amount=intent["amount"],
            currency=intent["currency"],
        )

    def verify_webhook(self, payload: bytes, signature: str | None) -> PaymentEvent:
        if not self.webhook_secret or not signature:
            raise PaymentVerificationError("Missing webhook signature")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise PaymentVerificationError("Malformed webhook payload") from e
        except stripe.SignatureVerificationError as e:
            raise PaymentVerificationError("Invalid webhook signature") from e

        obj = event["data"]["object"]
        last_error = obj.get("last_payment_error") or {}
        return PaymentEvent(
            event_id=event["id"],
            type=event["type"],
            payment_intent_id=obj.get("id", ""),
            amount=obj.get("amount", 0) or 0,
            metadata=dict(obj.get("metadata") or {}),
            failure_message=last_error.get("message"),
        )


class PaymentService:
    """Payment intents and token-purchase settlement."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway | None,
        ledger: TokenLedger,
        outbox: Outbox,
        settings: Settings,
    ) -> None:
        self.session = session
        self.gateway = gateway
        self.ledger = ledger
        self.outbox = outbox
        self.settings = settings

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise ExternalServiceError(
                "Card payments are not configured",
                code=ErrorCode.PAYMENTS_DISABLED,
            )
        return self.gateway

    async def create_token_purchase(self, user_id: str, amount_cents: int) -> tuple[GameSession, PaymentIntent]:
        """Create a pending token purchase and its payment intent."""
        if not self.settings.min_purchase_cents <= amount_cents <= self.settings.max_purchase_cents:
            raise InvalidRequestError(
                "Purchase amount out of range",
                code=ErrorCode.INVALID_AMOUNT,
                details={
                    "amountCents": amount_cents,
                    "min": self.settings.min_purchase_cents,
                    "max": self.settings.max_purchase_cents,
                },
            )
        tokens = amount_cents // self.settings.cents_per_token
        if tokens <= 0:
            raise InvalidRequestError(
                "Purchase amount buys no tokens",
                code=ErrorCode.INVALID_AMOUNT,
                details={"amountCents": amount_cents},
            )
        await self.ledger.get_balance(user_id)

        purchase_id = str(uuid4())
        intent = await self._require_gateway().create_payment_intent(
            amount=amount_cents,
            currency=self.settings.payment_currency,
            metadata={
                "userId": user_id,
                "sessionType": SessionType.TOKEN_PURCHASE.value,
                "sessionId": purchase_id,
                "tokensAmount": str(tokens),
            },
            idempotency_key=f"purchase:{purchase_id}",
        )

        purchase = GameSession(
            id=purchase_id,
            session_type=SessionType.TOKEN_PURCHASE,
            status=SessionStatus.PENDING,
            payer_id=user_id,
            player1_id=user_id,
            purchased_tokens=tokens,
            amount_cents=amount_cents,
            payment_intent_id=intent.id,
            reserved_at=utcnow(),
        )
        self.session.add(purchase)
        logger.info(
            f"Token purchase created: user={user_id} tokens={tokens} "
            f"amount={amount_cents} intent={intent.id}"
        )
        return purchase, intent

    async def start_card_payment(self, game: GameSession, user_id: str) -> PaymentIntent:
        """Payment intent for a pending per-game session, settled by webhook.

        Only one intent may be in flight per session; a failed payment
        detaches it so the session can be paid again.
        """
        if game.payment_intent_id:
            raise ConflictError(
                "A card payment is already in progress for this session",
                code=ErrorCode.PAYMENT_IN_PROGRESS,
                details={"sessionId": game.id, "paymentIntentId": game.payment_intent_id},
            )
        amount = game.cost * self.settings.cents_per_token
        intent = await self._require_gateway().create_payment_intent(
            amount=amount,
            currency=self.settings.payment_currency,
            metadata={
                "userId": user_id,
                "sessionType": SessionType.PER_GAME.value,
                "sessionId": game.id,
                "tableId": game.table_id or "",
            },
            idempotency_key=f"game-card:{game.id}:{user_id}",
        )
        game.payment_intent_id = intent.id
        logger.info(f"Card payment started: session={game.id} user={user_id} intent={intent.id}")
        return intent

    async def find_by_intent(self, payment_intent_id: str) -> GameSession | None:
        result = await self.session.execute(
            select(GameSession).where(GameSession.payment_intent_id == payment_intent_id)
        )
        return result.scalar_one_or_none()

    async def settle_token_purchase(self, event: PaymentEvent) -> LedgerEntry:
        """Credit purchased tokens exactly once per payment intent."""
        user_id = event.user_id
        tokens = event.tokens_amount()
        if not user_id or tokens <= 0:
            raise PaymentVerificationError(
                "Token purchase metadata incomplete",
                code=ErrorCode.PAYMENT_METADATA_MISMATCH,
                details={"paymentIntentId": event.payment_intent_id},
            )

        purchase = await self.find_by_intent(event.payment_intent_id)
        if purchase is None and event.session_id:
            purchase = await self.session.get(GameSession, event.session_id)
        if purchase is not None and (
            purchase.payer_id != user_id
            or purchase.session_type != SessionType.TOKEN_PURCHASE
            or (purchase.purchased_tokens is not None and purchase.purchased_tokens != tokens)
        ):
            raise PaymentVerificationError(
                "Payment metadata does not match the purchase record",
                code=ErrorCode.PAYMENT_METADATA_MISMATCH,
                details={"paymentIntentId": event.payment_intent_id},
            )

        entry = await self.ledger.credit(
            user_id,
            tokens,
            LedgerEntryType.TOKEN_PURCHASE,
            idempotency_key=event.payment_intent_id,
            session_id=purchase.id if purchase is not None else event.session_id,
            description=f"Purchased {tokens} tokens",
        )

        if purchase is None:
            # Intent created outside this service; keep a record of it
            purchase = GameSession(
                id=str(uuid4()),
                session_type=SessionType.TOKEN_PURCHASE,
                payer_id=user_id,
                player1_id=user_id,
                purchased_tokens=tokens,
                amount_cents=event.amount,
                payment_intent_id=event.payment_intent_id,
                reserved_at=utcnow(),
                status=SessionStatus.COMPLETED,
                end_time=utcnow(),
            )
            self.session.add(purchase)
            logger.warning(f"Token purchase record created from webhook: intent={event.payment_intent_id}")
        elif purchase.status != SessionStatus.COMPLETED:
            purchase.status = SessionStatus.COMPLETED
            purchase.payment_intent_id = event.payment_intent_id
            purchase.end_time = utcnow()

        self.outbox.to_user(
            user_id,
            EventType.TOKEN_BALANCE_UPDATE,
            balance=entry.balance_after,
            change=entry.amount,
            paymentIntentId=event.payment_intent_id,
        )
        return entry

    async def credit_unapplied_payment(self, game: GameSession, event: PaymentEvent) -> LedgerEntry | None:
        """Card charge for a session that can no longer use it.

        The charged amount is credited as tokens, keyed by the intent so a
        replayed webhook credits once, and admins are alerted.
        """
        existing = await self.ledger.find_entry(event.payment_intent_id)
        if existing is not None:
            return existing

        tokens = event.amount // self.settings.cents_per_token
        entry = None
        if tokens > 0:
            entry = await self.ledger.credit(
                event.user_id,
                tokens,
                LedgerEntryType.CARD_CREDIT,
                idempotency_key=event.payment_intent_id,
                session_id=game.id,
                description=f"Card payment for {game.status.value} session credited",
            )
            self.outbox.to_user(
                event.user_id,
                EventType.TOKEN_BALANCE_UPDATE,
                balance=entry.balance_after,
                change=entry.amount,
                paymentIntentId=event.payment_intent_id,
            )
        self.outbox.to_admins(
            EventType.UNAPPLIED_PAYMENT,
            paymentIntentId=event.payment_intent_id,
            sessionId=game.id,
            sessionStatus=game.status.value,
            userId=event.user_id,
            amount=event.amount,
            creditedTokens=tokens,
        )
        logger.warning(
            f"Unapplied card payment credited: session={game.id} status={game.status.value} "
            f"intent={event.payment_intent_id} user={event.user_id} tokens={tokens}"
        )
        return entry

    async def fail_payment(self, event: PaymentEvent) -> None:
        """Cancel a failed token purchase, or free a session for another attempt."""
        record = await self.find_by_intent(event.payment_intent_id)
        if record is not None and record.status == SessionStatus.PENDING:
            if record.session_type == SessionType.TOKEN_PURCHASE:
                record.status = SessionStatus.CANCELLED
                record.end_time = utcnow()
            else:
                record.payment_intent_id = None
        if event.user_id:
            self.outbox.to_user(
                event.user_id,
                EventType.PAYMENT_FAILED,
                paymentIntentId=event.payment_intent_id,
                sessionType=event.session_type,
                message=event.failure_message,
            )
        logger.warning(
            f"Payment failed: intent={event.payment_intent_id} "
            f"user={event.user_id} reason={event.failure_message}"
        )
