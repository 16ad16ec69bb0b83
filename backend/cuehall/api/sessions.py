"""Game session endpoints: paying for a reserved session and reading it back."""

from fastapi import APIRouter

from cuehall.api.deps import Controller, CurrentIdentity
from cuehall.schemas import ErrorResponse, GameSessionResponse, PaymentIntentResponse
from cuehall.utils.errors import ErrorCode, ForbiddenError

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.get(
    "/{session_id}",
    response_model=GameSessionResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Not a participant"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
async def get_session(session_id: str, identity: CurrentIdentity, controller: Controller):
    game = await controller.get_session(session_id)
    if not identity.is_admin and identity.user_id not in (*game.players, game.payer_id):
        raise ForbiddenError(
            "Not a participant of this session",
            code=ErrorCode.NOT_A_PARTICIPANT,
            details={"sessionId": session_id},
        )
    return game


@router.post(
    "/{session_id}/confirm-payment",
    response_model=GameSessionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Insufficient tokens"},
        403: {"model": ErrorResponse, "description": "Not a participant"},
        409: {"model": ErrorResponse, "description": "Session is not pending"},
    },
)
async def confirm_payment(session_id: str, identity: CurrentIdentity, controller: Controller):
    """Pay the session cost from the token balance and start the game."""
    return await controller.confirm_payment(session_id, identity.user_id)


@router.post(
    "/{session_id}/card-payment",
    response_model=PaymentIntentResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Not a participant"},
        409: {"model": ErrorResponse, "description": "Session is not pending"},
        503: {"model": ErrorResponse, "description": "Payment provider unavailable"},
    },
)
async def start_card_payment(session_id: str, identity: CurrentIdentity, controller: Controller):
    """Create a card payment intent; the game starts when the webhook settles it."""
    intent = await controller.start_card_payment(session_id, identity.user_id)
    return PaymentIntentResponse(
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        amount=intent.amount,
        currency=intent.currency,
        session_id=session_id,
    )
