"""User endpoints: identity sync, balance and ledger history."""

from fastapi import APIRouter, Query

from cuehall.api.deps import CurrentIdentity, DbSession
from cuehall.models.ledger import LedgerEntryType
from cuehall.schemas import (
    BalanceResponse,
    ErrorResponse,
    LedgerEntryResponse,
    LedgerListResponse,
    UserResponse,
    UserSyncRequest,
)
from cuehall.services.ledger import TokenLedger
from cuehall.services.user import UserService

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/sync", response_model=UserResponse)
async def sync_user(
    identity: CurrentIdentity,
    db: DbSession,
    body: UserSyncRequest | None = None,
):
    """Create or refresh the caller's user record from their verified identity."""
    user = await UserService(db).sync(identity, body.fcm_token if body else None)
    await db.commit()
    return user


@router.get(
    "/me",
    response_model=UserResponse,
    responses={404: {"model": ErrorResponse, "description": "User not synced yet"}},
)
async def get_me(identity: CurrentIdentity, db: DbSession):
    return await UserService(db).get_user(identity.user_id)


@router.get(
    "/me/balance",
    response_model=BalanceResponse,
    responses={404: {"model": ErrorResponse, "description": "User not synced yet"}},
)
async def get_balance(identity: CurrentIdentity, db: DbSession):
    balance = await TokenLedger(db).get_balance(identity.user_id)
    return BalanceResponse(user_id=identity.user_id, balance=balance)


@router.get("/me/ledger", response_model=LedgerListResponse)
async def get_ledger(
    identity: CurrentIdentity,
    db: DbSession,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    entry_type: LedgerEntryType | None = Query(default=None, alias="type"),
):
    """Token movements, newest first."""
    entries = await TokenLedger(db).entries(
        identity.user_id, limit=limit, offset=offset, entry_type=entry_type
    )
    return LedgerListResponse(
        items=[LedgerEntryResponse.model_validate(e) for e in entries],
        limit=limit,
        offset=offset,
    )
