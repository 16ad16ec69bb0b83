"""User and ledger schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from cuehall.models.ledger import LedgerEntryType
from cuehall.schemas.common import BaseSchema, TimestampSchema


class UserSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fcm_token: str | None = Field(default=None, alias="fcmToken", max_length=512)


class UserResponse(TimestampSchema):
    id: str
    email: str | None = None
    display_name: str | None = Field(None, alias="displayName")
    is_admin: bool = Field(False, alias="isAdmin")
    token_balance: int = Field(..., alias="tokenBalance")


class BalanceResponse(BaseSchema):
    user_id: str = Field(..., alias="userId")
    balance: int


class LedgerEntryResponse(BaseSchema):
    id: str
    entry_type: LedgerEntryType = Field(..., alias="type")
    amount: int
    balance_before: int = Field(..., alias="balanceBefore")
    balance_after: int = Field(..., alias="balanceAfter")
    session_id: str | None = Field(None, alias="sessionId")
    description: str | None = None
    created_at: datetime = Field(..., alias="createdAt")


class LedgerListResponse(BaseSchema):
    items: list[LedgerEntryResponse]
    limit: int
    offset: int
