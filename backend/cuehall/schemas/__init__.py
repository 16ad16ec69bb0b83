"""Pydantic request/response schemas."""

from cuehall.schemas.common import (
    BaseSchema,
    ErrorDetail,
    ErrorResponse,
    SuccessResponse,
    TimestampSchema,
)
from cuehall.schemas.payments import (
    PaymentIntentResponse,
    TokenPurchaseRequest,
    WebhookAck,
)
from cuehall.schemas.tables import (
    ClearQueueResponse,
    ConfirmWinRequest,
    GameSessionResponse,
    QueueJoinResponse,
    RemovePlayerRequest,
    ResolveDisputeRequest,
    SessionActionRequest,
    TableResponse,
    VersionedRequest,
)
from cuehall.schemas.users import (
    BalanceResponse,
    LedgerEntryResponse,
    LedgerListResponse,
    UserResponse,
    UserSyncRequest,
)
from cuehall.schemas.venues import (
    AddTableRequest,
    CreateVenueRequest,
    DetailedTableResponse,
    NearbyVenueResponse,
    PlayerSummary,
    UpdateCostRequest,
    VenueResponse,
    VenueTableSummary,
)

__all__ = [
    "AddTableRequest",
    "BalanceResponse",
    "BaseSchema",
    "ClearQueueResponse",
    "ConfirmWinRequest",
    "CreateVenueRequest",
    "DetailedTableResponse",
    "ErrorDetail",
    "ErrorResponse",
    "GameSessionResponse",
    "LedgerEntryResponse",
    "LedgerListResponse",
    "NearbyVenueResponse",
    "PaymentIntentResponse",
    "PlayerSummary",
    "QueueJoinResponse",
    "RemovePlayerRequest",
    "ResolveDisputeRequest",
    "SessionActionRequest",
    "SuccessResponse",
    "TableResponse",
    "TimestampSchema",
    "TokenPurchaseRequest",
    "UpdateCostRequest",
    "UserResponse",
    "UserSyncRequest",
    "VenueResponse",
    "VenueTableSummary",
    "WebhookAck",
]
