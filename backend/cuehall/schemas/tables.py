"""Table, queue and game-session schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from cuehall.models.game_session import DisputeResolution, SessionStatus, SessionType
from cuehall.models.table import TableStatus
from cuehall.schemas.common import BaseSchema


# =============================================================================
# Requests
# =============================================================================


class VersionedRequest(BaseModel):
    """Body for table operations that may carry the caller's last-seen version."""

    model_config = ConfigDict(populate_by_name=True)

    expected_version: int | None = Field(
        default=None,
        alias="expectedVersion",
        ge=0,
        description="Reject with 409 if the table changed since this version",
    )


class SessionActionRequest(VersionedRequest):
    session_id: str = Field(..., alias="sessionId")


class ConfirmWinRequest(SessionActionRequest):
    winner_id: str = Field(..., alias="winnerId", description="Player whose win is confirmed")


class ResolveDisputeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resolution: DisputeResolution
    winner_id: str | None = Field(default=None, alias="winnerId")


class RemovePlayerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    player_id: str = Field(..., alias="playerId")


# =============================================================================
# Responses
# =============================================================================


class TableResponse(BaseSchema):
    """Observable table state."""

    table_id: str = Field(..., alias="tableId")
    venue_id: str = Field(..., alias="venueId")
    table_number: int = Field(..., alias="tableNumber")
    status: TableStatus
    player1_id: str | None = Field(None, alias="player1Id")
    player2_id: str | None = Field(None, alias="player2Id")
    current_session_id: str | None = Field(None, alias="currentSessionId")
    queue: list[str] = Field(default_factory=list)
    invited: list[str] = Field(default_factory=list)
    state_version: int = Field(..., alias="stateVersion")
    last_game_ended_at: datetime | None = Field(None, alias="lastGameEndedAt")


class QueueJoinResponse(BaseSchema):
    """``position`` is None when the caller was invited straight away."""

    position: int | None = None
    table: TableResponse


class GameSessionResponse(BaseSchema):
    id: str
    table_id: str | None = Field(None, alias="tableId")
    venue_id: str | None = Field(None, alias="venueId")
    session_type: SessionType = Field(..., alias="type")
    status: SessionStatus
    player1_id: str | None = Field(None, alias="player1Id")
    player2_id: str | None = Field(None, alias="player2Id")
    payer_id: str | None = Field(None, alias="payerId")
    claimant_id: str | None = Field(None, alias="claimantId")
    winner_id: str | None = Field(None, alias="winnerId")
    resolution: DisputeResolution | None = None
    cost: int = 0
    reserved_at: datetime | None = Field(None, alias="reservedAt")
    start_time: datetime | None = Field(None, alias="startTime")
    end_time: datetime | None = Field(None, alias="endTime")


class ClearQueueResponse(BaseSchema):
    dropped: list[str]
