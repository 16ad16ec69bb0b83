"""Venue administration schemas."""

from pydantic import BaseModel, ConfigDict, Field

from cuehall.models.table import TableStatus
from cuehall.schemas.common import BaseSchema
from cuehall.schemas.tables import TableResponse


class CreateVenueRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    address: str | None = Field(default=None, max_length=500)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    per_game_cost: int = Field(default=10, alias="perGameCost", ge=0)
    table_count: int = Field(default=1, alias="tableCount", ge=1, le=100)


class UpdateCostRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    per_game_cost: int = Field(..., alias="perGameCost", ge=0)


class AddTableRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_id: str | None = Field(default=None, alias="deviceId", max_length=128)


class VenueTableSummary(BaseSchema):
    id: str
    table_number: int = Field(..., alias="tableNumber")
    status: TableStatus
    device_id: str | None = Field(None, alias="deviceId")


class VenueResponse(BaseSchema):
    id: str
    name: str
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    per_game_cost: int = Field(..., alias="perGameCost")
    tables: list[VenueTableSummary] = Field(default_factory=list)


class NearbyVenueResponse(BaseSchema):
    venue: VenueResponse
    distance_miles: float = Field(..., alias="distanceMiles")


class PlayerSummary(BaseSchema):
    id: str
    display_name: str | None = Field(None, alias="displayName")


class DetailedTableResponse(TableResponse):
    """Table state with the venue's cost and user details for seats and queue."""

    per_game_cost: int = Field(..., alias="perGameCost")
    players: list[PlayerSummary] = Field(default_factory=list)
    queue_details: list[PlayerSummary] = Field(default_factory=list, alias="queueDetails")
