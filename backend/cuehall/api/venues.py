"""Venue endpoints. Reads are open to any signed-in user; writes are admin-only."""

from fastapi import APIRouter, Query

from cuehall.api.deps import AdminIdentity, Controller, CurrentIdentity, DbSession
from cuehall.schemas import (
    AddTableRequest,
    CreateVenueRequest,
    DetailedTableResponse,
    ErrorResponse,
    NearbyVenueResponse,
    SuccessResponse,
    UpdateCostRequest,
    VenueResponse,
    VenueTableSummary,
)
from cuehall.services.venue import DEFAULT_NEARBY_RADIUS_MILES, VenueService

router = APIRouter(prefix="/venues", tags=["Venues"])


@router.get("", response_model=list[VenueResponse])
async def list_venues(_identity: CurrentIdentity, db: DbSession):
    return await VenueService(db).list_venues()


@router.get("/nearby", response_model=list[NearbyVenueResponse])
async def nearby_venues(
    _identity: CurrentIdentity,
    db: DbSession,
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius_miles: float = Query(
        default=DEFAULT_NEARBY_RADIUS_MILES, alias="radiusMiles", gt=0, le=500
    ),
):
    """Venues within the radius, nearest first."""
    matches = await VenueService(db).find_nearby(lat, lon, radius_miles)
    return [
        NearbyVenueResponse(
            venue=VenueResponse.model_validate(venue),
            distance_miles=round(distance, 3),
        )
        for venue, distance in matches
    ]


@router.get(
    "/{venue_id}",
    response_model=VenueResponse,
    responses={404: {"model": ErrorResponse, "description": "Venue not found"}},
)
async def get_venue(venue_id: str, _identity: CurrentIdentity, db: DbSession):
    return await VenueService(db).get_venue(venue_id)


@router.get(
    "/{venue_id}/tables-detailed",
    response_model=list[DetailedTableResponse],
    responses={404: {"model": ErrorResponse, "description": "Venue not found"}},
)
async def tables_detailed(venue_id: str, _identity: CurrentIdentity, db: DbSession):
    return await VenueService(db).tables_detailed(venue_id)


@router.post("", response_model=VenueResponse, status_code=201)
async def create_venue(body: CreateVenueRequest, _admin: AdminIdentity, db: DbSession):
    service = VenueService(db)
    venue = await service.create_venue(
        body.name,
        address=body.address,
        latitude=body.latitude,
        longitude=body.longitude,
        per_game_cost=body.per_game_cost,
        table_count=body.table_count,
    )
    await db.commit()
    return await service.get_venue(venue.id)


@router.put(
    "/{venue_id}/cost",
    response_model=VenueResponse,
    responses={404: {"model": ErrorResponse, "description": "Venue not found"}},
)
async def update_per_game_cost(
    venue_id: str,
    body: UpdateCostRequest,
    _admin: AdminIdentity,
    db: DbSession,
):
    """New cost applies to sessions created from now on."""
    service = VenueService(db)
    await service.update_per_game_cost(venue_id, body.per_game_cost)
    await db.commit()
    return await service.get_venue(venue_id)


@router.post(
    "/{venue_id}/tables",
    response_model=VenueTableSummary,
    status_code=201,
    responses={404: {"model": ErrorResponse, "description": "Venue not found"}},
)
async def add_table(
    venue_id: str,
    _admin: AdminIdentity,
    db: DbSession,
    body: AddTableRequest | None = None,
):
    table = await VenueService(db).add_table(venue_id, body.device_id if body else None)
    await db.commit()
    return table


@router.delete(
    "/{venue_id}",
    response_model=SuccessResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Venue not found"},
        409: {"model": ErrorResponse, "description": "Venue has live sessions"},
    },
)
async def delete_venue(
    venue_id: str,
    _admin: AdminIdentity,
    controller: Controller,
    force: bool = Query(default=False, description="Cancel live sessions instead of refusing"),
):
    cancelled = await controller.admin_delete_venue(venue_id, force=force)
    return SuccessResponse(
        message=f"Venue deleted; {len(cancelled)} live session(s) cancelled"
    )
