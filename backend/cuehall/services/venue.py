"""Venue registration and management."""

import logging
import math
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cuehall.models.game_session import GameSession, LIVE_SESSION_STATUSES
from cuehall.models.table import Table, TableStatus
from cuehall.models.user import User
from cuehall.models.venue import Venue
from cuehall.services.game_session import GameSessionLifecycle
from cuehall.services.table_machine import TableStateMachine, table_snapshot
from cuehall.utils.errors import (
    ConflictError,
    ErrorCode,
    InvalidRequestError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3963.2
DEFAULT_NEARBY_RADIUS_MILES = 5.0


def distance_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points (haversine)."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = phi2 - phi1
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(a)))


def _validate_coordinates(latitude: float | None, longitude: float | None) -> None:
    if (latitude is None) != (longitude is None):
        raise InvalidRequestError(
            "latitude and longitude must be given together",
            details={"latitude": latitude, "longitude": longitude},
        )
    if latitude is not None and not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise InvalidRequestError(
            "Coordinates out of range",
            details={"latitude": latitude, "longitude": longitude},
        )


class VenueService:
    """Venues and their tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_venue(self, venue_id: str) -> Venue:
        result = await self.session.execute(
            select(Venue)
            .where(Venue.id == venue_id)
            .options(selectinload(Venue.tables))
            .execution_options(populate_existing=True)
        )
        venue = result.scalar_one_or_none()
        if venue is None:
            raise NotFoundError(
                f"Venue not found: {venue_id}",
                code=ErrorCode.VENUE_NOT_FOUND,
                details={"venueId": venue_id},
            )
        return venue

    async def list_venues(self) -> list[Venue]:
        result = await self.session.execute(
            select(Venue).options(selectinload(Venue.tables)).order_by(Venue.name)
        )
        return list(result.scalars().all())

    async def find_nearby(
        self,
        latitude: float,
        longitude: float,
        radius_miles: float = DEFAULT_NEARBY_RADIUS_MILES,
    ) -> list[tuple[Venue, float]]:
        """Venues within ``radius_miles`` of a point, nearest first.

        A latitude/longitude box narrows the query; the great-circle
        distance decides. Venues without coordinates never match.
        """
        _validate_coordinates(latitude, longitude)
        if not radius_miles > 0:
            raise InvalidRequestError(
                "radius must be positive",
                details={"radiusMiles": radius_miles},
            )

        lat_delta = math.degrees(radius_miles / EARTH_RADIUS_MILES)
        stmt = (
            select(Venue)
            .where(
                Venue.latitude.is_not(None),
                Venue.longitude.is_not(None),
                Venue.latitude.between(latitude - lat_delta, latitude + lat_delta),
            )
            .options(selectinload(Venue.tables))
        )
        cos_lat = math.cos(math.radians(latitude))
        if cos_lat > 0:
            lon_delta = lat_delta / cos_lat
            # Skip the longitude bound when the box wraps the antimeridian
            if -180 <= longitude - lon_delta and longitude + lon_delta <= 180:
                stmt = stmt.where(Venue.longitude.between(longitude - lon_delta, longitude + lon_delta))

        result = await self.session.execute(stmt)
        matches = []
        for venue in result.scalars().all():
            distance = distance_miles(latitude, longitude, venue.latitude, venue.longitude)
            if distance <= radius_miles:
                matches.append((venue, distance))
        matches.sort(key=lambda match: match[1])
        return matches

    async def tables_detailed(self, venue_id: str) -> list[dict[str, Any]]:
        """Table snapshots with the venue cost and user details for seats and queue."""
        venue = await self.get_venue(venue_id)
        user_ids = {
            user_id
            for table in venue.tables
            for user_id in (*TableStateMachine.occupants(table), *table.queue)
        }
        users: dict[str, User] = {}
        if user_ids:
            result = await self.session.execute(select(User).where(User.id.in_(user_ids)))
            users = {user.id: user for user in result.scalars().all()}

        def summary(user_id: str) -> dict[str, Any]:
            user = users.get(user_id)
            return {"id": user_id, "displayName": user.display_name if user else None}

        detailed = []
        for table in venue.tables:
            snapshot = table_snapshot(table)
            snapshot["perGameCost"] = venue.per_game_cost
            snapshot["players"] = [summary(u) for u in TableStateMachine.occupants(table)]
            snapshot["queueDetails"] = [summary(u) for u in table.queue]
            detailed.append(snapshot)
        return detailed

    async def create_venue(
        self,
        name: str,
        *,
        address: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        per_game_cost: int = 10,
        table_count: int = 1,
    ) -> Venue:
        """Register a venue with ``table_count`` tables numbered from 1."""
        _validate_coordinates(latitude, longitude)
        if per_game_cost < 0:
            raise InvalidRequestError(
                "per_game_cost must not be negative",
                code=ErrorCode.INVALID_AMOUNT,
                details={"perGameCost": per_game_cost},
            )
        if table_count < 1:
            raise InvalidRequestError(
                "A venue needs at least one table",
                details={"tableCount": table_count},
            )

        venue = Venue(
            name=name,
            address=address,
            latitude=latitude,
            longitude=longitude,
            per_game_cost=per_game_cost,
        )
        venue.tables = [
            Table(table_number=n, status=TableStatus.AVAILABLE, queue=[], invited=[])
            for n in range(1, table_count + 1)
        ]
        self.session.add(venue)
        await self.session.flush()
        logger.info(f"Venue created: id={venue.id} name={name} tables={table_count}")
        return venue

    async def update_per_game_cost(self, venue_id: str, per_game_cost: int) -> Venue:
        """Change the price of new sessions; existing sessions keep their cost."""
        if per_game_cost < 0:
            raise InvalidRequestError(
                "per_game_cost must not be negative",
                code=ErrorCode.INVALID_AMOUNT,
                details={"perGameCost": per_game_cost},
            )
        venue = await self.get_venue(venue_id)
        venue.per_game_cost = per_game_cost
        logger.info(f"Venue cost updated: id={venue_id} cost={per_game_cost}")
        return venue

    async def add_table(self, venue_id: str, device_id: str | None = None) -> Table:
        venue = await self.get_venue(venue_id)
        next_number = max((t.table_number for t in venue.tables), default=0) + 1
        table = Table(
            venue_id=venue.id,
            table_number=next_number,
            device_id=device_id,
            status=TableStatus.AVAILABLE,
            queue=[],
            invited=[],
        )
        self.session.add(table)
        await self.session.flush()
        return table

    async def delete_venue(
        self,
        venue_id: str,
        lifecycle: GameSessionLifecycle,
        *,
        force: bool = False,
    ) -> list[str]:
        """Delete a venue and its tables.

        Live sessions block deletion unless ``force`` is set, in which case
        they are cancelled first. Returns the cancelled session ids.
        """
        venue = await self.get_venue(venue_id)
        table_ids = [t.id for t in venue.tables]

        live: list[GameSession] = []
        if table_ids:
            result = await self.session.execute(
                select(GameSession).where(
                    GameSession.table_id.in_(table_ids),
                    GameSession.status.in_(LIVE_SESSION_STATUSES),
                )
            )
            live = list(result.scalars().all())

        if live and not force:
            raise ConflictError(
                "Venue has live sessions",
                code=ErrorCode.VENUE_HAS_LIVE_SESSIONS,
                details={"venueId": venue_id, "sessionIds": [g.id for g in live]},
            )

        for game in live:
            lifecycle.cancel(None, game, reason="venue_deleted")
            game.table_id = None

        await self.session.delete(venue)
        await self.session.flush()
        logger.warning(f"Venue deleted: id={venue_id} cancelled_sessions={len(live)}")
        return [g.id for g in live]
