"""Table status state machine and occupant slots.

Owns the legal status transitions, the two player slots, and the optimistic
version check. Persistence of the version bump is handled by the mapper
(``Table.state_version`` is the mapper's ``version_id_col``).
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cuehall.models.base import utcnow
from cuehall.models.game_session import GameSession
from cuehall.models.table import Table, TableStatus
from cuehall.utils.errors import (
    ConflictError,
    ErrorCode,
    InvalidStateError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[TableStatus, frozenset[TableStatus]] = {
    TableStatus.AVAILABLE: frozenset(
        {TableStatus.OCCUPIED, TableStatus.IN_PLAY, TableStatus.OUT_OF_ORDER}
    ),
    TableStatus.OCCUPIED: frozenset(
        {TableStatus.IN_PLAY, TableStatus.AVAILABLE, TableStatus.OUT_OF_ORDER}
    ),
    TableStatus.IN_PLAY: frozenset(
        {
            TableStatus.AWAITING_CONFIRMATION,
            TableStatus.AVAILABLE,
            TableStatus.OUT_OF_ORDER,
        }
    ),
    TableStatus.AWAITING_CONFIRMATION: frozenset(
        {TableStatus.AVAILABLE, TableStatus.MAINTENANCE, TableStatus.OUT_OF_ORDER}
    ),
    TableStatus.MAINTENANCE: frozenset(
        {TableStatus.AVAILABLE, TableStatus.OUT_OF_ORDER}
    ),
    TableStatus.OUT_OF_ORDER: frozenset({TableStatus.AVAILABLE}),
}

# Statuses in which nobody is admitted from the queue
ADMISSION_CLOSED = frozenset(
    {
        TableStatus.AWAITING_CONFIRMATION,
        TableStatus.MAINTENANCE,
        TableStatus.OUT_OF_ORDER,
    }
)

# Statuses where the queue itself is frozen
QUEUE_CLOSED = frozenset({TableStatus.MAINTENANCE, TableStatus.OUT_OF_ORDER})

# Statuses without a running game
IDLE_STATUSES = frozenset({TableStatus.AVAILABLE, TableStatus.OCCUPIED})


def can_transition(current: TableStatus, target: TableStatus) -> bool:
    return current == target or target in ALLOWED_TRANSITIONS[current]


def table_snapshot(table: Table) -> dict[str, Any]:
    """Client-facing view of a table, as broadcast on status updates."""
    return {
        "tableId": table.id,
        "venueId": table.venue_id,
        "tableNumber": table.table_number,
        "status": table.status.value,
        "player1Id": table.player1_id,
        "player2Id": table.player2_id,
        "currentSessionId": table.current_session_id,
        "queue": list(table.queue),
        "invited": list(table.invited),
        "stateVersion": table.state_version,
        "lastGameEndedAt": table.last_game_ended_at,
    }


class TableStateMachine:
    """Loads tables and applies validated status and slot changes."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_table(
        self,
        table_id: str,
        expected_version: int | None = None,
    ) -> Table:
        """Load a table with fresh column values.

        Raises:
            NotFoundError: unknown table
            ConflictError: ``expected_version`` given and stale
        """
        result = await self.session.execute(
            select(Table)
            .where(Table.id == table_id)
            .options(selectinload(Table.venue))
            .execution_options(populate_existing=True)
        )
        table = result.scalar_one_or_none()
        if table is None:
            raise NotFoundError(
                f"Table not found: {table_id}",
                code=ErrorCode.TABLE_NOT_FOUND,
                details={"tableId": table_id},
            )
        self.check_version(table, expected_version)
        return table

    async def current_session(self, table: Table) -> GameSession | None:
        """The session referenced by ``current_session_id``.

        A session already added or changed in this unit of work is returned
        as is; anything else is re-read so another writer's commit is seen.
        """
        session_id = table.current_session_id
        if session_id is None:
            return None
        for obj in self.session.new:
            if isinstance(obj, GameSession) and obj.id == session_id:
                return obj
        game = await self.session.get(GameSession, session_id)
        if game is not None and not self.session.is_modified(game):
            await self.session.refresh(game)
        return game

    @staticmethod
    def check_version(table: Table, expected_version: int | None) -> None:
        if expected_version is not None and table.state_version != expected_version:
            raise ConflictError(
                "Table state changed; reload and retry",
                details={
                    "tableId": table.id,
                    "expectedVersion": expected_version,
                    "currentVersion": table.state_version,
                },
            )

    @staticmethod
    def transition(table: Table, target: TableStatus) -> None:
        """Move the table to ``target`` or raise InvalidStateError."""
        current = table.status
        if current == target:
            return
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(
                f"Cannot move table from {current.value} to {target.value}",
                details={
                    "tableId": table.id,
                    "from": current.value,
                    "to": target.value,
                },
            )
        table.status = target
        logger.debug(f"Table {table.id} status {current.value} -> {target.value}")

    @staticmethod
    def require_status(table: Table, *allowed: TableStatus) -> None:
        if table.status not in allowed:
            raise InvalidStateError(
                f"Table is {table.status.value}",
                code=ErrorCode.TABLE_UNAVAILABLE,
                details={
                    "tableId": table.id,
                    "status": table.status.value,
                    "allowed": [s.value for s in allowed],
                },
            )

    @staticmethod
    def touch(table: Table) -> None:
        """Force an UPDATE so the version check runs even without other changes."""
        table.updated_at = utcnow()

    # =========================================================================
    # Slots
    # =========================================================================

    @staticmethod
    def occupants(table: Table) -> list[str]:
        return [p for p in (table.player1_id, table.player2_id) if p]

    @staticmethod
    def slot_of(table: Table, user_id: str) -> int | None:
        if table.player1_id == user_id:
            return 1
        if table.player2_id == user_id:
            return 2
        return None

    @staticmethod
    def open_slot(table: Table) -> int | None:
        if table.player1_id is None:
            return 1
        if table.player2_id is None:
            return 2
        return None

    @staticmethod
    def other_occupant(table: Table, user_id: str) -> str | None:
        if table.player1_id == user_id:
            return table.player2_id
        if table.player2_id == user_id:
            return table.player1_id
        return None

    def seat(self, table: Table, user_id: str) -> int:
        """Place a user in the first open slot."""
        slot = self.open_slot(table)
        if slot is None:
            raise ConflictError(
                "Table has no open slot",
                code=ErrorCode.NO_OPEN_SLOT,
                details={"tableId": table.id},
            )
        if slot == 1:
            table.player1_id = user_id
        else:
            table.player2_id = user_id
        return slot

    def vacate(self, table: Table, user_id: str) -> None:
        """Clear a user's slot and invitation, then compact slots."""
        if table.player1_id == user_id:
            table.player1_id = None
        if table.player2_id == user_id:
            table.player2_id = None
        if user_id in table.invited:
            table.invited = [u for u in table.invited if u != user_id]
        self.compact(table)

    @staticmethod
    def compact(table: Table) -> None:
        """A lone occupant always sits in player1."""
        if table.player1_id is None and table.player2_id is not None:
            table.player1_id, table.player2_id = table.player2_id, None

    @staticmethod
    def retain_winner(table: Table, winner_id: str) -> None:
        """Winner moves to player1, the other slot is cleared."""
        table.player1_id = winner_id
        table.player2_id = None
        table.invited = []

    def settle_idle(self, table: Table) -> None:
        """Status for a table with no running game.

        ``occupied`` while someone holds an unaccepted invitation, else
        ``available``.
        """
        target = TableStatus.OCCUPIED if table.invited else TableStatus.AVAILABLE
        self.transition(table, target)

    @staticmethod
    def is_queued(table: Table, user_id: str) -> bool:
        return user_id in table.queue

    def is_present(self, table: Table, user_id: str) -> bool:
        return self.slot_of(table, user_id) is not None or self.is_queued(table, user_id)
