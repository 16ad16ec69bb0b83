"""Per-table FIFO waitlist and invitations."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from cuehall.models.game_session import GameSession, SessionStatus, SessionType
from cuehall.models.table import Table, TableStatus
from cuehall.models.user import User
from cuehall.services.notifications import EventType, Outbox
from cuehall.services.table_machine import (
    ADMISSION_CLOSED,
    IDLE_STATUSES,
    QUEUE_CLOSED,
    TableStateMachine,
)
from cuehall.utils.errors import (
    ConflictError,
    ErrorCode,
    InvalidStateError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


class WaitQueue:
    """Queue operations for one unit of work.

    The queue is an ordered list of user ids stored on the table row; display
    data for queued users is looked up separately.
    """

    def __init__(
        self,
        session: AsyncSession,
        machine: TableStateMachine,
        outbox: Outbox,
    ) -> None:
        self.session = session
        self.machine = machine
        self.outbox = outbox

    @staticmethod
    def position(table: Table, user_id: str) -> int | None:
        """1-based queue position, or None when not queued."""
        try:
            return table.queue.index(user_id) + 1
        except ValueError:
            return None

    async def join(self, table: Table, user_id: str) -> int | None:
        """Append a user to the queue, then try to admit from the head.

        Returns:
            The user's queue position, or None if they were admitted at once.
        """
        if await self.session.get(User, user_id) is None:
            raise NotFoundError(
                f"User not found: {user_id}",
                code=ErrorCode.USER_NOT_FOUND,
                details={"userId": user_id},
            )
        if table.status in QUEUE_CLOSED:
            raise InvalidStateError(
                f"Table is {table.status.value}",
                code=ErrorCode.TABLE_UNAVAILABLE,
                details={"tableId": table.id, "status": table.status.value},
            )
        if self.machine.slot_of(table, user_id) is not None:
            raise ConflictError(
                "Already seated at this table",
                code=ErrorCode.ALREADY_SEATED,
                details={"tableId": table.id, "userId": user_id},
            )
        if user_id in table.queue:
            raise ConflictError(
                "Already in queue",
                code=ErrorCode.ALREADY_QUEUED,
                details={"tableId": table.id, "position": self.position(table, user_id)},
            )

        table.queue = [*table.queue, user_id]
        self.outbox.table_changed(table, queue=True)
        logger.info(f"Queue join: table={table.id} user={user_id} size={len(table.queue)}")

        await self.invite_next(table)
        return self.position(table, user_id)

    async def leave(self, table: Table, user_id: str) -> None:
        if user_id not in table.queue:
            raise NotFoundError(
                "Not in queue",
                code=ErrorCode.NOT_IN_QUEUE,
                details={"tableId": table.id, "userId": user_id},
            )

        table.queue = [u for u in table.queue if u != user_id]
        if (
            not table.queue
            and not self.machine.occupants(table)
            and table.status in IDLE_STATUSES
        ):
            self.machine.transition(table, TableStatus.AVAILABLE)
        self.outbox.table_changed(table, queue=True)
        logger.info(f"Queue leave: table={table.id} user={user_id}")

    async def invite_next(self, table: Table) -> list[str]:
        """Fill open slots from the head of the queue.

        Heads whose user record no longer exists are skipped; the loop is
        bounded by the queue length at entry.

        Returns:
            User ids admitted, in queue order.
        """
        if table.status in ADMISSION_CLOSED or not table.queue:
            return []

        game = await self.machine.current_session(table)
        admitted: list[str] = []

        for _ in range(len(table.queue)):
            if not table.queue or self.machine.open_slot(table) is None:
                break
            if not self._accepts_newcomer(table, game):
                break

            head, table.queue = table.queue[0], table.queue[1:]
            self.outbox.table_changed(table, queue=True)

            if await self.session.get(User, head) is None:
                logger.warning(f"Skipping missing user at queue head: table={table.id} user={head}")
                continue

            self.machine.seat(table, head)
            admitted.append(head)

            if table.status == TableStatus.IN_PLAY:
                # Challenger joins the running solo game directly
                game.player2_id = head
                self.outbox.to_user(
                    head,
                    EventType.INVITATION,
                    tableId=table.id,
                    tableNumber=table.table_number,
                    sessionId=game.id,
                    joinedSession=True,
                )
                logger.info(f"Queue admit into running game: table={table.id} user={head}")
                continue

            table.invited = [*table.invited, head]
            if game is not None and game.status == SessionStatus.PENDING:
                if game.player1_id is None:
                    game.player1_id = head
                elif game.player2_id is None:
                    game.player2_id = head
            self.machine.transition(table, TableStatus.OCCUPIED)
            self.outbox.to_user(
                head,
                EventType.INVITATION,
                tableId=table.id,
                tableNumber=table.table_number,
                sessionId=game.id if game is not None else None,
                joinedSession=False,
                cost=table.venue.per_game_cost,
            )
            logger.info(f"Queue invite: table={table.id} user={head}")

        return admitted

    @staticmethod
    def _accepts_newcomer(table: Table, game: GameSession | None) -> bool:
        if table.status in IDLE_STATUSES:
            return True
        if table.status == TableStatus.IN_PLAY:
            return (
                game is not None
                and game.status == SessionStatus.ACTIVE
                and game.session_type != SessionType.DROP_IN
                and len(game.players) == 1
            )
        return False

    async def clear(self, table: Table, reason: str = "cleared") -> list[str]:
        """Drop everyone from the queue, notifying each dropped user."""
        dropped = list(table.queue)
        if not dropped:
            return []

        table.queue = []
        for user_id in dropped:
            self.outbox.to_user(
                user_id,
                EventType.QUEUE_DROPPED,
                tableId=table.id,
                reason=reason,
            )
        self.outbox.table_changed(table, queue=True)
        logger.info(f"Queue cleared: table={table.id} dropped={len(dropped)} reason={reason}")
        return dropped

    async def displace(self, table: Table, by_user_id: str) -> list[str]:
        """Drop the queue because a player took the table directly."""
        displaced = list(table.queue)
        if not displaced:
            return []

        table.queue = []
        for user_id in displaced:
            self.outbox.to_user(
                user_id,
                EventType.QUEUE_DISPLACED,
                tableId=table.id,
                byUserId=by_user_id,
            )
        self.outbox.table_changed(table, queue=True)
        logger.info(f"Queue displaced: table={table.id} displaced={len(displaced)}")
        return displaced
