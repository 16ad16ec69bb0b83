"""Game session lifecycle.

pending -> active -> awaiting_confirmation -> completed | disputed,
with cancellation from pending (payment window, payer leaving) or by admin.
"""

import logging
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cuehall.config import Settings
from cuehall.models.base import utcnow
from cuehall.models.game_session import GameSession, SessionStatus, SessionType
from cuehall.models.ledger import LedgerEntry, LedgerEntryType
from cuehall.models.table import Table, TableStatus
from cuehall.services.ledger import TokenLedger
from cuehall.services.notifications import EventType, Outbox
from cuehall.services.table_machine import TableStateMachine
from cuehall.services.wait_queue import WaitQueue
from cuehall.utils.errors import (
    ConflictError,
    ErrorCode,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


class GameSessionLifecycle:
    """Creates, pays for, completes and cancels game sessions."""

    def __init__(
        self,
        session: AsyncSession,
        machine: TableStateMachine,
        queue: WaitQueue,
        ledger: TokenLedger,
        outbox: Outbox,
        settings: Settings,
    ) -> None:
        self.session = session
        self.machine = machine
        self.queue = queue
        self.ledger = ledger
        self.outbox = outbox
        self.settings = settings

    async def get_session(self, session_id: str) -> GameSession:
        game = await self.session.get(GameSession, session_id, populate_existing=True)
        if game is None:
            raise NotFoundError(
                f"Session not found: {session_id}",
                code=ErrorCode.SESSION_NOT_FOUND,
                details={"sessionId": session_id},
            )
        return game

    @staticmethod
    def require_current(table: Table, game: GameSession | None, session_id: str) -> GameSession:
        """The referenced session must be the table's current one."""
        if game is None or game.id != session_id or table.current_session_id != session_id:
            raise ConflictError(
                "Session is not the table's current session",
                code=ErrorCode.SESSION_MISMATCH,
                details={
                    "tableId": table.id,
                    "sessionId": session_id,
                    "currentSessionId": table.current_session_id,
                },
            )
        return game

    # =========================================================================
    # Invitation flow
    # =========================================================================

    async def accept_invitation(self, table: Table, user_id: str) -> GameSession:
        """Turn an invitation into a pending per-game session.

        Accepting twice, or accepting after joining someone else's pending
        session, returns that session unchanged.
        """
        game = await self.machine.current_session(table)
        if game is not None and game.status == SessionStatus.PENDING and user_id in game.players:
            if user_id in table.invited:
                table.invited = [u for u in table.invited if u != user_id]
                self.outbox.table_changed(table)
            return game

        if user_id not in table.invited:
            raise ForbiddenError(
                "No pending invitation for this table",
                code=ErrorCode.NOT_INVITED,
                details={"tableId": table.id, "userId": user_id},
            )
        if game is not None and game.is_live:
            raise ConflictError(
                "Table already has a live session",
                code=ErrorCode.SESSION_MISMATCH,
                details={"tableId": table.id, "currentSessionId": game.id},
            )

        game = GameSession(
            id=str(uuid4()),
            table_id=table.id,
            venue_id=table.venue_id,
            session_type=SessionType.PER_GAME,
            status=SessionStatus.PENDING,
            player1_id=table.player1_id,
            player2_id=table.player2_id,
            payer_id=user_id,
            cost=table.venue.per_game_cost,
            reserved_at=utcnow(),
        )
        self.session.add(game)

        table.current_session_id = game.id
        table.invited = [u for u in table.invited if u != user_id]
        self.machine.transition(table, TableStatus.OCCUPIED)
        self.outbox.table_changed(table)

        logger.info(
            f"Invitation accepted: table={table.id} user={user_id} "
            f"session={game.id} cost={game.cost}"
        )
        return game

    async def decline_invitation(self, table: Table, user_id: str) -> None:
        if user_id not in table.invited:
            raise ForbiddenError(
                "No pending invitation for this table",
                code=ErrorCode.NOT_INVITED,
                details={"tableId": table.id, "userId": user_id},
            )
        await self.release_seat(table, user_id, reason="declined")
        logger.info(f"Invitation declined: table={table.id} user={user_id}")

    async def leave_table(self, table: Table, user_id: str) -> None:
        """A seated player gives up their slot while no game is running."""
        if self.machine.slot_of(table, user_id) is None:
            raise NotFoundError(
                "Not seated at this table",
                code=ErrorCode.PLAYER_NOT_AT_TABLE,
                details={"tableId": table.id, "userId": user_id},
            )
        self.machine.require_status(table, TableStatus.AVAILABLE, TableStatus.OCCUPIED)
        await self.release_seat(table, user_id, reason="left")
        logger.info(f"Player left table: table={table.id} user={user_id}")

    async def release_seat(self, table: Table, user_id: str, reason: str) -> None:
        """Vacate a seat at an idle table, fix up the pending session, refill."""
        game = await self.machine.current_session(table)
        self.machine.vacate(table, user_id)

        if game is not None and game.status == SessionStatus.PENDING:
            remaining = [p for p in game.players if p != user_id]
            if game.payer_id == user_id or not remaining:
                self.cancel(table, game, reason=reason)
            else:
                game.player1_id, game.player2_id = remaining[0], None

        self.settle(table, None if game is None or not game.is_live else game)
        self.outbox.table_changed(table)
        await self.queue.invite_next(table)

    def settle(self, table: Table, game: GameSession | None) -> None:
        """Idle-table status given its (possibly absent) pending session."""
        if game is not None and game.status == SessionStatus.PENDING:
            self.machine.transition(table, TableStatus.OCCUPIED)
        else:
            self.machine.settle_idle(table)

    # =========================================================================
    # Payment
    # =========================================================================

    async def confirm_payment(self, table: Table, game: GameSession, user_id: str) -> LedgerEntry | None:
        """Debit the session cost from ``user_id`` and start the game."""
        if user_id not in game.players:
            raise ForbiddenError(
                "Only a session player can pay for it",
                code=ErrorCode.NOT_A_PARTICIPANT,
                details={"sessionId": game.id, "userId": user_id},
            )
        self.require_pending(table, game)

        entry = None
        if game.cost > 0:
            entry = await self.ledger.debit(
                user_id,
                game.cost,
                LedgerEntryType.GAME_FEE,
                idempotency_key=f"game:{game.id}",
                session_id=game.id,
                description=f"Game fee, table {table.table_number}",
            )
            self.outbox.to_user(
                user_id,
                EventType.TOKEN_BALANCE_UPDATE,
                balance=entry.balance_after,
                change=entry.amount,
                sessionId=game.id,
            )

        game.payer_id = user_id
        # A card intent still in flight is now unapplied; its webhook credits tokens
        game.payment_intent_id = None
        await self.activate(table, game)
        return entry

    def require_pending(self, table: Table, game: GameSession) -> None:
        if game.status != SessionStatus.PENDING:
            raise InvalidStateError(
                f"Session is {game.status.value}",
                code=ErrorCode.SESSION_NOT_PENDING,
                details={"sessionId": game.id, "status": game.status.value},
            )
        if table.current_session_id != game.id:
            raise ConflictError(
                "Session is not the table's current session",
                code=ErrorCode.SESSION_MISMATCH,
                details={"tableId": table.id, "sessionId": game.id},
            )

    async def activate(self, table: Table, game: GameSession) -> None:
        """Paid session starts: session active, table in_play."""
        self.machine.transition(table, TableStatus.IN_PLAY)
        game.status = SessionStatus.ACTIVE
        game.start_time = utcnow()
        table.invited = []
        self.outbox.table_changed(table)
        for player_id in game.players:
            self.outbox.to_user(
                player_id,
                EventType.GAME_STARTED,
                tableId=table.id,
                sessionId=game.id,
                cost=game.cost,
                payerId=game.payer_id,
            )
        logger.info(f"Session started: table={table.id} session={game.id} players={game.players}")

        # A solo game accepts a challenger straight from the queue
        await self.queue.invite_next(table)

    # =========================================================================
    # Direct admission
    # =========================================================================

    async def direct_join(self, table: Table, user_id: str) -> GameSession:
        """Pay and play immediately, against a retained winner if present."""
        return await self._start_direct(table, user_id, SessionType.DIRECT_JOIN)

    async def drop_in(self, table: Table, user_id: str) -> GameSession:
        """Pay and play solo on an empty table."""
        if self.machine.occupants(table):
            raise ConflictError(
                "Table is not empty",
                code=ErrorCode.TABLE_NOT_EMPTY,
                details={"tableId": table.id, "occupants": self.machine.occupants(table)},
            )
        return await self._start_direct(table, user_id, SessionType.DROP_IN)

    async def _start_direct(self, table: Table, user_id: str, session_type: SessionType) -> GameSession:
        self.machine.require_status(table, TableStatus.AVAILABLE)
        if self.machine.slot_of(table, user_id) is not None:
            raise ConflictError(
                "Already seated at this table",
                code=ErrorCode.ALREADY_SEATED,
                details={"tableId": table.id, "userId": user_id},
            )

        game = GameSession(
            id=str(uuid4()),
            table_id=table.id,
            venue_id=table.venue_id,
            session_type=session_type,
            status=SessionStatus.PENDING,
            payer_id=user_id,
            cost=table.venue.per_game_cost,
            reserved_at=utcnow(),
        )

        entry = None
        if game.cost > 0:
            entry = await self.ledger.debit(
                user_id,
                game.cost,
                LedgerEntryType.GAME_FEE,
                idempotency_key=f"game:{game.id}",
                session_id=game.id,
                description=f"{session_type.value.replace('_', ' ').capitalize()}, table {table.table_number}",
            )

        if user_id in table.queue:
            table.queue = [u for u in table.queue if u != user_id]
        await self.queue.displace(table, by_user_id=user_id)

        self.machine.seat(table, user_id)
        game.player1_id, game.player2_id = table.player1_id, table.player2_id
        self.session.add(game)
        table.current_session_id = game.id

        if entry is not None:
            self.outbox.to_user(
                user_id,
                EventType.TOKEN_BALANCE_UPDATE,
                balance=entry.balance_after,
                change=entry.amount,
                sessionId=game.id,
            )
        await self.activate(table, game)
        return game

    # =========================================================================
    # Completion & cancellation
    # =========================================================================

    async def finish_solo(self, table: Table, session_id: str) -> GameSession:
        """Complete a one-player session on an external "game finished" signal.

        No winner is recorded and no tokens move.
        """
        game = self.require_current(table, await self.machine.current_session(table), session_id)
        if game.status != SessionStatus.ACTIVE:
            raise InvalidStateError(
                f"Session is {game.status.value}",
                code=ErrorCode.NO_ACTIVE_SESSION,
                details={"sessionId": game.id, "status": game.status.value},
            )
        if len(game.players) != 1:
            raise InvalidStateError(
                "Two-player sessions are settled by claim and confirmation",
                code=ErrorCode.INVALID_TRANSITION,
                details={"sessionId": game.id, "players": game.players},
            )

        now = utcnow()
        game.status = SessionStatus.COMPLETED
        game.end_time = now
        for player_id in self.machine.occupants(table):
            self.machine.vacate(table, player_id)
        table.current_session_id = None
        table.last_game_ended_at = now
        self.machine.transition(table, TableStatus.AVAILABLE)
        self.outbox.table_changed(table)

        logger.info(f"Solo session finished: table={table.id} session={game.id}")
        await self.queue.invite_next(table)
        return game

    def cancel(self, table: Table | None, game: GameSession, reason: str) -> None:
        """Mark a session cancelled and detach it from its table."""
        game.status = SessionStatus.CANCELLED
        game.end_time = utcnow()
        if table is not None and table.current_session_id == game.id:
            table.current_session_id = None
            self.outbox.table_changed(table)
        for player_id in game.players:
            self.outbox.to_user(
                player_id,
                EventType.SESSION_CANCELLED,
                tableId=game.table_id,
                sessionId=game.id,
                reason=reason,
            )
        logger.info(f"Session cancelled: session={game.id} reason={reason}")

    async def expired_session_ids(self, now: datetime | None = None) -> list[str]:
        """Pending per-game sessions whose payment window has passed."""
        cutoff = (now or utcnow()) - timedelta(seconds=self.settings.payment_window_seconds)
        result = await self.session.execute(
            select(GameSession.id)
            .where(
                GameSession.status == SessionStatus.PENDING,
                GameSession.session_type == SessionType.PER_GAME,
                GameSession.reserved_at < cutoff,
            )
            .order_by(GameSession.reserved_at)
        )
        return list(result.scalars().all())

    async def expire(self, game: GameSession) -> Table | None:
        """Cancel an unpaid session, free the payer's seat and refill it."""
        if game.status != SessionStatus.PENDING:
            return None

        table = await self.machine.get_table(game.table_id) if game.table_id else None
        self.cancel(table, game, reason="payment_timeout")
        if table is None:
            return None

        if game.payer_id and self.machine.slot_of(table, game.payer_id) is not None:
            self.machine.vacate(table, game.payer_id)
        if table.status in (TableStatus.AVAILABLE, TableStatus.OCCUPIED):
            self.machine.settle_idle(table)
        self.outbox.table_changed(table)
        await self.queue.invite_next(table)
        logger.info(f"Pending session expired: table={table.id} session={game.id}")
        return table
