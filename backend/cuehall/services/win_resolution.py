"""Two-party win resolution: claim, then confirm or dispute.

A claimed win is only paid out once the opponent confirms it. A dispute
freezes the table in maintenance until an administrator awards or voids the
game.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from cuehall.models.base import utcnow
from cuehall.models.game_session import (
    DisputeResolution,
    GameSession,
    SessionStatus,
)
from cuehall.models.ledger import LedgerEntryType
from cuehall.models.table import Table, TableStatus
from cuehall.services.game_session import GameSessionLifecycle
from cuehall.services.ledger import TokenLedger
from cuehall.services.notifications import EventType, Outbox
from cuehall.services.table_machine import TableStateMachine
from cuehall.services.wait_queue import WaitQueue
from cuehall.utils.errors import (
    ErrorCode,
    ForbiddenError,
    InvalidRequestError,
    InvalidStateError,
)

logger = logging.getLogger(__name__)


class WinResolutionProtocol:
    """claim -> confirm | dispute -> (admin) resolve."""

    def __init__(
        self,
        session: AsyncSession,
        machine: TableStateMachine,
        queue: WaitQueue,
        lifecycle: GameSessionLifecycle,
        ledger: TokenLedger,
        outbox: Outbox,
    ) -> None:
        self.session = session
        self.machine = machine
        self.queue = queue
        self.lifecycle = lifecycle
        self.ledger = ledger
        self.outbox = outbox

    async def claim_win(self, table: Table, claimant_id: str) -> GameSession:
        self.machine.require_status(table, TableStatus.IN_PLAY)
        if self.machine.slot_of(table, claimant_id) is None:
            raise ForbiddenError(
                "Only a seated player can claim a win",
                code=ErrorCode.NOT_A_PARTICIPANT,
                details={"tableId": table.id, "userId": claimant_id},
            )
        opponent_id = self.machine.other_occupant(table, claimant_id)
        if opponent_id is None:
            raise InvalidStateError(
                "No opponent to confirm the result; solo games end on the finish signal",
                code=ErrorCode.SOLO_SESSION,
                details={"tableId": table.id},
            )

        game = await self.machine.current_session(table)
        if game is None or game.status != SessionStatus.ACTIVE:
            raise InvalidStateError(
                "No active session at this table",
                code=ErrorCode.NO_ACTIVE_SESSION,
                details={"tableId": table.id},
            )

        self.machine.transition(table, TableStatus.AWAITING_CONFIRMATION)
        game.status = SessionStatus.AWAITING_CONFIRMATION
        game.claimant_id = claimant_id
        self.outbox.table_changed(table)
        self.outbox.to_user(
            opponent_id,
            EventType.WIN_CLAIMED,
            tableId=table.id,
            sessionId=game.id,
            claimantId=claimant_id,
        )
        logger.info(f"Win claimed: table={table.id} session={game.id} claimant={claimant_id}")
        return game

    async def confirm_win(
        self,
        table: Table,
        session_id: str,
        winner_id: str,
        confirmer_id: str,
    ) -> GameSession:
        """Opponent confirms ``winner_id`` won; pays out and keeps the winner seated."""
        self.machine.require_status(table, TableStatus.AWAITING_CONFIRMATION)
        game = self.lifecycle.require_current(
            table, await self.machine.current_session(table), session_id
        )

        if confirmer_id == winner_id:
            raise ForbiddenError(
                "A player cannot confirm their own win",
                code=ErrorCode.SELF_CONFIRMATION,
                details={"sessionId": session_id, "userId": confirmer_id},
            )
        if (
            self.machine.slot_of(table, winner_id) is None
            or self.machine.other_occupant(table, winner_id) != confirmer_id
        ):
            raise ForbiddenError(
                "Only the winner's opponent can confirm",
                code=ErrorCode.NOT_OPPONENT,
                details={
                    "sessionId": session_id,
                    "winnerId": winner_id,
                    "userId": confirmer_id,
                },
            )

        now = utcnow()
        game.status = SessionStatus.COMPLETED
        game.winner_id = winner_id
        game.end_time = now

        entry = None
        if game.cost > 0:
            entry = await self.ledger.credit(
                winner_id,
                game.cost,
                LedgerEntryType.WIN_PAYOUT,
                idempotency_key=f"win:{game.id}",
                session_id=game.id,
                description=f"Win payout, table {table.table_number}",
            )

        self.machine.retain_winner(table, winner_id)
        table.current_session_id = None
        table.last_game_ended_at = now
        self.machine.transition(table, TableStatus.AVAILABLE)
        self.outbox.table_changed(table)

        for player_id in (winner_id, confirmer_id):
            self.outbox.to_user(
                player_id,
                EventType.WIN_CONFIRMED,
                tableId=table.id,
                sessionId=game.id,
                winnerId=winner_id,
            )
        if entry is not None:
            self.outbox.to_user(
                winner_id,
                EventType.TOKEN_BALANCE_UPDATE,
                balance=entry.balance_after,
                change=entry.amount,
                sessionId=game.id,
            )
        logger.info(f"Win confirmed: table={table.id} session={game.id} winner={winner_id}")

        await self.queue.invite_next(table)
        return game

    async def dispute_win(self, table: Table, session_id: str, disputer_id: str) -> GameSession:
        """The claimant's opponent rejects the claim; table goes to maintenance."""
        self.machine.require_status(table, TableStatus.AWAITING_CONFIRMATION)
        game = self.lifecycle.require_current(
            table, await self.machine.current_session(table), session_id
        )

        if (
            disputer_id == game.claimant_id
            or self.machine.slot_of(table, disputer_id) is None
        ):
            raise ForbiddenError(
                "Only the claimant's opponent can dispute",
                code=ErrorCode.NOT_OPPONENT,
                details={"sessionId": session_id, "userId": disputer_id},
            )

        self.machine.transition(table, TableStatus.MAINTENANCE)
        game.status = SessionStatus.DISPUTED
        self.outbox.table_changed(table)

        for player_id in self.machine.occupants(table):
            self.outbox.to_user(
                player_id,
                EventType.WIN_DISPUTED,
                tableId=table.id,
                sessionId=game.id,
                claimantId=game.claimant_id,
                disputerId=disputer_id,
            )
        self.outbox.to_admins(
            EventType.DISPUTE_OPENED,
            tableId=table.id,
            venueId=table.venue_id,
            tableNumber=table.table_number,
            sessionId=game.id,
            claimantId=game.claimant_id,
            disputerId=disputer_id,
        )
        logger.warning(
            f"Win disputed: table={table.id} session={game.id} "
            f"claimant={game.claimant_id} disputer={disputer_id}"
        )
        return game

    async def resolve_dispute(
        self,
        table: Table,
        resolution: DisputeResolution,
        winner_id: str | None = None,
    ) -> GameSession:
        """Admin outcome for a disputed game.

        ``award`` pays ``winner_id`` and keeps them seated; ``void`` clears
        both players without any token movement.
        """
        self.machine.require_status(table, TableStatus.MAINTENANCE)
        game = await self.machine.current_session(table)
        if game is None or game.status != SessionStatus.DISPUTED:
            raise InvalidStateError(
                "No disputed session at this table",
                code=ErrorCode.NO_ACTIVE_SESSION,
                details={"tableId": table.id},
            )

        now = utcnow()
        match resolution:
            case DisputeResolution.AWARD:
                if winner_id is None or winner_id not in game.players:
                    raise InvalidRequestError(
                        "Awarded winner must be a player of the disputed session",
                        details={"sessionId": game.id, "winnerId": winner_id},
                    )
                game.winner_id = winner_id
                if game.cost > 0:
                    entry = await self.ledger.credit(
                        winner_id,
                        game.cost,
                        LedgerEntryType.DISPUTE_AWARD,
                        idempotency_key=f"dispute:{game.id}",
                        session_id=game.id,
                        description=f"Dispute award, table {table.table_number}",
                    )
                    self.outbox.to_user(
                        winner_id,
                        EventType.TOKEN_BALANCE_UPDATE,
                        balance=entry.balance_after,
                        change=entry.amount,
                        sessionId=game.id,
                    )
                self.machine.retain_winner(table, winner_id)
                game.status = SessionStatus.COMPLETED
            case DisputeResolution.VOID:
                for player_id in self.machine.occupants(table):
                    self.machine.vacate(table, player_id)
                game.status = SessionStatus.CANCELLED
            case _:
                raise InvalidRequestError(f"Unknown resolution: {resolution}")

        game.resolution = resolution
        game.end_time = now
        table.current_session_id = None
        table.last_game_ended_at = now
        self.machine.transition(table, TableStatus.AVAILABLE)
        self.outbox.table_changed(table)
        for player_id in game.players:
            self.outbox.to_user(
                player_id,
                EventType.WIN_CONFIRMED if resolution == DisputeResolution.AWARD else EventType.SESSION_CANCELLED,
                tableId=table.id,
                sessionId=game.id,
                winnerId=game.winner_id,
                resolution=resolution.value,
            )
        logger.info(
            f"Dispute resolved: table={table.id} session={game.id} "
            f"resolution={resolution.value} winner={game.winner_id}"
        )

        await self.queue.invite_next(table)
        return game
