"""AdmissionController: the entry point for every table operation.

Each public method is one unit of work: load the table (optionally checked
against the caller's ``expected_version``), validate and apply the change
through the state machine, queue, session, win and ledger services, commit,
and only then publish the collected notifications.

Concurrent writers on the same table are serialized by the table's
``state_version``; the loser's commit fails and surfaces as ConflictError.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from cuehall.config import Settings, get_settings
from cuehall.logging_config import operation_context
from cuehall.models.game_session import (
    DisputeResolution,
    GameSession,
    SessionStatus,
    SessionType,
)
from cuehall.models.ledger import LedgerEntry
from cuehall.models.table import Table, TableStatus
from cuehall.services.game_session import GameSessionLifecycle
from cuehall.services.ledger import TokenLedger
from cuehall.services.notifications import (
    EventType,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    Outbox,
)
from cuehall.services.payments import (
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    PaymentEvent,
    PaymentGateway,
    PaymentIntent,
    PaymentService,
)
from cuehall.services.table_machine import TableStateMachine, table_snapshot
from cuehall.services.venue import VenueService
from cuehall.services.wait_queue import WaitQueue
from cuehall.services.win_resolution import WinResolutionProtocol
from cuehall.utils.errors import (
    ConflictError,
    ErrorCode,
    ForbiddenError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
    PaymentVerificationError,
)

logger = logging.getLogger(__name__)


class AdmissionController:
    """Façade over the table, queue, session, win and ledger services.

    Bound to one AsyncSession; create one per request.
    """

    def __init__(
        self,
        session: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        gateway: PaymentGateway | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session = session
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self.settings = settings or get_settings()
        self.outbox = Outbox()

        self.ledger = TokenLedger(session)
        self.tables = TableStateMachine(session)
        self.queue = WaitQueue(session, self.tables, self.outbox)
        self.sessions = GameSessionLifecycle(
            session, self.tables, self.queue, self.ledger, self.outbox, self.settings
        )
        self.wins = WinResolutionProtocol(
            session, self.tables, self.queue, self.sessions, self.ledger, self.outbox
        )
        self.payments = PaymentService(session, gateway, self.ledger, self.outbox, self.settings)

    @asynccontextmanager
    async def _transaction(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """Commit on success, roll back on error, then publish notifications.

        ``operation`` and ``context`` ids are bound to every log line
        emitted inside the unit of work, dispatch included.
        """
        with operation_context(operation, **context):
            self.outbox.clear()
            try:
                yield
                await self.session.commit()
            except (StaleDataError, IntegrityError) as e:
                await self.session.rollback()
                self.outbox.clear()
                logger.info(f"Concurrent modification rejected: {type(e).__name__}")
                raise ConflictError(
                    "Concurrent modification; reload and retry",
                    details={"reason": type(e).__name__},
                ) from e
            except Exception:
                await self.session.rollback()
                self.outbox.clear()
                raise

            notifications = self.outbox.drain()
            if notifications:
                await self.dispatcher.dispatch(notifications)

    async def _load(self, table_id: str, expected_version: int | None) -> Table:
        table = await self.tables.get_table(table_id, expected_version)
        self.tables.touch(table)
        return table

    # =========================================================================
    # Queue & invitations
    # =========================================================================

    async def join_queue(self, table_id: str, user_id: str, expected_version: int | None = None) -> dict[str, Any]:
        async with self._transaction("join_queue", table_id=table_id, user_id=user_id):
            table = await self._load(table_id, expected_version)
            await self.queue.join(table, user_id)
        return table_snapshot(table)

    async def leave_queue(self, table_id: str, user_id: str, expected_version: int | None = None) -> dict[str, Any]:
        async with self._transaction("leave_queue", table_id=table_id, user_id=user_id):
            table = await self._load(table_id, expected_version)
            await self.queue.leave(table, user_id)
        return table_snapshot(table)

    async def accept_invitation(self, table_id: str, user_id: str, expected_version: int | None = None) -> GameSession:
        async with self._transaction("accept_invitation", table_id=table_id, user_id=user_id):
            table = await self._load(table_id, expected_version)
            game = await self.sessions.accept_invitation(table, user_id)
        return game

    async def decline_invitation(self, table_id: str, user_id: str, expected_version: int | None = None) -> dict[str, Any]:
        async with self._transaction("decline_invitation", table_id=table_id, user_id=user_id):
            table = await self._load(table_id, expected_version)
            await self.sessions.decline_invitation(table, user_id)
        return table_snapshot(table)

    async def leave_table(self, table_id: str, user_id: str, expected_version: int | None = None) -> dict[str, Any]:
        async with self._transaction("leave_table", table_id=table_id, user_id=user_id):
            table = await self._load(table_id, expected_version)
            await self.sessions.leave_table(table, user_id)
        return table_snapshot(table)

    # =========================================================================
    # Payment & direct admission
    # =========================================================================

    async def confirm_payment(self, session_id: str, user_id: str) -> GameSession:
        """Pay the pending session's cost from the token balance."""
        async with self._transaction("confirm_payment", user_id=user_id, session_id=session_id):
            game = await self.sessions.get_session(session_id)
            table = await self._session_table(game)
            await self.sessions.confirm_payment(table, game, user_id)
        return game

    async def start_card_payment(self, session_id: str, user_id: str) -> PaymentIntent:
        """Pay the pending session by card; the webhook activates it."""
        async with self._transaction("start_card_payment", user_id=user_id, session_id=session_id):
            game = await self.sessions.get_session(session_id)
            table = await self._session_table(game)
            if user_id not in game.players:
                raise ForbiddenError(
                    "Only a session player can pay for it",
                    code=ErrorCode.NOT_A_PARTICIPANT,
                    details={"sessionId": session_id, "userId": user_id},
                )
            self.sessions.require_pending(table, game)
            intent = await self.payments.start_card_payment(game, user_id)
        return intent

    async def direct_join(self, table_id: str, user_id: str, expected_version: int | None = None) -> GameSession:
        async with self._transaction("direct_join", table_id=table_id, user_id=user_id):
            table = await self._load(table_id, expected_version)
            game = await self.sessions.direct_join(table, user_id)
        return game

    async def drop_in(self, table_id: str, user_id: str, expected_version: int | None = None) -> GameSession:
        async with self._transaction("drop_in", table_id=table_id, user_id=user_id):
            table = await self._load(table_id, expected_version)
            game = await self.sessions.drop_in(table, user_id)
        return game

    async def _session_table(self, game: GameSession) -> Table:
        if game.table_id is None:
            raise InvalidStateError(
                "Session is not attached to a table",
                code=ErrorCode.SESSION_MISMATCH,
                details={"sessionId": game.id},
            )
        return await self._load(game.table_id, None)

    # =========================================================================
    # Win resolution
    # =========================================================================

    async def claim_win(self, table_id: str, user_id: str, expected_version: int | None = None) -> GameSession:
        async with self._transaction("claim_win", table_id=table_id, user_id=user_id):
            table = await self._load(table_id, expected_version)
            game = await self.wins.claim_win(table, user_id)
        return game

    async def confirm_win(
        self,
        table_id: str,
        session_id: str,
        winner_id: str,
        user_id: str,
        expected_version: int | None = None,
    ) -> GameSession:
        async with self._transaction("confirm_win", table_id=table_id, user_id=user_id, session_id=session_id):
            table = await self._load(table_id, expected_version)
            game = await self.wins.confirm_win(table, session_id, winner_id, user_id)
        return game

    async def dispute_win(
        self,
        table_id: str,
        session_id: str,
        user_id: str,
        expected_version: int | None = None,
    ) -> GameSession:
        async with self._transaction("dispute_win", table_id=table_id, user_id=user_id, session_id=session_id):
            table = await self._load(table_id, expected_version)
            game = await self.wins.dispute_win(table, session_id, user_id)
        return game

    async def finish_solo_session(self, table_id: str, session_id: str) -> GameSession:
        async with self._transaction("finish_solo_session", table_id=table_id, session_id=session_id):
            table = await self._load(table_id, None)
            game = await self.sessions.finish_solo(table, session_id)
        return game

    # =========================================================================
    # Admin
    # =========================================================================

    async def admin_remove_player(self, table_id: str, player_id: str) -> dict[str, Any]:
        """Remove a user from the queue or from a slot, whatever the status.

        Removing a seated player cancels the table's live session (no token
        movement) and refills the slot from the queue.
        """
        async with self._transaction("admin_remove_player", table_id=table_id, user_id=player_id):
            table = await self._load(table_id, None)
            if not self.tables.is_present(table, player_id):
                raise NotFoundError(
                    "Player is not at this table",
                    code=ErrorCode.PLAYER_NOT_AT_TABLE,
                    details={"tableId": table.id, "userId": player_id},
                )
            in_queue = self.tables.is_queued(table, player_id)
            seated = self.tables.slot_of(table, player_id) is not None

            if in_queue:
                table.queue = [u for u in table.queue if u != player_id]
                self.outbox.table_changed(table, queue=True)

            if seated:
                game = await self.tables.current_session(table)
                if game is not None and game.is_live:
                    self.sessions.cancel(table, game, reason="removed_by_admin")
                self.tables.vacate(table, player_id)
                if table.status != TableStatus.OUT_OF_ORDER:
                    self.tables.settle_idle(table)
                self.outbox.table_changed(table)
                await self.queue.invite_next(table)

            self.outbox.to_user(
                player_id,
                EventType.QUEUE_DROPPED,
                tableId=table.id,
                reason="removed_by_admin",
            )
            logger.warning(f"Admin removed player: table={table.id} user={player_id} seated={seated}")
        return table_snapshot(table)

    async def admin_clear_queue(self, table_id: str) -> list[str]:
        async with self._transaction("admin_clear_queue", table_id=table_id):
            table = await self._load(table_id, None)
            dropped = await self.queue.clear(table, reason="cleared")
        return dropped

    async def admin_resolve_dispute(
        self,
        table_id: str,
        resolution: DisputeResolution | str,
        winner_id: str | None = None,
    ) -> GameSession:
        try:
            resolution = DisputeResolution(resolution)
        except ValueError:
            raise InvalidRequestError(
                f"Unknown resolution: {resolution}",
                details={"allowed": [r.value for r in DisputeResolution]},
            )
        async with self._transaction("admin_resolve_dispute", table_id=table_id):
            table = await self._load(table_id, None)
            game = await self.wins.resolve_dispute(table, resolution, winner_id)
        return game

    async def admin_set_out_of_order(self, table_id: str) -> dict[str, Any]:
        """Take a table out of service: cancel its session, clear players and queue."""
        async with self._transaction("admin_set_out_of_order", table_id=table_id):
            table = await self._load(table_id, None)
            game = await self.tables.current_session(table)
            if game is not None and game.is_live:
                self.sessions.cancel(table, game, reason="out_of_order")
            table.current_session_id = None
            for player_id in self.tables.occupants(table):
                self.tables.vacate(table, player_id)
            table.invited = []
            await self.queue.clear(table, reason="out_of_order")
            self.tables.transition(table, TableStatus.OUT_OF_ORDER)
            self.outbox.table_changed(table)
            logger.warning(f"Table out of order: table={table.id}")
        return table_snapshot(table)

    async def admin_restore_table(self, table_id: str) -> dict[str, Any]:
        async with self._transaction("admin_restore_table", table_id=table_id):
            table = await self._load(table_id, None)
            self.tables.require_status(table, TableStatus.OUT_OF_ORDER)
            self.tables.transition(table, TableStatus.AVAILABLE)
            self.outbox.table_changed(table)
            logger.info(f"Table restored: table={table.id}")
        return table_snapshot(table)

    async def admin_delete_venue(self, venue_id: str, *, force: bool = False) -> list[str]:
        """Delete a venue; with ``force`` its live sessions are cancelled first."""
        async with self._transaction("admin_delete_venue", venue_id=venue_id):
            cancelled = await VenueService(self.session).delete_venue(
                venue_id, self.sessions, force=force
            )
        return cancelled

    # =========================================================================
    # Payments
    # =========================================================================

    async def create_token_purchase(self, user_id: str, amount_cents: int) -> tuple[GameSession, PaymentIntent]:
        async with self._transaction("create_token_purchase", user_id=user_id):
            purchase, intent = await self.payments.create_token_purchase(user_id, amount_cents)
        return purchase, intent

    async def on_payment_event(self, event: PaymentEvent) -> LedgerEntry | GameSession | None:
        """Apply a verified gateway event. Replays are no-ops."""
        async with self._transaction(
            "on_payment_event",
            session_id=event.session_id,
            user_id=event.user_id,
            payment_intent_id=event.payment_intent_id,
        ):
            result = await self._apply_payment_event(event)
        return result

    async def _apply_payment_event(self, event: PaymentEvent) -> LedgerEntry | GameSession | None:
        session_type = event.session_type

        if event.type == PAYMENT_SUCCEEDED:
            if session_type == SessionType.TOKEN_PURCHASE.value:
                return await self.payments.settle_token_purchase(event)
            if session_type == SessionType.PER_GAME.value:
                return await self._settle_card_game(event)
            logger.info(f"Ignoring payment for unhandled session type: {session_type}")
            return None

        if event.type == PAYMENT_FAILED:
            await self.payments.fail_payment(event)
            return None

        logger.info(f"Unhandled payment event type: {event.type}")
        return None

    async def _settle_card_game(self, event: PaymentEvent) -> GameSession:
        if not event.session_id or not event.user_id:
            raise PaymentVerificationError(
                "Per-game payment metadata incomplete",
                code=ErrorCode.PAYMENT_METADATA_MISMATCH,
                details={"paymentIntentId": event.payment_intent_id},
            )
        game = await self.sessions.get_session(event.session_id)
        if game.session_type != SessionType.PER_GAME or event.user_id not in game.players:
            raise PaymentVerificationError(
                "Payment metadata does not match the session",
                code=ErrorCode.PAYMENT_METADATA_MISMATCH,
                details={"paymentIntentId": event.payment_intent_id, "sessionId": game.id},
            )

        own_intent = game.payment_intent_id == event.payment_intent_id
        if game.status == SessionStatus.PENDING and (own_intent or game.payment_intent_id is None):
            return await self._activate_card_game(game, event)
        if own_intent and game.start_time is not None:
            logger.info(f"Card payment already settled: session={game.id} status={game.status.value}")
            return game

        # Expired, paid with tokens meanwhile, or a superseded intent
        await self.payments.credit_unapplied_payment(game, event)
        return game

    async def _activate_card_game(self, game: GameSession, event: PaymentEvent) -> GameSession:
        table = await self._session_table(game)
        self.sessions.require_pending(table, game)
        game.payer_id = event.user_id
        game.payment_intent_id = event.payment_intent_id
        await self.sessions.activate(table, game)
        logger.info(f"Card payment settled: session={game.id} intent={event.payment_intent_id}")
        return game

    # =========================================================================
    # Maintenance & queries
    # =========================================================================

    async def expire_pending_sessions(self, now: datetime | None = None) -> list[str]:
        """Cancel per-game sessions whose payment window elapsed.

        Each session expires in its own transaction; a conflicting concurrent
        update on one table is skipped until the next sweep.
        """
        expired: list[str] = []
        for session_id in await self.sessions.expired_session_ids(now):
            try:
                async with self._transaction("expire_pending_session", session_id=session_id):
                    game = await self.sessions.get_session(session_id)
                    table = await self.sessions.expire(game)
                    if table is not None:
                        self.tables.touch(table)
                expired.append(session_id)
            except ConflictError:
                logger.info(f"Expiry skipped after conflict: session={session_id}")
        if expired:
            logger.info(f"Expired pending sessions: count={len(expired)}")
        return expired

    async def get_table_snapshot(self, table_id: str) -> dict[str, Any]:
        table = await self.tables.get_table(table_id)
        return table_snapshot(table)

    async def get_session(self, session_id: str) -> GameSession:
        return await self.sessions.get_session(session_id)
