"""Tests for the game session lifecycle: invitation, payment, direct admission,
solo completion and payment-window expiry."""

from datetime import timedelta

import pytest

from cuehall.models.base import utcnow
from cuehall.models.game_session import GameSession, SessionStatus, SessionType
from cuehall.services.ledger import TokenLedger
from cuehall.services.notifications import EventType
from cuehall.services.venue import VenueService
from cuehall.utils.errors import (
    ConflictError,
    ForbiddenError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
)


async def start_paid_game(controller, table_id: str, user_id: str):
    """Queue, accept and pay; returns the active session."""
    await controller.join_queue(table_id, user_id)
    game = await controller.accept_invitation(table_id, user_id)
    return await controller.confirm_payment(game.id, user_id)


# =============================================================================
# Invitation acceptance
# =============================================================================


class TestAcceptInvitation:
    """Accepting creates a pending session priced at the venue cost."""

    @pytest.mark.asyncio
    async def test_creates_pending_session(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")

        game = await controller.accept_invitation(table_id, "alice")

        assert game.status == SessionStatus.PENDING
        assert game.session_type == SessionType.PER_GAME
        assert game.cost == 10
        assert game.payer_id == "alice"
        assert game.players == ["alice"]

        snapshot = await controller.get_table_snapshot(table_id)
        assert snapshot["currentSessionId"] == game.id
        assert snapshot["invited"] == []
        assert snapshot["status"] == "occupied"

    @pytest.mark.asyncio
    async def test_accept_is_idempotent(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")

        first = await controller.accept_invitation(table_id, "alice")
        second = await controller.accept_invitation(table_id, "alice")

        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_second_player_joins_pending_session(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")
        game = await controller.accept_invitation(table_id, "alice")
        await controller.join_queue(table_id, "bob")

        joined = await controller.accept_invitation(table_id, "bob")

        assert joined.id == game.id
        assert joined.players == ["alice", "bob"]
        assert (await controller.get_table_snapshot(table_id))["invited"] == []

    @pytest.mark.asyncio
    async def test_not_invited(self, controller, table_id, players):
        with pytest.raises(ForbiddenError) as exc_info:
            await controller.accept_invitation(table_id, "alice")
        assert exc_info.value.code == "NOT_INVITED"

    @pytest.mark.asyncio
    async def test_cost_change_does_not_touch_existing_session(self, db, controller, venue, table_id, players):
        await controller.join_queue(table_id, "alice")
        game = await controller.accept_invitation(table_id, "alice")

        await VenueService(db).update_per_game_cost(venue.id, 25)
        await db.commit()

        assert (await controller.get_session(game.id)).cost == 10


# =============================================================================
# Token payment
# =============================================================================


class TestConfirmPayment:
    @pytest.mark.asyncio
    async def test_debits_and_starts(self, db, controller, dispatcher, table_id, players):
        game = await start_paid_game(controller, table_id, "alice")

        assert game.status == SessionStatus.ACTIVE
        assert game.start_time is not None
        assert await TokenLedger(db).get_balance("alice") == 40

        snapshot = await controller.get_table_snapshot(table_id)
        assert snapshot["status"] == "in_play"
        assert dispatcher.events(EventType.GAME_STARTED, "alice")
        balance_update = dispatcher.events(EventType.TOKEN_BALANCE_UPDATE, "alice")[-1]
        assert balance_update.payload["balance"] == 40
        assert balance_update.payload["change"] == -10

    @pytest.mark.asyncio
    async def test_insufficient_funds_keeps_session_pending(self, db, controller, table_id, players):
        await controller.join_queue(table_id, "dave")
        game = await controller.accept_invitation(table_id, "dave")
        session_id = game.id

        with pytest.raises(InsufficientFundsError):
            await controller.confirm_payment(session_id, "dave")

        # The rollback expired every loaded instance; read through the controller
        assert (await controller.get_session(session_id)).status == SessionStatus.PENDING
        assert (await controller.get_table_snapshot(table_id))["status"] == "occupied"
        assert await TokenLedger(db).get_balance("dave") == 0

    @pytest.mark.asyncio
    async def test_non_participant(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")
        game = await controller.accept_invitation(table_id, "alice")

        with pytest.raises(ForbiddenError):
            await controller.confirm_payment(game.id, "bob")

    @pytest.mark.asyncio
    async def test_second_payment_rejected(self, db, controller, table_id, players):
        game = await start_paid_game(controller, table_id, "alice")

        with pytest.raises(InvalidStateError) as exc_info:
            await controller.confirm_payment(game.id, "alice")

        assert exc_info.value.code == "SESSION_NOT_PENDING"
        assert await TokenLedger(db).get_balance("alice") == 40

    @pytest.mark.asyncio
    async def test_unknown_session(self, controller, players):
        with pytest.raises(NotFoundError):
            await controller.confirm_payment("nope", "alice")

    @pytest.mark.asyncio
    async def test_challenger_joins_running_solo_game(self, controller, dispatcher, table_id, players):
        game = await start_paid_game(controller, table_id, "alice")

        snapshot = await controller.join_queue(table_id, "bob")

        assert snapshot["status"] == "in_play"
        assert snapshot["player2Id"] == "bob"
        assert snapshot["queue"] == []
        assert (await controller.get_session(game.id)).players == ["alice", "bob"]
        invitation = dispatcher.events(EventType.INVITATION, "bob")[-1]
        assert invitation.payload["joinedSession"] is True

    @pytest.mark.asyncio
    async def test_payment_with_a_queued_user_activates_session(self, session_factory, controller, table_id, players):
        await controller.join_queue(table_id, "alice")
        game = await controller.accept_invitation(table_id, "alice")
        await controller.join_queue(table_id, "bob")
        await controller.join_queue(table_id, "carol")

        await controller.confirm_payment(game.id, "alice")

        async with session_factory() as fresh:
            stored = await fresh.get(GameSession, game.id)
            assert stored.status == SessionStatus.ACTIVE
            assert stored.start_time is not None
            assert stored.players == ["alice", "bob"]

        snapshot = await controller.get_table_snapshot(table_id)
        assert snapshot["status"] == "in_play"
        assert snapshot["queue"] == ["carol"]

        claimed = await controller.claim_win(table_id, "alice")
        assert claimed.status == SessionStatus.AWAITING_CONFIRMATION
        assert claimed.claimant_id == "alice"


# =============================================================================
# Leaving
# =============================================================================


class TestLeaveTable:
    @pytest.mark.asyncio
    async def test_payer_leaving_cancels_pending_session(self, controller, dispatcher, table_id, players):
        await controller.join_queue(table_id, "alice")
        game = await controller.accept_invitation(table_id, "alice")

        snapshot = await controller.leave_table(table_id, "alice")

        assert snapshot["status"] == "available"
        assert snapshot["currentSessionId"] is None
        assert (await controller.get_session(game.id)).status == SessionStatus.CANCELLED
        assert dispatcher.events(EventType.SESSION_CANCELLED, "alice")

    @pytest.mark.asyncio
    async def test_non_payer_leaving_keeps_session(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")
        game = await controller.accept_invitation(table_id, "alice")
        await controller.join_queue(table_id, "bob")
        await controller.join_queue(table_id, "carol")

        snapshot = await controller.leave_table(table_id, "bob")

        assert snapshot["player2Id"] == "carol"
        assert snapshot["invited"] == ["carol"]
        refreshed = await controller.get_session(game.id)
        assert refreshed.status == SessionStatus.PENDING
        assert refreshed.players == ["alice", "carol"]

    @pytest.mark.asyncio
    async def test_cannot_leave_running_game(self, controller, table_id, players):
        await start_paid_game(controller, table_id, "alice")

        with pytest.raises(InvalidStateError):
            await controller.leave_table(table_id, "alice")

    @pytest.mark.asyncio
    async def test_not_seated(self, controller, table_id, players):
        with pytest.raises(NotFoundError):
            await controller.leave_table(table_id, "alice")


# =============================================================================
# Direct join / drop-in
# =============================================================================


class TestDirectAdmission:
    """Pay up front and play at once; the queue is displaced."""

    @pytest.mark.asyncio
    async def test_direct_join_empty_table(self, db, controller, table_id, players):
        game = await controller.direct_join(table_id, "alice")

        assert game.session_type == SessionType.DIRECT_JOIN
        assert game.status == SessionStatus.ACTIVE
        assert game.payer_id == "alice"
        assert await TokenLedger(db).get_balance("alice") == 40
        snapshot = await controller.get_table_snapshot(table_id)
        assert snapshot["status"] == "in_play"
        assert snapshot["player1Id"] == "alice"

    @pytest.mark.asyncio
    async def test_direct_join_displaces_queue(self, db, controller, dispatcher, table_id, players):
        table = await controller.tables.get_table(table_id)
        table.queue = ["bob", "carol"]
        await db.commit()

        await controller.direct_join(table_id, "alice")

        displaced = dispatcher.events(EventType.QUEUE_DISPLACED)
        assert [n.target for n in displaced] == ["bob", "carol"]
        assert all(n.payload["byUserId"] == "alice" for n in displaced)
        assert (await controller.get_table_snapshot(table_id))["queue"] == []

    @pytest.mark.asyncio
    async def test_direct_join_requires_available(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")

        with pytest.raises(InvalidStateError):
            await controller.direct_join(table_id, "bob")

    @pytest.mark.asyncio
    async def test_direct_join_insufficient_funds(self, db, controller, table_id, players):
        with pytest.raises(InsufficientFundsError):
            await controller.direct_join(table_id, "dave")

        snapshot = await controller.get_table_snapshot(table_id)
        assert snapshot["status"] == "available"
        assert snapshot["player1Id"] is None
        assert snapshot["currentSessionId"] is None

    @pytest.mark.asyncio
    async def test_drop_in_requires_empty_table(self, controller, table_id, players):
        game = await start_paid_game(controller, table_id, "alice")
        await controller.join_queue(table_id, "bob")
        await controller.claim_win(table_id, "alice")
        await controller.confirm_win(table_id, game.id, "alice", "bob")

        with pytest.raises(ConflictError) as exc_info:
            await controller.drop_in(table_id, "carol")
        assert exc_info.value.code == "TABLE_NOT_EMPTY"

    @pytest.mark.asyncio
    async def test_drop_in_is_solo(self, controller, table_id, players):
        game = await controller.drop_in(table_id, "alice")
        snapshot = await controller.join_queue(table_id, "bob")

        assert game.session_type == SessionType.DROP_IN
        assert snapshot["player2Id"] is None
        assert snapshot["queue"] == ["bob"]


# =============================================================================
# Solo completion
# =============================================================================


class TestFinishSolo:
    @pytest.mark.asyncio
    async def test_finish_frees_table_and_invites_next(self, db, controller, dispatcher, table_id, players):
        game = await controller.drop_in(table_id, "alice")
        await controller.join_queue(table_id, "bob")

        finished = await controller.finish_solo_session(table_id, game.id)

        assert finished.status == SessionStatus.COMPLETED
        assert finished.winner_id is None
        assert await TokenLedger(db).get_balance("alice") == 40
        snapshot = await controller.get_table_snapshot(table_id)
        assert snapshot["player1Id"] == "bob"
        assert snapshot["status"] == "occupied"
        assert snapshot["lastGameEndedAt"] is not None
        assert dispatcher.events(EventType.INVITATION, "bob")

    @pytest.mark.asyncio
    async def test_two_player_session_cannot_finish_solo(self, controller, table_id, players):
        game = await start_paid_game(controller, table_id, "alice")
        await controller.join_queue(table_id, "bob")

        with pytest.raises(InvalidStateError):
            await controller.finish_solo_session(table_id, game.id)

    @pytest.mark.asyncio
    async def test_wrong_session(self, controller, table_id, players):
        await controller.drop_in(table_id, "alice")

        with pytest.raises(ConflictError):
            await controller.finish_solo_session(table_id, "other-session")


# =============================================================================
# Payment window
# =============================================================================


class TestExpiry:
    """Unpaid sessions are cancelled once the payment window passes."""

    @pytest.mark.asyncio
    async def test_expired_session_cancelled(self, controller, dispatcher, table_id, players):
        await controller.join_queue(table_id, "alice")
        game = await controller.accept_invitation(table_id, "alice")
        await controller.join_queue(table_id, "bob")
        await controller.join_queue(table_id, "carol")

        expired = await controller.expire_pending_sessions(utcnow() + timedelta(seconds=301))

        assert expired == [game.id]
        assert (await controller.get_session(game.id)).status == SessionStatus.CANCELLED
        cancelled = dispatcher.events(EventType.SESSION_CANCELLED, "alice")
        assert cancelled[-1].payload["reason"] == "payment_timeout"

        snapshot = await controller.get_table_snapshot(table_id)
        assert snapshot["currentSessionId"] is None
        assert snapshot["player1Id"] == "bob"
        assert snapshot["player2Id"] == "carol"
        assert snapshot["status"] == "occupied"

    @pytest.mark.asyncio
    async def test_within_window_untouched(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")
        game = await controller.accept_invitation(table_id, "alice")

        assert await controller.expire_pending_sessions(utcnow() + timedelta(seconds=10)) == []
        assert (await controller.get_session(game.id)).status == SessionStatus.PENDING

    @pytest.mark.asyncio
    async def test_paid_session_never_expires(self, controller, table_id, players):
        game = await start_paid_game(controller, table_id, "alice")

        assert await controller.expire_pending_sessions(utcnow() + timedelta(hours=1)) == []
        assert (await controller.get_session(game.id)).status == SessionStatus.ACTIVE
