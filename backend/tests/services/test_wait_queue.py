"""Tests for the FIFO wait queue and invitations."""

import asyncio
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st

from cuehall.models import Base
from cuehall.services.admission import AdmissionController
from cuehall.services.notifications import EventType
from cuehall.utils.db import create_engine_for, create_session_factory
from cuehall.utils.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from tests.conftest import RecordingDispatcher, create_user, create_venue, get_test_settings


# =============================================================================
# Join / leave
# =============================================================================


class TestJoinQueue:
    """Joining admits from the head whenever a slot is open."""

    @pytest.mark.asyncio
    async def test_first_user_is_invited(self, controller, dispatcher, table_id, players):
        snapshot = await controller.join_queue(table_id, "alice")

        assert snapshot["status"] == "occupied"
        assert snapshot["player1Id"] == "alice"
        assert snapshot["invited"] == ["alice"]
        assert snapshot["queue"] == []
        assert snapshot["stateVersion"] == 2

        invitations = dispatcher.events(EventType.INVITATION, "alice")
        assert len(invitations) == 1
        assert invitations[0].payload["cost"] == 10
        assert invitations[0].payload["joinedSession"] is False

    @pytest.mark.asyncio
    async def test_third_user_waits(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")
        await controller.join_queue(table_id, "bob")
        snapshot = await controller.join_queue(table_id, "carol")

        assert snapshot["player1Id"] == "alice"
        assert snapshot["player2Id"] == "bob"
        assert snapshot["invited"] == ["alice", "bob"]
        assert snapshot["queue"] == ["carol"]

    @pytest.mark.asyncio
    async def test_broadcasts_after_commit(self, controller, dispatcher, table_id, players):
        await controller.join_queue(table_id, "alice")

        status_updates = dispatcher.events(EventType.TABLE_STATUS_UPDATE)
        queue_updates = dispatcher.events(EventType.QUEUE_UPDATE)
        assert status_updates[-1].channel.startswith("venue:")
        assert status_updates[-1].payload["stateVersion"] == 2
        assert queue_updates[-1].payload["tableId"] == table_id

    @pytest.mark.asyncio
    async def test_already_queued(self, controller, table_id, players):
        for user_id in ("alice", "bob", "carol"):
            await controller.join_queue(table_id, user_id)

        with pytest.raises(ConflictError) as exc_info:
            await controller.join_queue(table_id, "carol")
        assert exc_info.value.code == "ALREADY_QUEUED"
        assert exc_info.value.details["position"] == 1

    @pytest.mark.asyncio
    async def test_already_seated(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")

        with pytest.raises(ConflictError) as exc_info:
            await controller.join_queue(table_id, "alice")
        assert exc_info.value.code == "ALREADY_SEATED"

    @pytest.mark.asyncio
    async def test_unknown_user(self, controller, table_id):
        with pytest.raises(NotFoundError):
            await controller.join_queue(table_id, "ghost")

    @pytest.mark.asyncio
    async def test_out_of_order_table(self, controller, table_id, players):
        await controller.admin_set_out_of_order(table_id)

        with pytest.raises(InvalidStateError):
            await controller.join_queue(table_id, "alice")

    @pytest.mark.asyncio
    async def test_stale_expected_version(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")

        with pytest.raises(ConflictError) as exc_info:
            await controller.join_queue(table_id, "bob", expected_version=1)
        assert exc_info.value.details["currentVersion"] == 2

        snapshot = await controller.get_table_snapshot(table_id)
        assert snapshot["player2Id"] is None


class TestLeaveQueue:
    @pytest.mark.asyncio
    async def test_leave(self, controller, table_id, players):
        for user_id in ("alice", "bob", "carol"):
            await controller.join_queue(table_id, user_id)

        snapshot = await controller.leave_queue(table_id, "carol")

        assert snapshot["queue"] == []

    @pytest.mark.asyncio
    async def test_not_in_queue(self, controller, table_id, players):
        with pytest.raises(NotFoundError) as exc_info:
            await controller.leave_queue(table_id, "alice")
        assert exc_info.value.code == "NOT_IN_QUEUE"


# =============================================================================
# Invitation refill
# =============================================================================


class TestInviteNext:
    """Declines and departures refill the slot from the queue head."""

    @pytest.mark.asyncio
    async def test_decline_invites_next(self, controller, dispatcher, table_id, players):
        for user_id in ("alice", "bob", "carol"):
            await controller.join_queue(table_id, user_id)

        snapshot = await controller.decline_invitation(table_id, "alice")

        assert snapshot["player1Id"] == "bob"
        assert snapshot["player2Id"] == "carol"
        assert snapshot["invited"] == ["bob", "carol"]
        assert snapshot["queue"] == []
        assert [n.target for n in dispatcher.events(EventType.INVITATION)] == ["alice", "bob", "carol"]

    @pytest.mark.asyncio
    async def test_missing_user_at_head_is_skipped(self, db, controller, table_id, players):
        await controller.join_queue(table_id, "alice")
        await controller.join_queue(table_id, "bob")
        table = await controller.tables.get_table(table_id)
        table.queue = ["ghost", "carol"]
        await db.commit()

        snapshot = await controller.decline_invitation(table_id, "alice")

        assert snapshot["player2Id"] == "carol"
        assert snapshot["queue"] == []

    @pytest.mark.asyncio
    async def test_last_decline_frees_table(self, controller, table_id, players):
        await controller.join_queue(table_id, "alice")

        snapshot = await controller.decline_invitation(table_id, "alice")

        assert snapshot["status"] == "available"
        assert snapshot["player1Id"] is None

    @pytest.mark.asyncio
    async def test_decline_without_invitation(self, controller, table_id, players):
        with pytest.raises(ForbiddenError) as exc_info:
            await controller.decline_invitation(table_id, "alice")
        assert exc_info.value.code == "NOT_INVITED"

    @pytest.mark.asyncio
    async def test_admin_clear_queue(self, controller, dispatcher, table_id, players):
        for user_id in ("alice", "bob", "carol", "dave"):
            await controller.join_queue(table_id, user_id)

        dropped = await controller.admin_clear_queue(table_id)

        assert dropped == ["carol", "dave"]
        assert {n.target for n in dispatcher.events(EventType.QUEUE_DROPPED)} == {"carol", "dave"}
        assert (await controller.get_table_snapshot(table_id))["queue"] == []


# =============================================================================
# Property: FIFO fairness
# =============================================================================


async def _invitation_order(join_order: list[str]) -> list[str]:
    """Join everyone, then keep declining the oldest invitation; return invite order."""
    with tempfile.TemporaryDirectory() as tmp:
        test_settings = get_test_settings(f"sqlite+aiosqlite:///{Path(tmp) / 'fifo.db'}")
        engine = create_engine_for(test_settings)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            factory = create_session_factory(engine)

            async with factory() as session:
                for user_id in join_order:
                    await create_user(session, user_id)
                venue = await create_venue(session)
                table_id = venue.tables[0].id

                recorder = RecordingDispatcher()
                controller = AdmissionController(session, dispatcher=recorder, settings=test_settings)
                for user_id in join_order:
                    await controller.join_queue(table_id, user_id)
                while True:
                    snapshot = await controller.get_table_snapshot(table_id)
                    if not snapshot["queue"]:
                        break
                    await controller.decline_invitation(table_id, snapshot["invited"][0])

                return [n.target for n in recorder.events(EventType.INVITATION)]
        finally:
            await engine.dispose()


class TestQueueProperties:
    """Property: invitation order equals queue join order."""

    @given(
        join_order=st.lists(
            st.sampled_from(["u1", "u2", "u3", "u4", "u5", "u6"]),
            min_size=1,
            max_size=6,
            unique=True,
        )
    )
    @settings(max_examples=15, deadline=None)
    def test_fifo_invitations(self, join_order):
        assert asyncio.run(_invitation_order(join_order)) == join_order
