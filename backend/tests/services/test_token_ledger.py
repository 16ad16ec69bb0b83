"""Tests for the token ledger: guarded debits, idempotent credits, history."""

import asyncio
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings, strategies as st

from cuehall.models import Base, User
from cuehall.models.ledger import LedgerEntryType
from cuehall.services.ledger import TokenLedger
from cuehall.utils.db import create_engine_for, create_session_factory
from cuehall.utils.errors import InsufficientFundsError, InvalidRequestError, NotFoundError
from tests.conftest import create_user, get_test_settings


# =============================================================================
# Debit
# =============================================================================


class TestDebit:
    """Debits never take a balance below zero."""

    @pytest.mark.asyncio
    async def test_debit_records_entry(self, db):
        await create_user(db, "alice", balance=50)
        ledger = TokenLedger(db)

        entry = await ledger.debit("alice", 10, idempotency_key="game:s1", session_id="s1")
        await db.commit()

        assert entry.amount == -10
        assert entry.balance_before == 50
        assert entry.balance_after == 40
        assert entry.entry_type == LedgerEntryType.GAME_FEE
        assert TokenLedger.verify_integrity(entry)
        assert await ledger.get_balance("alice") == 40

    @pytest.mark.asyncio
    async def test_insufficient_funds_leaves_balance(self, db):
        await create_user(db, "alice", balance=5)
        ledger = TokenLedger(db)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await ledger.debit("alice", 10)

        assert exc_info.value.required == 10
        assert exc_info.value.available == 5
        await db.rollback()
        assert await ledger.get_balance("alice") == 5

    @pytest.mark.asyncio
    async def test_exact_balance_can_be_spent(self, db):
        await create_user(db, "alice", balance=10)
        ledger = TokenLedger(db)

        entry = await ledger.debit("alice", 10)

        assert entry.balance_after == 0

    @pytest.mark.asyncio
    async def test_unknown_user(self, db):
        with pytest.raises(NotFoundError) as exc_info:
            await TokenLedger(db).debit("ghost", 1)
        assert exc_info.value.code == "USER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_replayed_debit_key(self, db):
        await create_user(db, "alice", balance=50)
        ledger = TokenLedger(db)

        first = await ledger.debit("alice", 10, idempotency_key="game:s1")
        second = await ledger.debit("alice", 10, idempotency_key="game:s1")

        assert first.id == second.id
        assert await ledger.get_balance("alice") == 40

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5])
    async def test_non_positive_amount(self, db, amount):
        await create_user(db, "alice")
        with pytest.raises(InvalidRequestError):
            await TokenLedger(db).debit("alice", amount)


# =============================================================================
# Credit
# =============================================================================


class TestCredit:
    """Credits apply at most once per idempotency key."""

    @pytest.mark.asyncio
    async def test_credit_once_per_key(self, db):
        await create_user(db, "alice", balance=0)
        ledger = TokenLedger(db)

        first = await ledger.credit(
            "alice", 25, LedgerEntryType.TOKEN_PURCHASE, idempotency_key="pi_123"
        )
        await db.commit()
        replay = await ledger.credit(
            "alice", 25, LedgerEntryType.TOKEN_PURCHASE, idempotency_key="pi_123"
        )
        await db.commit()

        assert replay.id == first.id
        assert await ledger.get_balance("alice") == 25

    @pytest.mark.asyncio
    async def test_credit_without_key_always_applies(self, db):
        await create_user(db, "alice", balance=0)
        ledger = TokenLedger(db)

        await ledger.credit("alice", 5, LedgerEntryType.ADMIN_ADJUST)
        await ledger.credit("alice", 5, LedgerEntryType.ADMIN_ADJUST)

        assert await ledger.get_balance("alice") == 10

    @pytest.mark.asyncio
    async def test_credit_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            await TokenLedger(db).credit("ghost", 5, LedgerEntryType.WIN_PAYOUT)


class TestHistory:
    @pytest.mark.asyncio
    async def test_entries_filter_and_paging(self, db):
        await create_user(db, "alice", balance=100)
        ledger = TokenLedger(db)
        await ledger.debit("alice", 10, idempotency_key="game:a")
        await ledger.credit("alice", 10, LedgerEntryType.WIN_PAYOUT, idempotency_key="win:a")
        await ledger.debit("alice", 10, idempotency_key="game:b")
        await db.commit()

        everything = await ledger.entries("alice")
        fees = await ledger.entries("alice", entry_type=LedgerEntryType.GAME_FEE)
        page = await ledger.entries("alice", limit=1)

        assert len(everything) == 3
        assert {e.idempotency_key for e in fees} == {"game:a", "game:b"}
        assert len(page) == 1

    @pytest.mark.asyncio
    async def test_tampered_entry_fails_integrity(self, db):
        await create_user(db, "alice", balance=100)
        entry = await TokenLedger(db).debit("alice", 10)

        entry.amount = -1

        assert not TokenLedger.verify_integrity(entry)


# =============================================================================
# Property: no overdraft
# =============================================================================

operations = st.lists(
    st.tuples(
        st.sampled_from(["debit", "credit"]),
        st.integers(min_value=1, max_value=30),
        st.sampled_from([None, "k1", "k2", "k3"]),
    ),
    min_size=1,
    max_size=15,
)


async def _run_ledger_ops(start: int, ops: list[tuple[str, int, str | None]]) -> tuple[list[int], int]:
    """Apply ops one transaction each; returns observed balances and the model balance."""
    with tempfile.TemporaryDirectory() as tmp:
        test_settings = get_test_settings(f"sqlite+aiosqlite:///{Path(tmp) / 'ledger.db'}")
        engine = create_engine_for(test_settings)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            factory = create_session_factory(engine)

            async with factory() as session:
                session.add(User(id="u", token_balance=start, fcm_tokens=[]))
                await session.commit()

            expected = start
            seen_keys: set[str] = set()
            observed: list[int] = []
            for kind, amount, key in ops:
                async with factory() as session:
                    ledger = TokenLedger(session)
                    try:
                        if kind == "debit":
                            await ledger.debit("u", amount)
                            expected -= amount
                        else:
                            await ledger.credit(
                                "u", amount, LedgerEntryType.ADMIN_ADJUST, idempotency_key=key
                            )
                            if key is None or key not in seen_keys:
                                expected += amount
                            if key is not None:
                                seen_keys.add(key)
                        await session.commit()
                    except InsufficientFundsError:
                        await session.rollback()
                    observed.append(await ledger.get_balance("u"))
            return observed, expected
        finally:
            await engine.dispose()


class TestLedgerProperties:
    """Property: balances never go negative and match a simple model."""

    @given(start=st.integers(min_value=0, max_value=50), ops=operations)
    @settings(max_examples=20, deadline=None)
    def test_balance_never_negative(self, start, ops):
        observed, expected = asyncio.run(_run_ledger_ops(start, ops))

        assert all(balance >= 0 for balance in observed)
        assert observed[-1] == expected
