"""Token ledger: atomic per-user debit/credit with idempotency.

Balances change only through conditional UPDATE statements, so concurrent
debits against the same user can never drive a balance negative, and every
change is recorded as a LedgerEntry with an integrity hash.
"""

import hashlib
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cuehall.models.ledger import LedgerEntry, LedgerEntryType
from cuehall.models.user import User
from cuehall.utils.errors import (
    ErrorCode,
    InsufficientFundsError,
    InvalidRequestError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


class TokenLedger:
    """Token balance operations bound to one database session.

    Nothing here commits; the caller's unit of work decides.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_balance(self, user_id: str) -> int:
        """Current balance, read straight from the database."""
        result = await self.session.execute(
            select(User.token_balance).where(User.id == user_id)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError(
                f"User not found: {user_id}",
                code=ErrorCode.USER_NOT_FOUND,
                details={"userId": user_id},
            )
        return balance

    async def find_entry(self, idempotency_key: str) -> LedgerEntry | None:
        result = await self.session.execute(
            select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def debit(
        self,
        user_id: str,
        amount: int,
        entry_type: LedgerEntryType = LedgerEntryType.GAME_FEE,
        *,
        idempotency_key: str | None = None,
        session_id: str | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        """Subtract ``amount`` tokens.

        Raises:
            InsufficientFundsError: balance < amount (balance unchanged)
            NotFoundError: unknown user
        """
        self._validate_amount(amount)

        if idempotency_key:
            existing = await self.find_entry(idempotency_key)
            if existing is not None:
                logger.info(f"Ledger debit replay ignored: key={idempotency_key}")
                return existing

        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.token_balance >= amount)
            .values(token_balance=User.token_balance - amount)
            .returning(User.token_balance)
            .execution_options(synchronize_session=False)
        )
        balance_after = result.scalar_one_or_none()

        if balance_after is None:
            # Either the user is missing or the guard rejected the debit
            available = await self.get_balance(user_id)
            raise InsufficientFundsError(required=amount, available=available)

        return await self._record(
            user_id=user_id,
            entry_type=entry_type,
            amount=-amount,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
            session_id=session_id,
            description=description,
        )

    async def credit(
        self,
        user_id: str,
        amount: int,
        entry_type: LedgerEntryType,
        *,
        idempotency_key: str | None = None,
        session_id: str | None = None,
        description: str | None = None,
    ) -> LedgerEntry:
        """Add ``amount`` tokens, at most once per idempotency key.

        A replayed key returns the original entry without touching the
        balance. Two concurrent first-time calls with the same key collide on
        the unique constraint at flush; the loser's transaction fails.
        """
        self._validate_amount(amount)

        if idempotency_key:
            existing = await self.find_entry(idempotency_key)
            if existing is not None:
                logger.info(f"Ledger credit replay ignored: key={idempotency_key}")
                return existing

        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(token_balance=User.token_balance + amount)
            .returning(User.token_balance)
            .execution_options(synchronize_session=False)
        )
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            raise NotFoundError(
                f"User not found: {user_id}",
                code=ErrorCode.USER_NOT_FOUND,
                details={"userId": user_id},
            )

        return await self._record(
            user_id=user_id,
            entry_type=entry_type,
            amount=amount,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
            session_id=session_id,
            description=description,
        )

    async def entries(
        self,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        entry_type: LedgerEntryType | None = None,
    ) -> list[LedgerEntry]:
        """Ledger history for a user, newest first."""
        query = (
            select(LedgerEntry)
            .where(LedgerEntry.user_id == user_id)
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id)
            .offset(offset)
            .limit(limit)
        )
        if entry_type:
            query = query.where(LedgerEntry.entry_type == entry_type)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def _record(
        self,
        *,
        user_id: str,
        entry_type: LedgerEntryType,
        amount: int,
        balance_after: int,
        idempotency_key: str | None,
        session_id: str | None,
        description: str | None,
    ) -> LedgerEntry:
        balance_before = balance_after - amount
        entry = LedgerEntry(
            user_id=user_id,
            entry_type=entry_type,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
            session_id=session_id,
            description=description,
            integrity_hash=self._compute_integrity_hash(
                user_id=user_id,
                entry_type=entry_type,
                amount=amount,
                balance_before=balance_before,
                balance_after=balance_after,
            ),
        )
        self.session.add(entry)
        await self.session.flush()

        logger.info(
            f"Ledger {entry_type.value}: user={user_id} amount={amount:+} "
            f"balance={balance_before} -> {balance_after}"
        )
        return entry

    @staticmethod
    def _validate_amount(amount: int) -> None:
        if amount <= 0:
            raise InvalidRequestError(
                f"Amount must be positive: {amount}",
                code=ErrorCode.INVALID_AMOUNT,
                details={"amount": amount},
            )

    @staticmethod
    def _compute_integrity_hash(
        user_id: str,
        entry_type: LedgerEntryType,
        amount: int,
        balance_before: int,
        balance_after: int,
    ) -> str:
        """SHA-256 over the money fields, verifiable later to detect tampering."""
        data = f"{user_id}:{entry_type.value}:{amount}:{balance_before}:{balance_after}"
        return hashlib.sha256(data.encode()).hexdigest()

    @staticmethod
    def verify_integrity(entry: LedgerEntry) -> bool:
        """Verify a ledger entry's integrity hash."""
        expected = TokenLedger._compute_integrity_hash(
            user_id=entry.user_id,
            entry_type=entry.entry_type,
            amount=entry.amount,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
        )
        return entry.integrity_hash == expected
