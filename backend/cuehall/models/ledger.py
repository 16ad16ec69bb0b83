"""Token ledger entry model."""

from enum import Enum

from sqlalchemy import BigInteger, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cuehall.models.base import Base, TimestampMixin, UUIDMixin, enum_column


class LedgerEntryType(str, Enum):
    """Reason for a balance change."""

    GAME_FEE = "game_fee"
    WIN_PAYOUT = "win_payout"
    TOKEN_PURCHASE = "token_purchase"
    DISPUTE_AWARD = "dispute_award"
    ADMIN_ADJUST = "admin_adjust"
    CARD_CREDIT = "card_credit"


class LedgerEntry(Base, UUIDMixin, TimestampMixin):
    """Append-only record of every token balance change.

    ``idempotency_key`` is unique: a credit or debit tagged with a key is
    applied at most once.
    """

    __tablename__ = "ledger_entries"

    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    entry_type: Mapped[LedgerEntryType] = mapped_column(
        enum_column(LedgerEntryType),
        nullable=False,
        index=True,
    )

    amount: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Signed token amount (+credit/-debit)",
    )
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
    )
    session_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    integrity_hash: Mapped[str] = mapped_column(String(64), nullable=False)
