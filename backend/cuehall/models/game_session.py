"""Game session model.

A GameSession is one paid occupancy of a table: a per-game reservation, a
direct join, a solo drop-in, or a token purchase record (no table).
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cuehall.models.base import Base, TimestampMixin, UUIDMixin, enum_column


class SessionStatus(str, Enum):
    """Game session status."""

    PENDING = "pending"
    ACTIVE = "active"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


LIVE_SESSION_STATUSES = frozenset(
    {
        SessionStatus.PENDING,
        SessionStatus.ACTIVE,
        SessionStatus.AWAITING_CONFIRMATION,
        SessionStatus.DISPUTED,
    }
)


class SessionType(str, Enum):
    """How the session was started."""

    PER_GAME = "per_game"
    DIRECT_JOIN = "direct_join"
    DROP_IN = "drop_in"
    TOKEN_PURCHASE = "token_purchase"


class DisputeResolution(str, Enum):
    """Admin outcome for a disputed session."""

    AWARD = "award"
    VOID = "void"


class GameSession(Base, UUIDMixin, TimestampMixin):
    """Game session record."""

    __tablename__ = "game_sessions"

    table_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("tables.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    venue_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    session_type: Mapped[SessionType] = mapped_column(
        "type",
        enum_column(SessionType),
        nullable=False,
    )
    status: Mapped[SessionStatus] = mapped_column(
        enum_column(SessionStatus),
        default=SessionStatus.PENDING,
        nullable=False,
        index=True,
    )

    player1_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    player2_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    payer_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    claimant_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    winner_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    resolution: Mapped[DisputeResolution | None] = mapped_column(
        enum_column(DisputeResolution),
        nullable=True,
    )

    # Fixed at creation
    cost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Token purchases
    purchased_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
    )

    reserved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def players(self) -> list[str]:
        return [p for p in (self.player1_id, self.player2_id) if p]

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_SESSION_STATUSES

    def __repr__(self) -> str:
        return f"<GameSession {self.id} {self.session_type.value} {self.status.value}>"
