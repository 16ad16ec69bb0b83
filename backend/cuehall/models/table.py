"""Table model."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cuehall.models.base import (
    Base,
    JSONType,
    TimestampMixin,
    UUIDMixin,
    enum_column,
)


class TableStatus(str, Enum):
    """Table status."""

    AVAILABLE = "available"  # Free, or only a retained winner seated
    OCCUPIED = "occupied"  # Invitation seated, game not started
    IN_PLAY = "in_play"  # Paid session running
    AWAITING_CONFIRMATION = "awaiting_confirmation"  # Win claimed
    MAINTENANCE = "maintenance"  # Disputed result, admin must resolve
    OUT_OF_ORDER = "out_of_order"  # Taken out of service by an admin


class Table(Base, UUIDMixin, TimestampMixin):
    """Physical game table.

    ``state_version`` is the optimistic concurrency counter: every UPDATE is
    issued with ``WHERE state_version = <loaded value>`` and bumps it, so a
    writer working from a stale read fails instead of overwriting.
    """

    __tablename__ = "tables"
    __table_args__ = (
        UniqueConstraint("venue_id", "table_number", name="uq_tables_venue_number"),
    )

    venue_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("venues.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    table_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Controller board attached to the table, if any
    device_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[TableStatus] = mapped_column(
        enum_column(TableStatus),
        default=TableStatus.AVAILABLE,
        nullable=False,
        index=True,
    )

    player1_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    player2_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    current_session_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    # Ordered user ids; always reassign, never mutate in place
    queue: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    # Seated users holding an unaccepted invitation
    invited: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)

    last_game_ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    state_version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": state_version}

    venue: Mapped["Venue"] = relationship("Venue", back_populates="tables")

    def __repr__(self) -> str:
        return f"<Table {self.id} #{self.table_number} {self.status.value} v{self.state_version}>"
