"""Venue model."""

from sqlalchemy import Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cuehall.models.base import Base, TimestampMixin, UUIDMixin


class Venue(Base, UUIDMixin, TimestampMixin):
    """A location hosting one or more tables."""

    __tablename__ = "venues"
    __table_args__ = (Index("ix_venues_location", "latitude", "longitude"),)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Snapshot into each session at creation; changes never apply retroactively
    per_game_cost: Mapped[int] = mapped_column(Integer, default=10, nullable=False)

    tables: Mapped[list["Table"]] = relationship(
        "Table",
        back_populates="venue",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Table.table_number",
    )

    def __repr__(self) -> str:
        return f"<Venue {self.name} cost={self.per_game_cost}>"
