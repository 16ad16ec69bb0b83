"""Database models."""

from cuehall.models.base import Base, TimestampMixin, UUIDMixin
from cuehall.models.game_session import (
    DisputeResolution,
    GameSession,
    LIVE_SESSION_STATUSES,
    SessionStatus,
    SessionType,
)
from cuehall.models.ledger import LedgerEntry, LedgerEntryType
from cuehall.models.table import Table, TableStatus
from cuehall.models.user import User
from cuehall.models.venue import Venue

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    # Venue & Table
    "Venue",
    "Table",
    "TableStatus",
    # Sessions
    "GameSession",
    "SessionStatus",
    "SessionType",
    "DisputeResolution",
    "LIVE_SESSION_STATUSES",
    # Users & ledger
    "User",
    "LedgerEntry",
    "LedgerEntryType",
]
