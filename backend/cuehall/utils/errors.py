"""Error taxonomy for table, session and ledger operations.

Every failure raised by the core is a ``CoreError`` subclass carrying a
machine-readable code, a message and structured details. The HTTP layer maps
each category to a status code.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Lookup errors
    NOT_FOUND = "NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    VENUE_NOT_FOUND = "VENUE_NOT_FOUND"
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    NOT_IN_QUEUE = "NOT_IN_QUEUE"
    PLAYER_NOT_AT_TABLE = "PLAYER_NOT_AT_TABLE"

    # Concurrency / duplicate errors
    VERSION_CONFLICT = "VERSION_CONFLICT"
    ALREADY_QUEUED = "ALREADY_QUEUED"
    ALREADY_SEATED = "ALREADY_SEATED"
    TABLE_NOT_EMPTY = "TABLE_NOT_EMPTY"
    SESSION_MISMATCH = "SESSION_MISMATCH"
    DUPLICATE_OPERATION = "DUPLICATE_OPERATION"
    VENUE_HAS_LIVE_SESSIONS = "VENUE_HAS_LIVE_SESSIONS"

    # State machine errors
    INVALID_TRANSITION = "INVALID_TRANSITION"
    TABLE_UNAVAILABLE = "TABLE_UNAVAILABLE"
    NO_OPEN_SLOT = "NO_OPEN_SLOT"
    NOT_INVITED = "NOT_INVITED"
    NO_ACTIVE_SESSION = "NO_ACTIVE_SESSION"
    SESSION_NOT_PENDING = "SESSION_NOT_PENDING"
    SOLO_SESSION = "SOLO_SESSION"

    # Permission errors
    NOT_A_PARTICIPANT = "NOT_A_PARTICIPANT"
    SELF_CONFIRMATION = "SELF_CONFIRMATION"
    NOT_OPPONENT = "NOT_OPPONENT"
    ADMIN_REQUIRED = "ADMIN_REQUIRED"

    # Ledger errors
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INVALID_AMOUNT = "INVALID_AMOUNT"

    # Payment errors
    PAYMENT_VERIFICATION_FAILED = "PAYMENT_VERIFICATION_FAILED"
    PAYMENT_METADATA_MISMATCH = "PAYMENT_METADATA_MISMATCH"
    PAYMENTS_DISABLED = "PAYMENTS_DISABLED"
    PAYMENT_IN_PROGRESS = "PAYMENT_IN_PROGRESS"

    # External services
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"


class CoreError(Exception):
    """Base exception for table and ledger operations.

    Attributes:
        code: Error code for programmatic handling
        message: User-friendly error message
        details: Additional error details
        recoverable: Whether retrying the request may succeed
    """

    default_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        code: ErrorCode | str | None = None,
        details: dict[str, Any] | None = None,
    ):
        code = code or self.default_code
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errorCode": self.code,
            "errorMessage": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class NotFoundError(CoreError):
    """A referenced user, table, session or queue entry does not exist."""

    default_code = ErrorCode.NOT_FOUND


class ForbiddenError(CoreError):
    """The caller is not allowed to perform the action."""

    default_code = ErrorCode.FORBIDDEN


class ConflictError(CoreError):
    """Concurrent modification or duplicate participation.

    Callers may retry after reloading state.
    """

    default_code = ErrorCode.VERSION_CONFLICT
    recoverable = True


class InvalidStateError(CoreError):
    """The action is not allowed in the table's or session's current status."""

    default_code = ErrorCode.INVALID_TRANSITION


class InvalidRequestError(CoreError):
    """Malformed input (non-positive amounts, unknown resolutions)."""

    default_code = ErrorCode.INVALID_REQUEST


class InsufficientFundsError(CoreError):
    """Raised when a debit exceeds the user's token balance."""

    default_code = ErrorCode.INSUFFICIENT_FUNDS
    recoverable = True

    def __init__(self, required: int, available: int):
        super().__init__(
            message=f"Insufficient tokens: required {required}, available {available}",
            details={"required": required, "available": available},
        )
        self.required = required
        self.available = available


class PaymentVerificationError(CoreError):
    """Webhook signature or metadata did not verify."""

    default_code = ErrorCode.PAYMENT_VERIFICATION_FAILED


class ExternalServiceError(CoreError):
    """A collaborator (payment gateway, broadcast channel) failed."""

    default_code = ErrorCode.EXTERNAL_SERVICE_ERROR
    recoverable = True


class UnauthorizedError(CoreError):
    """Missing or invalid identity token."""

    default_code = ErrorCode.UNAUTHORIZED
