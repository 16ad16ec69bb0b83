"""User model."""

from sqlalchemy import BigInteger, Boolean, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from cuehall.models.base import Base, JSONType, TimestampMixin


class User(Base, TimestampMixin):
    """Player account.

    The primary key is the identity provider's uid, so records are created by
    syncing a verified identity rather than by registration.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("token_balance >= 0", name="ck_users_token_balance_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Only mutated through TokenLedger conditional updates
    token_balance: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
    )

    # Push notification device tokens
    fcm_tokens: Mapped[list[str]] = mapped_column(
        JSONType,
        default=list,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User {self.id} balance={self.token_balance}>"
