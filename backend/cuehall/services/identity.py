"""Identity verification for bearer tokens."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from cuehall.config import Settings
from cuehall.utils.errors import ErrorCode, UnauthorizedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """A verified caller."""

    user_id: str
    is_admin: bool = False
    email: str | None = None
    display_name: str | None = None


class IdentityVerifier(ABC):
    """Turns a bearer token into an Identity or raises UnauthorizedError."""

    @abstractmethod
    def verify(self, token: str) -> Identity:
        ...


class JwtIdentityVerifier(IdentityVerifier):
    """Verifies HS256 (or configured algorithm) JWTs issued by the identity provider.

    Claims: ``sub`` (uid, required), ``exp`` (required), ``admin`` (bool),
    ``email``, ``name``.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256", audience: str | None = None):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> "JwtIdentityVerifier":
        return cls(settings.jwt_secret_key, settings.jwt_algorithm, settings.jwt_audience)

    def verify(self, token: str) -> Identity:
        if not token:
            raise UnauthorizedError("Authentication required")

        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={
                    "require_sub": True,
                    "require_exp": True,
                    "verify_aud": self.audience is not None,
                },
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Identity token expired")
            raise UnauthorizedError("Token has expired", code="TOKEN_EXPIRED")
        except JWTError as e:
            logger.info(f"Identity token rejected: {type(e).__name__}")
            raise UnauthorizedError("Invalid token", code=ErrorCode.UNAUTHORIZED)

        user_id = payload.get("sub")
        if not user_id:
            raise UnauthorizedError("Invalid token payload")

        return Identity(
            user_id=str(user_id),
            is_admin=bool(payload.get("admin", False)),
            email=payload.get("email"),
            display_name=payload.get("name"),
        )

    def issue(self, user_id: str, *, is_admin: bool = False, expires_in: int = 3600, **claims: Any) -> str:
        """Sign a token with the same key (development tooling and tests)."""
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "admin": is_admin,
            "iat": now,
            "exp": now + timedelta(seconds=expires_in),
            **claims,
        }
        if self.audience:
            payload.setdefault("aud", self.audience)
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
