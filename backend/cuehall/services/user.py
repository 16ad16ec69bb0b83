"""User records synced from the identity provider."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from cuehall.models.user import User
from cuehall.services.identity import Identity
from cuehall.utils.errors import ErrorCode, NotFoundError

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_user(self, user_id: str) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError(
                f"User not found: {user_id}",
                code=ErrorCode.USER_NOT_FOUND,
                details={"userId": user_id},
            )
        return user

    async def sync(self, identity: Identity, fcm_token: str | None = None) -> User:
        """Create or refresh the user row for a verified identity.

        The admin flag follows the identity provider; the token balance is
        never touched here.
        """
        user = await self.session.get(User, identity.user_id)
        if user is None:
            user = User(
                id=identity.user_id,
                email=identity.email,
                display_name=identity.display_name,
                is_admin=identity.is_admin,
                token_balance=0,
                fcm_tokens=[],
            )
            self.session.add(user)
            logger.info(f"User created from identity: user={identity.user_id}")
        else:
            if identity.email:
                user.email = identity.email
            if identity.display_name:
                user.display_name = identity.display_name
            user.is_admin = identity.is_admin

        if fcm_token and fcm_token not in user.fcm_tokens:
            user.fcm_tokens = [*user.fcm_tokens, fcm_token]

        await self.session.flush()
        return user
