"""
User service: owns accounts and announces changes on user.exchange.

This service only publishes. It does not know the notification service exists;
the welcome email happens because the notification service bound a queue to
user.registered.

Publishing is fire and forget: if the broker is down the account is still
created and the failure is logged. The welcome email for that user is lost.
"""

import logging
from typing import Optional

from backbone.events import EventTypes, UserDeleted, UserRegistered, UserUpdated
from backbone.publisher import PublishResult, Publisher
from shared.data_store import DataStore
from shared.models import User

logger = logging.getLogger("user_service")


class UserService:
    """Accounts, announced as events."""

    def __init__(self, publisher: Publisher, data_store: Optional[DataStore] = None):
        self.publisher = publisher
        self.data_store = data_store or DataStore()

    async def register(self, username: str, email: str) -> User:
        """Create an account and publish user.registered."""
        user = self.data_store.add_user(User(username=username, email=email))
        logger.info(f"User registered: {user.username} ({user.id})")

        result = await self.publisher.publish(EventTypes.USER_REGISTERED, UserRegistered(
            user_id=user.id,
            username=user.username,
            email=user.email,
        ))
        self._log_lost(result, user.id)
        return user

    async def update_user(
        self,
        user_id: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[User]:
        """Update an account and publish user.updated. Returns None if not found."""
        user = self.data_store.update_user(user_id, username=username, email=email)
        if not user:
            logger.error(f"User not found: {user_id}")
            return None

        result = await self.publisher.publish(EventTypes.USER_UPDATED, UserUpdated(
            user_id=user.id,
            username=user.username,
            email=user.email,
        ))
        self._log_lost(result, user.id)
        return user

    async def delete_user(self, user_id: str) -> bool:
        """Delete an account and publish user.deleted. False if not found."""
        if not self.data_store.delete_user(user_id):
            logger.error(f"User not found: {user_id}")
            return False

        result = await self.publisher.publish(EventTypes.USER_DELETED, UserDeleted(user_id=user_id))
        self._log_lost(result, user_id)
        return True

    @staticmethod
    def _log_lost(result: PublishResult, user_id: str) -> None:
        if not result.ok:
            logger.warning(f"{result.routing_key} for user {user_id} was not published: {result.error}")
