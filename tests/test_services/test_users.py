"""
Tests for the user service.
"""

import pytest

from backbone.publisher import Publisher
from fakes import RecordingExchange
from services.users import UserService


@pytest.fixture
def users(user_publisher, data_store) -> UserService:
    return UserService(user_publisher, data_store)


class TestUserService:

    @pytest.mark.asyncio
    async def test_register_publishes_user_registered(self, users, user_exchange, data_store):
        user = await users.register("ann", "ann@example.com")

        assert data_store.get_user(user.id) == user
        envelope = user_exchange.envelopes()[0]
        assert envelope.event == "user.registered"
        assert envelope.data == {"user_id": user.id, "username": "ann", "email": "ann@example.com"}

    @pytest.mark.asyncio
    async def test_register_survives_broker_outage(self, data_store, caplog):
        users = UserService(
            Publisher(RecordingExchange("user.exchange", fail_with=ConnectionError("down"))),
            data_store,
        )

        user = await users.register("ann", "ann@example.com")

        assert data_store.get_user(user.id) is not None
        assert f"user.registered for user {user.id} was not published" in caplog.text

    @pytest.mark.asyncio
    async def test_update_user(self, users, user_exchange):
        user = await users.register("ann", "ann@example.com")

        updated = await users.update_user(user.id, email="ann@example.org")

        assert updated.email == "ann@example.org"
        assert updated.username == "ann"
        assert user_exchange.envelopes()[-1].event == "user.updated"
        assert user_exchange.envelopes()[-1].data["email"] == "ann@example.org"

    @pytest.mark.asyncio
    async def test_update_unknown_user(self, users, user_exchange):
        assert await users.update_user("missing", username="x") is None
        assert user_exchange.published == []

    @pytest.mark.asyncio
    async def test_delete_user(self, users, user_exchange, data_store):
        user = await users.register("ann", "ann@example.com")

        assert await users.delete_user(user.id) is True
        assert data_store.get_user(user.id) is None
        assert user_exchange.envelopes()[-1].event == "user.deleted"
        assert user_exchange.envelopes()[-1].data == {"user_id": user.id}

    @pytest.mark.asyncio
    async def test_delete_unknown_user(self, users):
        assert await users.delete_user("missing") is False
