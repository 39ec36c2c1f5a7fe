"""Tests for the device token registry."""
import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy import update

from pushfeed.errors import ConfigurationError
from pushfeed.models import DeviceToken
from pushfeed.services.token_registry import TokenRegistry

from .support import BASE_TIME, database


registry = TokenRegistry()


class TestRegistration:

    def test_register_then_get(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-a", "ios")
                async with sessions() as session:
                    assert await registry.get_token(session, user_id) == "token-a"
                    device = await registry.get_device(session, user_id)
                    assert device.platform == "ios"
                    assert device.invalidated_at is None

        asyncio.run(scenario())

    def test_unknown_user_has_no_token(self, db_path):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    assert await registry.get_token(session, "nobody") is None

        asyncio.run(scenario())

    def test_registration_is_idempotent(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-a")
                async with sessions() as session:
                    first = await registry.get_device(session, user_id)
                    first_state = (first.token, first.platform, first.registered_at)

                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-a")
                async with sessions() as session:
                    second = await registry.get_device(session, user_id)
                    assert (second.token, second.platform, second.registered_at) == first_state
                    assert await registry.count(session) == (1, 1)

        asyncio.run(scenario())

    def test_last_registration_wins(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-a")
                    await registry.register_token(session, user_id, "token-b")
                async with sessions() as session:
                    assert await registry.get_token(session, user_id) == "token-b"
                    assert await registry.count(session) == (1, 1)

        asyncio.run(scenario())

    def test_reregistering_clears_invalidation(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-a")
                    await registry.invalidate(session, user_id, "token-a")
                    await registry.register_token(session, user_id, "token-a")
                async with sessions() as session:
                    device = await registry.get_device(session, user_id)
                    assert device.token == "token-a"
                    assert device.invalidated_at is None
                    assert device.invalidation_reason is None

        asyncio.run(scenario())

    def test_new_token_resets_registration_time(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-a")
                    await session.execute(
                        update(DeviceToken)
                        .where(DeviceToken.user_id == user_id)
                        .values(registered_at=BASE_TIME)
                    )
                    await session.commit()

                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-a")
                async with sessions() as session:
                    assert (await registry.get_device(session, user_id)).registered_at == BASE_TIME

                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-b")
                async with sessions() as session:
                    assert (await registry.get_device(session, user_id)).registered_at > BASE_TIME

        asyncio.run(scenario())

    def test_unsupported_dialect_is_rejected(self, user_id):
        session = SimpleNamespace(get_bind=lambda: SimpleNamespace(dialect=SimpleNamespace(name="mysql")))
        with pytest.raises(ConfigurationError):
            asyncio.run(registry.register_token(session, user_id, "token-a"))


class TestInvalidation:

    def test_invalidate_current_token(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-a")
                    assert await registry.invalidate(session, user_id, "token-a", "Unregistered") is True
                async with sessions() as session:
                    device = await registry.get_device(session, user_id)
                    assert device.token is None
                    assert device.invalidation_reason == "Unregistered"
                    assert await registry.registered_tokens(session) == []

        asyncio.run(scenario())

    def test_stale_invalidation_after_reregistration_is_noop(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-1")
                    await registry.register_token(session, user_id, "token-2")
                    assert await registry.invalidate(session, user_id, "token-1") is False
                async with sessions() as session:
                    assert await registry.get_token(session, user_id) == "token-2"

        asyncio.run(scenario())

    def test_registration_after_invalidation_wins(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-1")
                    await registry.invalidate(session, user_id, "token-1")
                    await registry.register_token(session, user_id, "token-2")
                async with sessions() as session:
                    assert await registry.get_token(session, user_id) == "token-2"

        asyncio.run(scenario())

    def test_concurrent_registration_and_stale_invalidation(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-1")

                async def register():
                    async with sessions() as session:
                        await registry.register_token(session, user_id, "token-2")

                async def invalidate():
                    async with sessions() as session:
                        await registry.invalidate(session, user_id, "token-1")

                for _ in range(5):
                    await asyncio.gather(register(), invalidate())
                    async with sessions() as session:
                        assert await registry.get_token(session, user_id) == "token-2"
                        await registry.register_token(session, user_id, "token-1")

        asyncio.run(scenario())

    def test_unregister_opts_out(self, db_path, user_id):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, user_id, "token-a")
                    assert await registry.unregister(session, user_id) is True
                    assert await registry.unregister(session, user_id) is False
                async with sessions() as session:
                    assert await registry.get_token(session, user_id) is None
                    assert await registry.count(session) == (1, 0)

        asyncio.run(scenario())


class TestRegisteredTokens:

    def test_full_scan_skips_unreachable_users(self, db_path):
        async def scenario():
            async with database(db_path) as sessions:
                async with sessions() as session:
                    await registry.register_token(session, "u2", "t2")
                    await registry.register_token(session, "u1", "t1")
                    await registry.register_token(session, "u3", "t3")
                    await registry.invalidate(session, "u3", "t3")
                async with sessions() as session:
                    assert await registry.registered_tokens(session) == [("u1", "t1"), ("u2", "t2")]

        asyncio.run(scenario())
