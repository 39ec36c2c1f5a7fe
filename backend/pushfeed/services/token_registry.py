"""Device token registry - one push token slot per user."""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func, case
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import ConfigurationError
from ..models.device_token import DeviceToken
from ..utils.db_utils import retry_on_lock

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class TokenRegistry:
    """Single-slot token register with a guarded invalidation.

    Registration overwrites whatever was stored (last writer wins, no
    cross-user collision detection). Invalidation only clears the slot
    while it still holds the token that failed, so a registration that
    lands after the failing send always survives.
    """

    async def register_token(
        self,
        session: AsyncSession,
        user_id: str,
        token: str,
        platform: str = "web",
    ) -> None:
        """Store ``token`` as the user's push token (idempotent upsert)."""
        dialect = session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)
        now = datetime.utcnow()

        if insert is None:
            raise ConfigurationError(f"Unsupported database dialect for token upsert: {dialect}")

        stmt = insert(DeviceToken).values(
            user_id=user_id,
            token=token,
            platform=platform,
            registered_at=now,
            invalidated_at=None,
            invalidation_reason=None,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[DeviceToken.user_id],
            set_={
                "token": stmt.excluded.token,
                "platform": stmt.excluded.platform,
                # Re-registering the same token keeps the original timestamp
                "registered_at": case(
                    (DeviceToken.token == stmt.excluded.token, DeviceToken.registered_at),
                    else_=stmt.excluded.registered_at,
                ),
                "invalidated_at": None,
                "invalidation_reason": None,
            },
        )
        await session.execute(stmt)

        await retry_on_lock(session.commit)
        logger.info(f"Push token registered for user {user_id}: {token[:16]}...")

    async def get_device(self, session: AsyncSession, user_id: str) -> Optional[DeviceToken]:
        """Get the stored token row for a user, if any."""
        result = await session.execute(
            select(DeviceToken).where(DeviceToken.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_token(self, session: AsyncSession, user_id: str) -> Optional[str]:
        """Get the user's live token, or None when the user is unreachable."""
        result = await session.execute(
            select(DeviceToken.token).where(DeviceToken.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def invalidate(
        self,
        session: AsyncSession,
        user_id: str,
        token: str,
        reason: str = "unregistered",
    ) -> bool:
        """Clear the user's token if it is still ``token``.

        Returns True when the slot was cleared, False when a newer token
        (or no token) is stored and the invalidation is stale.
        """
        result = await session.execute(
            update(DeviceToken)
            .where(DeviceToken.user_id == user_id, DeviceToken.token == token)
            .values(token=None, invalidated_at=datetime.utcnow(), invalidation_reason=reason)
            .execution_options(synchronize_session=False)
        )
        await retry_on_lock(session.commit)

        cleared = result.rowcount > 0
        if cleared:
            logger.info(f"Push token invalidated for user {user_id} ({reason}): {token[:16]}...")
        else:
            logger.debug(f"Stale invalidation ignored for user {user_id}: {token[:16]}...")
        return cleared

    async def unregister(self, session: AsyncSession, user_id: str) -> bool:
        """Opt a user out of push regardless of which token is stored."""
        result = await session.execute(
            update(DeviceToken)
            .where(DeviceToken.user_id == user_id, DeviceToken.token.is_not(None))
            .values(token=None, invalidated_at=datetime.utcnow(), invalidation_reason="opted_out")
            .execution_options(synchronize_session=False)
        )
        await retry_on_lock(session.commit)
        return result.rowcount > 0

    async def registered_tokens(self, session: AsyncSession) -> List[Tuple[str, str]]:
        """Full scan of ``(user_id, token)`` pairs for users reachable by push."""
        result = await session.execute(
            select(DeviceToken.user_id, DeviceToken.token)
            .where(DeviceToken.token.is_not(None))
            .order_by(DeviceToken.user_id)
        )
        return [(row.user_id, row.token) for row in result]

    async def count(self, session: AsyncSession) -> Tuple[int, int]:
        """Return ``(total, active)`` token row counts."""
        total = (await session.execute(select(func.count(DeviceToken.user_id)))).scalar() or 0
        active = (await session.execute(
            select(func.count(DeviceToken.user_id)).where(DeviceToken.token.is_not(None))
        )).scalar() or 0
        return total, active


# Global instance
token_registry = TokenRegistry()
