"""Notification record store - append-only per-user notification log."""
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.notification import NotificationRecord
from ..schemas.notification import NotificationEvent
from ..utils.db_utils import retry_on_lock
from .feed_hub import FeedHub, feed_hub

logger = logging.getLogger(__name__)

# Smallest step DateTime columns keep on both SQLite and PostgreSQL
TIMESTAMP_STEP = timedelta(microseconds=1)


class NotificationStore:
    """Writes and reads notification records and signals feed subscribers."""

    def __init__(self, hub: Optional[FeedHub] = None):
        self.hub = hub or feed_hub

    async def _next_timestamp(self, session: AsyncSession, owner_user_id: str) -> datetime:
        """Write-time timestamp, strictly after the owner's latest record."""
        result = await session.execute(
            select(func.max(NotificationRecord.created_at))
            .where(NotificationRecord.owner_user_id == owner_user_id)
        )
        latest = result.scalar()
        now = datetime.utcnow()
        if latest is not None and now <= latest:
            return latest + TIMESTAMP_STEP
        return now

    async def append(self, session: AsyncSession, event: NotificationEvent) -> NotificationRecord:
        """Append a notification to the owner's log and commit it."""
        record = NotificationRecord(
            owner_user_id=event.owner_user_id,
            notification_id=uuid.uuid4().hex,
            from_user_id=event.from_user_id,
            from_user_display_name=event.from_user_display_name,
            from_user_avatar_url=event.from_user_avatar_url,
            message=event.message,
            type=event.type,
            entity_id=event.entity_id,
            created_at=await self._next_timestamp(session, event.owner_user_id),
            is_read=False,
        )
        session.add(record)
        await retry_on_lock(session.commit)

        logger.info(
            f"Notification {record.notification_id} ({record.type}) stored for {record.owner_user_id}"
        )
        self.hub.publish(record.owner_user_id, "created")
        return record

    async def recent_window(
        self,
        session: AsyncSession,
        owner_user_id: str,
        limit: int,
    ) -> List[NotificationRecord]:
        """Most recent ``limit`` records, newest first, ties by notification id."""
        result = await session.execute(
            select(NotificationRecord)
            .where(NotificationRecord.owner_user_id == owner_user_id)
            .order_by(NotificationRecord.created_at.desc(), NotificationRecord.notification_id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_unread(self, session: AsyncSession, owner_user_id: str) -> int:
        """True unread total across the whole log."""
        result = await session.execute(
            select(func.count(NotificationRecord.id)).where(
                NotificationRecord.owner_user_id == owner_user_id,
                NotificationRecord.is_read.is_(False),
            )
        )
        return result.scalar() or 0


# Global instance
notification_store = NotificationStore()
