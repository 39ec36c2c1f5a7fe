"""Read-state reconciler - flips a user's unread notifications to read.

The flip runs as one transaction over a snapshot of the user's unread
records:

1. Select the ids of every unread record (not bounded by the feed window).
2. Flip them with conditional updates (``is_read = false`` guard), in
   chunks that stay under driver parameter limits, inside the same
   transaction.
3. If any chunk touches fewer rows than expected the snapshot is stale:
   roll back everything and retry once.

Records written after the snapshot was taken are not part of it and stay
unread.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import TransactionConflict
from ..models.notification import NotificationRecord
from .feed_hub import FeedHub, feed_hub

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of marking a feed as opened."""
    success: bool
    marked_count: int = 0
    attempts: int = 0
    error: Optional[str] = None
    conflict: bool = False


class ReadStateReconciler:
    """Marks every unread notification of a user as read, all or nothing."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        hub: Optional[FeedHub] = None,
        chunk_size: int = 500,
        max_attempts: int = 2,
    ):
        self.session_factory = session_factory
        self.hub = hub or feed_hub
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts

    async def _unread_ids(self, session: AsyncSession, user_id: str) -> List[int]:
        result = await session.execute(
            select(NotificationRecord.id).where(
                NotificationRecord.owner_user_id == user_id,
                NotificationRecord.is_read.is_(False),
            )
        )
        return list(result.scalars().all())

    async def _flip_chunk(self, session: AsyncSession, ids: List[int]) -> int:
        """Conditionally mark ``ids`` read. Returns the number of rows changed."""
        result = await session.execute(
            update(NotificationRecord)
            .where(NotificationRecord.id.in_(ids), NotificationRecord.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def _reconcile_once(self, user_id: str) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                ids = await self._unread_ids(session, user_id)
                for start in range(0, len(ids), self.chunk_size):
                    chunk = ids[start:start + self.chunk_size]
                    changed = await self._flip_chunk(session, chunk)
                    if changed != len(chunk):
                        raise TransactionConflict(
                            f"Expected to mark {len(chunk)} notifications read for {user_id}, marked {changed}"
                        )
                return len(ids)

    async def mark_feed_opened(self, user_id: str) -> ReconcileResult:
        """Mark every currently-unread notification of ``user_id`` as read."""
        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            try:
                marked = await self._reconcile_once(user_id)
            except TransactionConflict as e:
                logger.warning(f"Read-state conflict (attempt {attempts}/{self.max_attempts}): {e}")
                continue
            except SQLAlchemyError as e:
                logger.error(f"Failed to mark notifications read for {user_id}: {e}")
                return ReconcileResult(success=False, attempts=attempts, error="store error")

            if marked:
                logger.info(f"Marked {marked} notification(s) read for {user_id}")
                self.hub.publish(user_id, "read")
            return ReconcileResult(success=True, marked_count=marked, attempts=attempts)

        return ReconcileResult(
            success=False,
            attempts=attempts,
            error="concurrent update conflict",
            conflict=True,
        )
