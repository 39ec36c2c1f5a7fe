"""Feed subscriber - a live, bounded view of a user's notifications.

A subscription yields ``FeedSnapshot`` objects: the current window of the
``limit`` most recent records plus the unread count within that window.
The unread count never looks past the window, so it is a lower bound on
the user's true unread total whenever more than ``limit`` records are
unread. Opening the feed (``set_open(True)``) runs the read-state
reconciler, which is not bounded by the window.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..errors import FeedSubscriptionError
from ..models.notification import NotificationRecord
from .feed_hub import FeedChannel, FeedHub, feed_hub
from .notification_store import NotificationStore, notification_store
from .reconciler import ReadStateReconciler, ReconcileResult

logger = logging.getLogger(__name__)


def order_window(records: Iterable[NotificationRecord]) -> List[NotificationRecord]:
    """Newest first; records with equal timestamps ordered by notification id."""
    by_id = sorted(records, key=lambda r: r.notification_id)
    return sorted(by_id, key=lambda r: r.created_at, reverse=True)


def count_unread(records: Iterable[NotificationRecord]) -> int:
    return sum(1 for r in records if not r.is_read)


@dataclass
class FeedChange:
    added: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


@dataclass
class FeedSnapshot:
    user_id: str
    records: List[NotificationRecord]
    unread_count: int
    change: FeedChange


def diff_windows(
    previous: Optional[List[NotificationRecord]],
    current: List[NotificationRecord],
) -> FeedChange:
    """Describe how ``current`` differs from ``previous``."""
    if previous is None:
        return FeedChange(added=[r.notification_id for r in current])

    before: Dict[str, bool] = {r.notification_id: r.is_read for r in previous}
    after_ids = {r.notification_id for r in current}
    change = FeedChange()
    for record in current:
        if record.notification_id not in before:
            change.added.append(record.notification_id)
        elif before[record.notification_id] != record.is_read:
            change.modified.append(record.notification_id)
    change.removed = [r.notification_id for r in previous if r.notification_id not in after_ids]
    return change


class FeedSubscription:
    """Async iterator over feed snapshots for one authenticated user.

    Usage:
        async with FeedSubscription(user_id, 20, async_session) as feed:
            async for snapshot in feed:
                render(snapshot)
    """

    def __init__(
        self,
        user_id: str,
        limit: int,
        session_factory: async_sessionmaker,
        hub: Optional[FeedHub] = None,
        store: Optional[NotificationStore] = None,
        reconciler: Optional[ReadStateReconciler] = None,
    ):
        if limit < 1:
            raise ValueError("Feed limit must be at least 1")
        self.user_id = user_id
        self.limit = limit
        self.session_factory = session_factory
        self.hub = hub or feed_hub
        self.store = store or notification_store
        self.reconciler = reconciler
        self.latest: Optional[FeedSnapshot] = None
        self.is_open = False
        self._channel: Optional[FeedChannel] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def unread_count(self) -> int:
        return self.latest.unread_count if self.latest else 0

    def open(self):
        """Register with the hub. Called before the first read so no change is missed."""
        if self._closed:
            raise FeedSubscriptionError(self.user_id, "subscription already closed")
        if self._channel is None:
            self._channel = self.hub.subscribe(self.user_id)

    async def close(self):
        """Tear down the subscription. Iteration stops afterwards."""
        if self._closed:
            return
        self._closed = True
        if self._channel is not None:
            self.hub.unsubscribe(self._channel)
            # Wake a pending __anext__ so it can stop
            self._channel.notify("closed")

    async def refresh(self) -> FeedSnapshot:
        """Re-read the window and derive a new snapshot."""
        try:
            async with self.session_factory() as session:
                records = await self.store.recent_window(session, self.user_id, self.limit)
        except SQLAlchemyError as e:
            logger.error(f"Feed refresh failed for {self.user_id}: {e}")
            await self.close()
            raise FeedSubscriptionError(self.user_id, "store unavailable") from e

        records = order_window(records)
        previous = self.latest.records if self.latest else None
        self.latest = FeedSnapshot(
            user_id=self.user_id,
            records=records,
            unread_count=count_unread(records),
            change=diff_windows(previous, records),
        )
        return self.latest

    def __aiter__(self):
        return self

    async def __anext__(self) -> FeedSnapshot:
        if self._closed:
            raise StopAsyncIteration
        if self._channel is None:
            self.open()
        if self.latest is None:
            return await self.refresh()

        await self._channel.wait()
        if self._channel.terminated_reason:
            reason = self._channel.terminated_reason
            await self.close()
            raise FeedSubscriptionError(self.user_id, reason)
        if self._closed:
            raise StopAsyncIteration
        return await self.refresh()

    async def set_open(self, is_open: bool) -> Optional[ReconcileResult]:
        """Track the feed surface. A closed -> open edge marks everything read."""
        was_open = self.is_open
        self.is_open = is_open
        if not is_open or was_open or self.reconciler is None:
            return None
        return await self.reconciler.mark_feed_opened(self.user_id)

    async def __aenter__(self):
        self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


def subscribe_feed(
    user_id: str,
    limit: int,
    session_factory: async_sessionmaker,
    hub: Optional[FeedHub] = None,
    store: Optional[NotificationStore] = None,
    reconciler: Optional[ReadStateReconciler] = None,
) -> FeedSubscription:
    """Open a live feed subscription for ``user_id``."""
    subscription = FeedSubscription(
        user_id,
        limit,
        session_factory,
        hub=hub,
        store=store,
        reconciler=reconciler,
    )
    subscription.open()
    return subscription
