"""Feed change hub - per-user change signals for live feed subscriptions."""
import asyncio
import logging
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


class FeedChannel:
    """Wake-up channel held by one feed subscription.

    Signals are coalesced: the queue holds at most one pending wake-up, so
    publishing never blocks and a slow subscriber simply re-reads its
    window once for a burst of writes.
    """

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.terminated_reason: Optional[str] = None
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)

    def notify(self, kind: str):
        try:
            self._queue.put_nowait(kind)
        except asyncio.QueueFull:
            pass

    def terminate(self, reason: str):
        self.terminated_reason = reason
        self.notify("terminated")

    async def wait(self) -> str:
        """Wait for the next change signal."""
        return await self._queue.get()


class FeedHub:
    """Tracks open feed subscriptions and fans change signals out to them."""

    def __init__(self):
        self.channels: Dict[str, Set[FeedChannel]] = {}

    def subscribe(self, user_id: str) -> FeedChannel:
        """Register a new channel for a user's feed."""
        channel = FeedChannel(user_id)
        self.channels.setdefault(user_id, set()).add(channel)
        logger.debug(f"Feed subscribed for {user_id}. Total subscriptions: {self.subscription_count}")
        return channel

    def unsubscribe(self, channel: FeedChannel):
        """Remove a channel. Safe to call more than once."""
        user_channels = self.channels.get(channel.user_id)
        if user_channels is None:
            return
        user_channels.discard(channel)
        if not user_channels:
            del self.channels[channel.user_id]
        logger.debug(f"Feed unsubscribed for {channel.user_id}. Total subscriptions: {self.subscription_count}")

    def publish(self, user_id: str, kind: str = "changed"):
        """Signal every subscription of ``user_id`` that its feed changed."""
        for channel in list(self.channels.get(user_id, ())):
            channel.notify(kind)

    def terminate(self, user_id: str, reason: str):
        """End every subscription of ``user_id``, e.g. when access is revoked."""
        channels = self.channels.pop(user_id, set())
        for channel in channels:
            channel.terminate(reason)
        if channels:
            logger.info(f"Terminated {len(channels)} feed subscription(s) for {user_id}: {reason}")

    @property
    def subscription_count(self) -> int:
        """Return the number of open subscriptions."""
        return sum(len(channels) for channels in self.channels.values())


# Global instance
feed_hub = FeedHub()
