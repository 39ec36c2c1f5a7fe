"""Dispatcher - turns notification events into device pushes.

Design:
- The feed record is written before any push attempt, so the in-app feed
  reflects the event even when push fails (no token, revoked permission,
  offline device).
- Broadcast tokens are split into batches no larger than the gateway
  ceiling and sent with bounded parallelism. Batches share no state: a
  failed or timed-out batch is counted as transient failures and the
  other batches carry on.
- Permanent failures prune the token through the registry's guarded
  invalidation. Transient failures are only counted; retry policy belongs
  to the caller.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models.notification import NotificationRecord, notification_link
from ..schemas.notification import NotificationEvent
from .notification_store import NotificationStore, notification_store
from .push_gateway import DeliveryStatus, PushGateway, PushMessage, TokenOutcome
from .token_registry import TokenRegistry, token_registry

logger = logging.getLogger(__name__)

PUSH_TITLES = {
    "like": "New like",
    "comment": "New comment",
    "new_status": "New post",
    "new_message": "New message",
}


class DispatchOutcome(str, Enum):
    DELIVERED = "delivered"
    NO_TOKEN = "no_token"
    INVALID_TOKEN = "invalid_token"
    TRANSIENT_FAILURE = "transient_failure"


@dataclass
class DispatchResult:
    """What happened when pushing to one user."""
    user_id: str
    outcome: DispatchOutcome
    reason: Optional[str] = None
    record: Optional[NotificationRecord] = None


@dataclass
class DispatchReport:
    """Aggregate of a broadcast across all batches."""
    success_count: int = 0
    failure_count: int = 0
    invalidated_count: int = 0
    batch_count: int = 0


def partition(items: Sequence, size: int) -> List[list]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def render_push(event: NotificationEvent) -> Tuple[str, str]:
    """Title and body for an event, e.g. ("New like", "Ana liked your post")."""
    title = PUSH_TITLES.get(event.type, "Notification")
    sender = event.from_user_display_name or "Someone"
    return title, f"{sender} {event.message}"


class Dispatcher:
    """Fans notifications out to device tokens through a push gateway."""

    def __init__(
        self,
        gateway: PushGateway,
        session_factory: async_sessionmaker,
        registry: Optional[TokenRegistry] = None,
        store: Optional[NotificationStore] = None,
        batch_size: int = 500,
        max_concurrency: int = 4,
        timeout_seconds: float = 5.0,
    ):
        self.gateway = gateway
        self.session_factory = session_factory
        self.registry = registry or token_registry
        self.store = store or notification_store
        self.batch_size = max(1, min(batch_size, gateway.max_batch_size))
        self.max_concurrency = max(1, max_concurrency)
        self.timeout_seconds = timeout_seconds

    async def _submit(self, tokens: List[str], message: PushMessage) -> List[TokenOutcome]:
        """One gateway call. Timeouts and gateway errors become transient outcomes."""
        try:
            outcomes = await asyncio.wait_for(
                self.gateway.send_batch(tokens, message),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Push batch of {len(tokens)} timed out after {self.timeout_seconds}s")
            return [TokenOutcome(t, DeliveryStatus.TRANSIENT, "timeout") for t in tokens]
        except Exception as e:
            logger.error(f"Push batch of {len(tokens)} failed: {e}")
            return [TokenOutcome(t, DeliveryStatus.TRANSIENT, str(e)) for t in tokens]

        if len(outcomes) != len(tokens):
            logger.error(
                f"Gateway returned {len(outcomes)} outcomes for {len(tokens)} tokens, treating batch as failed"
            )
            return [TokenOutcome(t, DeliveryStatus.TRANSIENT, "malformed gateway response") for t in tokens]
        return outcomes

    async def _invalidate(self, user_id: str, token: str, reason: Optional[str]) -> bool:
        """Prune one token. Failures stay local to this user."""
        try:
            async with self.session_factory() as session:
                return await self.registry.invalidate(session, user_id, token, reason or "unregistered")
        except SQLAlchemyError as e:
            logger.error(f"Failed to invalidate token for user {user_id}: {e}")
            return False

    async def _run_batch(
        self,
        index: int,
        batch: List[Tuple[str, str]],
        message: PushMessage,
        semaphore: asyncio.Semaphore,
    ) -> DispatchReport:
        async with semaphore:
            outcomes = await self._submit([token for _, token in batch], message)

        report = DispatchReport(batch_count=1)
        for (user_id, token), outcome in zip(batch, outcomes):
            if outcome.is_success:
                report.success_count += 1
                continue
            report.failure_count += 1
            if outcome.status == DeliveryStatus.PERMANENT:
                if await self._invalidate(user_id, token, outcome.reason):
                    report.invalidated_count += 1

        logger.debug(
            f"Batch {index}: {report.success_count} success, {report.failure_count} failed, "
            f"{report.invalidated_count} invalidated"
        )
        return report

    async def broadcast(self, title: str, body: str, data: Optional[dict] = None) -> DispatchReport:
        """Send a push to every registered token.

        Returns:
            DispatchReport with counts aggregated across all batches
        """
        async with self.session_factory() as session:
            targets = await self.registry.registered_tokens(session)

        if not targets:
            logger.info("No registered device tokens, nothing to broadcast")
            return DispatchReport()

        message = PushMessage(title=title, body=body, data=data)
        batches = partition(targets, self.batch_size)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        batch_reports = await asyncio.gather(*[
            self._run_batch(i, batch, message, semaphore) for i, batch in enumerate(batches)
        ])

        report = DispatchReport()
        for batch_report in batch_reports:
            report.success_count += batch_report.success_count
            report.failure_count += batch_report.failure_count
            report.invalidated_count += batch_report.invalidated_count
            report.batch_count += batch_report.batch_count

        logger.info(
            f"Push notifications sent: {report.success_count} success, {report.failure_count} failed "
            f"({report.invalidated_count} tokens pruned, {report.batch_count} batches)"
        )
        return report

    async def send_to_user(
        self,
        user_id: str,
        title: str,
        body: str,
        notification: Optional[NotificationEvent] = None,
        data: Optional[dict] = None,
    ) -> DispatchResult:
        """Push to a single user, writing the feed record first when given one.

        Raises:
            ValueError: if ``notification`` belongs to a different user
        """
        if notification is not None and notification.owner_user_id != user_id:
            raise ValueError(
                f"Notification for {notification.owner_user_id} cannot be pushed to {user_id}"
            )
        record = None
        async with self.session_factory() as session:
            if notification is not None:
                record = await self.store.append(session, notification)
            token = await self.registry.get_token(session, user_id)

        if not token:
            logger.debug(f"User {user_id} has no push token")
            return DispatchResult(user_id, DispatchOutcome.NO_TOKEN, "push not configured", record)

        message = PushMessage(title=title, body=body, data=data)
        outcome = (await self._submit([token], message))[0]

        if outcome.is_success:
            logger.info(f"Push notification sent to user {user_id} ({token[:16]}...)")
            return DispatchResult(user_id, DispatchOutcome.DELIVERED, record=record)

        if outcome.status == DeliveryStatus.PERMANENT:
            await self._invalidate(user_id, token, outcome.reason)
            return DispatchResult(user_id, DispatchOutcome.INVALID_TOKEN, outcome.reason, record)

        return DispatchResult(user_id, DispatchOutcome.TRANSIENT_FAILURE, outcome.reason, record)

    async def notify(self, event: NotificationEvent) -> DispatchResult:
        """Record an application event in the owner's feed and push it."""
        title, body = render_push(event)
        data = {
            "type": event.type,
            "entity_id": event.entity_id,
            "link": notification_link(event.type, event.entity_id),
        }
        return await self.send_to_user(
            event.owner_user_id,
            title,
            body,
            notification=event,
            data={k: v for k, v in data.items() if v is not None},
        )
