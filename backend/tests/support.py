"""Shared test helpers: database harness, fake gateway and record builders."""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pushfeed.database import Base, configure_sqlite
from pushfeed.models import DeviceToken, NotificationRecord
from pushfeed.schemas.notification import NotificationEvent
from pushfeed.services.push_gateway import DeliveryStatus, PushGateway, PushMessage, TokenOutcome

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


@asynccontextmanager
async def database(path):
    """Create a file-backed SQLite database with all tables; yield a session factory."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
    configure_sqlite(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


class FakeGateway(PushGateway):
    """Gateway double that records calls and returns scripted outcomes.

    ``outcomes`` maps a token to ``(status, reason)``; unknown tokens succeed.
    ``fail_tokens``: any batch containing one of these raises.
    ``slow_tokens``: any batch containing one of these sleeps ``delay`` first.
    """

    name = "fake"

    def __init__(
        self,
        max_batch_size: int = 500,
        outcomes: Optional[Dict[str, Tuple[DeliveryStatus, str]]] = None,
        fail_tokens: Optional[set] = None,
        slow_tokens: Optional[set] = None,
        delay: float = 0.0,
        before_send: Optional[Callable] = None,
    ):
        self.max_batch_size = max_batch_size
        self.outcomes = outcomes or {}
        self.fail_tokens = fail_tokens or set()
        self.slow_tokens = slow_tokens or set()
        self.delay = delay
        self.before_send = before_send
        self.calls: List[List[str]] = []
        self.messages: List[PushMessage] = []

    async def _send(self, tokens: List[str], message: PushMessage) -> List[TokenOutcome]:
        self.calls.append(list(tokens))
        self.messages.append(message)
        if self.before_send is not None:
            await self.before_send(tokens)
        if self.slow_tokens.intersection(tokens):
            await asyncio.sleep(self.delay)
        if self.fail_tokens.intersection(tokens):
            raise ConnectionError("gateway unavailable")

        results = []
        for token in tokens:
            status, reason = self.outcomes.get(token, (DeliveryStatus.SUCCESS, None))
            results.append(TokenOutcome(token, status, reason))
        return results


def make_event(owner: str, **overrides) -> NotificationEvent:
    fields = {
        "owner_user_id": owner,
        "from_user_id": "friend-1",
        "from_user_display_name": "Ana",
        "from_user_avatar_url": "https://example.com/ana.png",
        "message": "liked your post",
        "type": "like",
        "entity_id": "post-1",
    }
    fields.update(overrides)
    return NotificationEvent(**fields)


def make_record(
    owner: str,
    notification_id: str,
    seconds: int,
    is_read: bool = False,
) -> NotificationRecord:
    """Unsaved record whose created_at is ``seconds`` after a fixed base time."""
    return NotificationRecord(
        owner_user_id=owner,
        notification_id=notification_id,
        message="commented on your post",
        type="comment",
        entity_id="post-1",
        created_at=BASE_TIME + timedelta(seconds=seconds),
        is_read=is_read,
    )


async def seed_tokens(session_factory, pairs: List[Tuple[str, str]]):
    """Insert ``(user_id, token)`` rows directly."""
    async with session_factory() as session:
        session.add_all([DeviceToken(user_id=u, token=t) for u, t in pairs])
        await session.commit()


async def seed_records(session_factory, records: List[NotificationRecord]):
    async with session_factory() as session:
        session.add_all(records)
        await session.commit()
