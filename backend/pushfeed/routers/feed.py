"""Notification feed API - snapshots, read-state and the live WebSocket feed."""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..dependencies import get_reconciler, get_session_factory
from ..errors import FeedSubscriptionError
from ..schemas.notification import (
    FeedChangeResponse,
    FeedSnapshotResponse,
    NotificationResponse,
    ReconcileResponse,
)
from ..services.feed import FeedSnapshot, FeedSubscription, subscribe_feed
from ..services.notification_store import notification_store
from ..services.reconciler import ReadStateReconciler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["feed"])

# Close code sent when a live feed is terminated (client should re-authenticate)
WS_FEED_TERMINATED = 4403


def snapshot_response(snapshot: FeedSnapshot) -> FeedSnapshotResponse:
    return FeedSnapshotResponse(
        user_id=snapshot.user_id,
        records=[NotificationResponse.model_validate(r) for r in snapshot.records],
        unread_count=snapshot.unread_count,
        change=FeedChangeResponse(
            added=snapshot.change.added,
            modified=snapshot.change.modified,
            removed=snapshot.change.removed,
        ),
    )


def _check_limit(limit: int):
    if limit < 1 or limit > settings.feed_max_limit:
        raise HTTPException(
            status_code=422,
            detail=f"limit must be between 1 and {settings.feed_max_limit}",
        )


@router.get("/api/notifications/users/{user_id}/feed", response_model=FeedSnapshotResponse)
async def get_feed(
    user_id: str,
    limit: int = Query(default=settings.feed_default_limit),
    session_factory=Depends(get_session_factory),
):
    """Current feed window for a user (one-shot, no subscription kept)."""
    _check_limit(limit)
    feed = FeedSubscription(user_id, limit, session_factory)
    try:
        snapshot = await feed.refresh()
        async with session_factory() as session:
            total_unread = await notification_store.count_unread(session, user_id)
    except FeedSubscriptionError as e:
        raise HTTPException(status_code=503, detail=e.reason)
    except SQLAlchemyError as e:
        logger.error(f"Unread total failed for {user_id}: {e}")
        raise HTTPException(status_code=503, detail="store unavailable")

    response = snapshot_response(snapshot)
    response.total_unread = total_unread
    return response


@router.post("/api/notifications/users/{user_id}/feed/opened", response_model=ReconcileResponse)
async def mark_feed_opened(
    user_id: str,
    reconciler: ReadStateReconciler = Depends(get_reconciler),
):
    """Mark every unread notification of the user as read, all or nothing."""
    result = await reconciler.mark_feed_opened(user_id)
    if not result.success:
        raise HTTPException(status_code=409 if result.conflict else 503, detail=result.error)
    return ReconcileResponse(
        success=True,
        marked_count=result.marked_count,
        attempts=result.attempts,
    )


async def _pump_snapshots(websocket: WebSocket, feed: FeedSubscription):
    """Forward every snapshot to the client until the feed ends."""
    try:
        async for snapshot in feed:
            payload = snapshot_response(snapshot).model_dump()
            payload["type"] = "snapshot"
            await websocket.send_json(jsonable_encoder(payload))
    except WebSocketDisconnect:
        pass
    except FeedSubscriptionError as e:
        logger.info(f"Live feed for {feed.user_id} terminated: {e.reason}")
        await websocket.send_json({"type": "error", "detail": e.reason})
        await websocket.close(code=WS_FEED_TERMINATED)


async def _read_commands(websocket: WebSocket, feed: FeedSubscription):
    """Handle feed_opened / feed_closed messages from the client."""
    try:
        while True:
            message = await websocket.receive_json()
            command = message.get("type") if isinstance(message, dict) else None
            if command == "feed_opened":
                result = await feed.set_open(True)
                if result is not None and not result.success:
                    await websocket.send_json({"type": "error", "detail": result.error})
            elif command == "feed_closed":
                await feed.set_open(False)
    except WebSocketDisconnect:
        pass


@router.websocket("/ws/feed/{user_id}")
async def feed_socket(
    websocket: WebSocket,
    user_id: str,
    limit: int = Query(default=settings.feed_default_limit),
):
    """Live feed: one snapshot message per change of the user's feed window."""
    if limit < 1 or limit > settings.feed_max_limit:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    feed = subscribe_feed(
        user_id,
        limit,
        get_session_factory(),
        reconciler=get_reconciler(),
    )
    pump = asyncio.create_task(_pump_snapshots(websocket, feed))
    reader = asyncio.create_task(_read_commands(websocket, feed))
    try:
        done, pending = await asyncio.wait({pump, reader}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if task.exception() is not None:
                logger.warning(f"Live feed for {user_id} ended with error: {task.exception()}")
    finally:
        await feed.close()
        logger.debug(f"Live feed closed for {user_id}")
