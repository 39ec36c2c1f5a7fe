"""Notification dispatch API endpoints."""
import logging

from fastapi import APIRouter, Depends

from ..dependencies import get_dispatcher
from ..schemas.dispatch import PushRequest, BroadcastResponse, SendResponse, NotifyResponse
from ..schemas.notification import NotificationEvent, NotificationResponse
from ..services.dispatcher import Dispatcher, DispatchResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _send_response(result: DispatchResult) -> SendResponse:
    return SendResponse(
        user_id=result.user_id,
        outcome=result.outcome.value,
        reason=result.reason,
    )


@router.post("", response_model=NotifyResponse, status_code=201)
async def create_notification(
    event: NotificationEvent,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Record an event in the owner's feed, then push it to their device.

    The record is stored even when the push cannot be delivered.
    """
    result = await dispatcher.notify(event)
    return NotifyResponse(
        notification=NotificationResponse.model_validate(result.record),
        dispatch=_send_response(result),
    )


@router.post("/broadcast", response_model=BroadcastResponse)
async def broadcast(
    request: PushRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Push a message to every registered device."""
    report = await dispatcher.broadcast(request.title, request.body, request.data)
    return BroadcastResponse(
        success_count=report.success_count,
        failure_count=report.failure_count,
        invalidated_count=report.invalidated_count,
        batch_count=report.batch_count,
    )


@router.post("/users/{user_id}/send", response_model=SendResponse)
async def send_to_user(
    user_id: str,
    request: PushRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Push a message to one user.

    Always answers 200: the outcome field tells delivered, no_token,
    invalid_token (do not retry) and transient_failure (safe to retry) apart.
    """
    result = await dispatcher.send_to_user(user_id, request.title, request.body, data=request.data)
    return _send_response(result)
