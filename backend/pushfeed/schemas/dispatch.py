"""Push dispatch schemas for API."""
from typing import Optional
from pydantic import BaseModel, Field

from .notification import NotificationResponse


class PushRequest(BaseModel):
    """Title and body shown by the device."""
    title: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1)
    data: Optional[dict] = None


class BroadcastResponse(BaseModel):
    """Aggregate result of a fan-out to every registered token."""
    success_count: int
    failure_count: int
    invalidated_count: int
    batch_count: int


class SendResponse(BaseModel):
    """Result of a single-user push."""
    user_id: str
    outcome: str  # delivered, no_token, invalid_token, transient_failure
    reason: Optional[str] = None


class NotifyResponse(BaseModel):
    """Stored record plus what happened on the push channel."""
    notification: NotificationResponse
    dispatch: SendResponse
