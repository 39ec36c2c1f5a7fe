"""Notification and feed schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class NotificationEvent(BaseModel):
    """An application event that should land in a user's feed."""
    owner_user_id: str = Field(..., min_length=1)
    from_user_id: Optional[str] = None
    from_user_display_name: Optional[str] = None
    from_user_avatar_url: Optional[str] = None
    message: str = Field(..., min_length=1)
    type: str = Field(..., pattern="^(like|comment|new_status|new_message)$")
    entity_id: Optional[str] = None


class NotificationResponse(BaseModel):
    """Schema for a notification record in API responses."""
    notification_id: str
    owner_user_id: str
    from_user_id: Optional[str] = None
    from_user_display_name: Optional[str] = None
    from_user_avatar_url: Optional[str] = None
    message: str
    type: str
    entity_id: Optional[str] = None
    link: str
    created_at: datetime
    is_read: bool

    class Config:
        from_attributes = True


class FeedChangeResponse(BaseModel):
    """Notification ids that changed since the previous snapshot."""
    added: List[str] = []
    modified: List[str] = []
    removed: List[str] = []


class FeedSnapshotResponse(BaseModel):
    """The visible feed window and its unread count."""
    user_id: str
    records: List[NotificationResponse]
    unread_count: int  # Counted within the window only
    change: FeedChangeResponse
    # Exact unread total across the whole log (one-shot reads only)
    total_unread: Optional[int] = None


class ReconcileResponse(BaseModel):
    """Result of marking the feed as opened."""
    success: bool
    marked_count: int
    attempts: int
    error: Optional[str] = None
