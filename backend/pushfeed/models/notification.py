"""NotificationRecord model - per-user notification log entries."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Index, UniqueConstraint

from ..database import Base

NOTIFICATION_TYPES = ("like", "comment", "new_status", "new_message")


def notification_link(notification_type: str, entity_id: str | None) -> str:
    """Deep link the client opens for a notification."""
    if notification_type == "new_message":
        return f"/chat/{entity_id}"
    if notification_type in ("like", "comment", "new_status"):
        return "/status"
    return "#"


class NotificationRecord(Base):
    """A notification in a user's feed."""

    __tablename__ = "notification_records"
    __table_args__ = (
        UniqueConstraint("owner_user_id", "notification_id", name="uq_owner_notification"),
        Index("ix_owner_created", "owner_user_id", "created_at"),
        Index("ix_owner_unread", "owner_user_id", "is_read"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_user_id = Column(String, nullable=False)
    notification_id = Column(String, nullable=False)
    from_user_id = Column(String, nullable=True)
    from_user_display_name = Column(String, nullable=True)
    from_user_avatar_url = Column(String, nullable=True)
    message = Column(String, nullable=False)
    type = Column(String, nullable=False)  # like, comment, new_status, new_message
    entity_id = Column(String, nullable=True)  # Target resource for deep-linking
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    is_read = Column(Boolean, nullable=False, default=False)

    @property
    def link(self) -> str:
        return notification_link(self.type, self.entity_id)
