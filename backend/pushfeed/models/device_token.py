"""DeviceToken model - the single push token slot per user."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime

from ..database import Base


class DeviceToken(Base):
    """Push delivery token for a user.

    One row per user, last registration wins. A NULL token means the user
    is currently unreachable by push, which is a normal state.
    """

    __tablename__ = "device_tokens"

    user_id = Column(String, primary_key=True)
    token = Column(String, nullable=True, index=True)
    platform = Column(String, default="web")  # web, ios, android
    registered_at = Column(DateTime, default=datetime.utcnow)
    invalidated_at = Column(DateTime, nullable=True)
    invalidation_reason = Column(String, nullable=True)
