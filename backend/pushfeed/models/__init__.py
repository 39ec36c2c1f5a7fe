"""Database models."""
from .device_token import DeviceToken
from .notification import NotificationRecord, NOTIFICATION_TYPES, notification_link

__all__ = ["DeviceToken", "NotificationRecord", "NOTIFICATION_TYPES", "notification_link"]
