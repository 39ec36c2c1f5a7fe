"""Pydantic schemas for API request/response models."""
from .device import (
    DeviceRegisterRequest,
    DeviceRegisterResponse,
    DeviceUnregisterResponse,
    DeviceStatusResponse,
    DeviceCountResponse,
)
from .notification import (
    NotificationEvent,
    NotificationResponse,
    FeedChangeResponse,
    FeedSnapshotResponse,
    ReconcileResponse,
)
from .dispatch import (
    PushRequest,
    BroadcastResponse,
    SendResponse,
    NotifyResponse,
)

__all__ = [
    "DeviceRegisterRequest",
    "DeviceRegisterResponse",
    "DeviceUnregisterResponse",
    "DeviceStatusResponse",
    "DeviceCountResponse",
    "NotificationEvent",
    "NotificationResponse",
    "FeedChangeResponse",
    "FeedSnapshotResponse",
    "ReconcileResponse",
    "PushRequest",
    "BroadcastResponse",
    "SendResponse",
    "NotifyResponse",
]
