"""Device token schemas for API."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class DeviceRegisterRequest(BaseModel):
    """Request to register a device token for push notifications."""
    user_id: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)
    platform: str = Field(default="web", pattern="^(web|ios|android)$")


class DeviceRegisterResponse(BaseModel):
    """Response after registering a device token."""
    success: bool
    user_id: str
    message: str


class DeviceUnregisterResponse(BaseModel):
    """Response after opting a user out of push."""
    success: bool
    message: str


class DeviceStatusResponse(BaseModel):
    """Whether a user is currently reachable by push."""
    user_id: str
    registered: bool
    platform: Optional[str] = None
    registered_at: Optional[datetime] = None


class DeviceCountResponse(BaseModel):
    """Registered device counts (for admin dashboard)."""
    total: int
    active: int
