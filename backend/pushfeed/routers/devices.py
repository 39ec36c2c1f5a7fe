"""Device registration API endpoints for push notifications."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.device import (
    DeviceRegisterRequest,
    DeviceRegisterResponse,
    DeviceUnregisterResponse,
    DeviceStatusResponse,
    DeviceCountResponse,
)
from ..services.token_registry import token_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/devices", tags=["devices"])


@router.post("/register", response_model=DeviceRegisterResponse)
async def register_device(
    request: DeviceRegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """Register a device token for push notifications.

    Replaces any token previously stored for the user. The client should call
    this whenever the messaging SDK hands it a token so the stored one is current.
    """
    await token_registry.register_token(db, request.user_id, request.token, request.platform)
    return DeviceRegisterResponse(
        success=True,
        user_id=request.user_id,
        message="Device registered successfully",
    )


@router.get("/count", response_model=DeviceCountResponse)
async def get_device_count(db: AsyncSession = Depends(get_db)):
    """Get count of registered devices (for admin dashboard)."""
    total, active = await token_registry.count(db)
    return DeviceCountResponse(total=total, active=active)


@router.get("/{user_id}", response_model=DeviceStatusResponse)
async def get_device_status(user_id: str, db: AsyncSession = Depends(get_db)):
    """Report whether a user can currently be reached by push."""
    device = await token_registry.get_device(db, user_id)
    if device is None or not device.token:
        return DeviceStatusResponse(user_id=user_id, registered=False)
    return DeviceStatusResponse(
        user_id=user_id,
        registered=True,
        platform=device.platform,
        registered_at=device.registered_at,
    )


@router.delete("/{user_id}", response_model=DeviceUnregisterResponse)
async def unregister_device(user_id: str, db: AsyncSession = Depends(get_db)):
    """Opt a user out of push notifications.

    This doesn't delete the record but clears the token.
    """
    if not await token_registry.unregister(db, user_id):
        raise HTTPException(status_code=404, detail="No device registered")

    logger.info(f"Device unregistered for user {user_id}")
    return DeviceUnregisterResponse(
        success=True,
        message="Device unregistered successfully",
    )
