"""API routers."""
from .devices import router as devices_router
from .notifications import router as notifications_router
from .feed import router as feed_router

__all__ = ["devices_router", "notifications_router", "feed_router"]
