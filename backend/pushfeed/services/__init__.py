"""Services for token management, push dispatch and the live feed."""
from .token_registry import TokenRegistry
from .push_gateway import PushGateway, ApnsGateway, FcmGateway, DisabledGateway, build_gateway
from .notification_store import NotificationStore
from .feed_hub import FeedHub
from .feed import FeedSubscription, subscribe_feed
from .reconciler import ReadStateReconciler
from .dispatcher import Dispatcher

__all__ = [
    "TokenRegistry",
    "PushGateway",
    "ApnsGateway",
    "FcmGateway",
    "DisabledGateway",
    "build_gateway",
    "NotificationStore",
    "FeedHub",
    "FeedSubscription",
    "subscribe_feed",
    "ReadStateReconciler",
    "Dispatcher",
]
