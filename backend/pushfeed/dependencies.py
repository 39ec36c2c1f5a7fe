"""Runtime service instances shared by the routers."""
import logging
from typing import Optional

from fastapi import HTTPException

from .config import settings
from .database import async_session
from .services.dispatcher import Dispatcher
from .services.push_gateway import PushGateway
from .services.reconciler import ReadStateReconciler

logger = logging.getLogger(__name__)

_dispatcher: Optional[Dispatcher] = None
_reconciler: Optional[ReadStateReconciler] = None


def configure_services(gateway: PushGateway):
    """Build the dispatcher and reconciler around the configured gateway."""
    global _dispatcher, _reconciler
    _dispatcher = Dispatcher(
        gateway=gateway,
        session_factory=async_session,
        batch_size=settings.push_batch_size,
        max_concurrency=settings.push_max_concurrency,
        timeout_seconds=settings.push_timeout_seconds,
    )
    _reconciler = ReadStateReconciler(
        session_factory=async_session,
        chunk_size=settings.reconcile_chunk_size,
    )
    logger.info(f"Dispatcher configured with {gateway.name} gateway (batch size {_dispatcher.batch_size})")


def reset_services():
    global _dispatcher, _reconciler
    _dispatcher = None
    _reconciler = None


def get_dispatcher() -> Dispatcher:
    """Dependency to get the dispatcher."""
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Dispatcher not configured")
    return _dispatcher


def get_reconciler() -> ReadStateReconciler:
    """Dependency to get the read-state reconciler."""
    if _reconciler is None:
        raise HTTPException(status_code=503, detail="Reconciler not configured")
    return _reconciler


def get_session_factory():
    """Dependency to get the session factory used by live feeds."""
    return async_session
