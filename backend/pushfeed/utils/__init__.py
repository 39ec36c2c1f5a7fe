"""Shared helpers."""
from .db_utils import retry_on_lock, is_transient_db_error

__all__ = ["retry_on_lock", "is_transient_db_error"]
