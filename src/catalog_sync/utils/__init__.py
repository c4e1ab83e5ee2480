"""Utility modules for the catalog sync engine."""

from catalog_sync.utils.logging_config import (
    bind_sync_context,
    clear_sync_context,
    configure_logging,
)
from catalog_sync.utils.retry import backoff_delay, exponential_backoff_retry

__all__ = [
    "configure_logging",
    "bind_sync_context",
    "clear_sync_context",
    "backoff_delay",
    "exponential_backoff_retry",
]
