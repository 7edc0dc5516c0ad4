"""Observability infrastructure for structured logging."""

from tunevault.infrastructure.observability.logging import (
    configure_logging,
    get_sync_run_id,
    set_sync_run_id,
)

__all__ = [
    "configure_logging",
    "get_sync_run_id",
    "set_sync_run_id",
]
