"""Background workers."""

from tunevault.application.workers.sync_coordinator import StatusCell, SyncCoordinator

__all__ = ["StatusCell", "SyncCoordinator"]
