"""Application services."""

from tunevault.application.services.catalog_reconciler import CatalogReconciler
from tunevault.application.services.local_sync_service import LocalSyncService, LocalSyncStats
from tunevault.application.services.remote_sync_service import (
    RemoteSyncService,
    RemoteSyncStats,
)
from tunevault.application.services.source_service import SourceService
from tunevault.application.services.sync_service import SyncService
from tunevault.application.services.tag_scanner import Id3TagScanner

__all__ = [
    "CatalogReconciler",
    "Id3TagScanner",
    "LocalSyncService",
    "LocalSyncStats",
    "RemoteSyncService",
    "RemoteSyncStats",
    "SourceService",
    "SyncService",
]
