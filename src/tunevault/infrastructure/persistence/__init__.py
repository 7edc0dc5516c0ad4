"""Infrastructure persistence layer."""

from .database import Database
from .models import (
    AlbumArtistModel,
    AlbumModel,
    ArtistModel,
    Base,
    LocalAlbumModel,
    LocalArtistModel,
    LocalSourceModel,
    LocalTrackModel,
    RemoteAlbumModel,
    RemoteAlbumSourceModel,
    RemoteArtistModel,
    RemoteArtistSourceModel,
    RemoteSourceModel,
    RemoteTrackModel,
    RemoteTrackSourceModel,
    TrackArtistModel,
    TrackModel,
)
from .repositories import CatalogRepository, SourceRepository
from .retry import is_lock_error, with_db_retry

__all__ = [
    # Database
    "Database",
    "Base",
    # Models
    "AlbumModel",
    "TrackModel",
    "ArtistModel",
    "AlbumArtistModel",
    "TrackArtistModel",
    "LocalSourceModel",
    "RemoteSourceModel",
    "LocalAlbumModel",
    "LocalTrackModel",
    "LocalArtistModel",
    "RemoteAlbumModel",
    "RemoteTrackModel",
    "RemoteArtistModel",
    "RemoteAlbumSourceModel",
    "RemoteTrackSourceModel",
    "RemoteArtistSourceModel",
    # Repositories
    "CatalogRepository",
    "SourceRepository",
    # Retry utilities
    "with_db_retry",
    "is_lock_error",
]
