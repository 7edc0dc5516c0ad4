"""Shared upsert procedures used by both the local and the remote sync."""

import logging
from collections.abc import Callable

from tunevault.domain.exceptions import (
    MultipleAlbumsSameName,
    MultipleArtistsSameName,
    MultipleTracksSameAlbumAndTitle,
)
from tunevault.infrastructure.persistence.models import AlbumModel, ArtistModel, TrackModel
from tunevault.infrastructure.persistence.repositories import CatalogRepository

logger = logging.getLogger(__name__)


def assign_if_changed(model: object, **values: object) -> bool:
    """Set attributes that differ from ``values``. Returns True if anything changed."""
    changed = False
    for name, value in values.items():
        if getattr(model, name) != value:
            setattr(model, name, value)
            changed = True
    return changed


class CatalogReconciler:
    """Identity resolution for canonical albums, artists and tracks.

    All methods stage changes in the repository's session; nothing is committed here.
    """

    def __init__(self, repository: CatalogRepository) -> None:
        self.repository = repository

    # Hey future me, "by name" is the ONLY identity local files give us, so two different
    # albums both called "Greatest Hits" collapse into one here. Once a second row with the
    # same name exists (remote sync can create one) local sync can't pick - it raises and the
    # user has to disambiguate. Remote sync doesn't call this; it has external ids to lean on.
    async def upsert_album_by_name(self, name: str) -> tuple[AlbumModel, bool]:
        """Find the single album named ``name`` or create it.

        Returns:
            (album, was_new)

        Raises:
            MultipleAlbumsSameName: More than one album has this name
        """
        albums = await self.repository.select_albums_by_name(name)
        if not albums:
            album = await self.repository.insert_album(name)
            logger.debug(f"Inserted album {album.id} {name!r}")
            return album, True
        if len(albums) > 1:
            raise MultipleAlbumsSameName(name, [a.id for a in albums])
        return albums[0], False

    async def upsert_artist_by_name(self, name: str) -> tuple[ArtistModel, bool]:
        """Find the single artist named ``name`` or create it.

        Raises:
            MultipleArtistsSameName: More than one artist has this name
        """
        artists = await self.repository.select_artists_by_name(name)
        if not artists:
            artist = await self.repository.insert_artist(name)
            logger.debug(f"Inserted artist {artist.id} {name!r}")
            return artist, True
        if len(artists) > 1:
            raise MultipleArtistsSameName(name, [a.id for a in artists])
        return artists[0], False

    async def upsert_track(
        self,
        album_id: int,
        title: str,
        disc_number: int | None,
        track_number: int | None,
        new_track: Callable[[TrackModel], None],
        update_track: Callable[[TrackModel], bool],
    ) -> TrackModel:
        """Find a track by album, title and (when known) disc then track number.

        Args:
            album_id: Album the track belongs to
            title: Track title
            disc_number: Extra filter when not None
            track_number: Extra filter when not None
            new_track: Fills a fresh TrackModel (album_id and title preset) before insert
            update_track: Applies changes to an existing track, returns True if changed

        Returns:
            The inserted or updated track

        Raises:
            MultipleTracksSameAlbumAndTitle: More than one track matched
        """
        tracks = await self.repository.select_tracks(album_id, title, disc_number, track_number)
        if not tracks:
            track = TrackModel(album_id=album_id, title=title)
            new_track(track)
            await self.repository.insert_track(track)
            logger.debug(f"Inserted track {track.id} {title!r} on album {album_id}")
            return track
        if len(tracks) > 1:
            raise MultipleTracksSameAlbumAndTitle(album_id, title, [t.id for t in tracks])
        track = tracks[0]
        if update_track(track):
            logger.debug(f"Updated track {track.id} {title!r}")
        return track

    # Yo, these two make the link table EXACTLY equal to the desired set: extra links go,
    # missing links come. Calling them with the same set twice is a no-op.
    async def sync_album_artists(self, album_id: int, desired: set[int]) -> None:
        """Make the album's artist links equal ``desired``."""
        existing = await self.repository.get_album_artist_ids(album_id)
        if stale := existing - desired:
            await self.repository.remove_album_artists(album_id, stale)
        if missing := desired - existing:
            await self.repository.add_album_artists(album_id, missing)

    async def sync_track_artists(self, track_id: int, desired: set[int]) -> None:
        """Make the track's artist links equal ``desired``."""
        existing = await self.repository.get_track_artist_ids(track_id)
        if stale := existing - desired:
            await self.repository.remove_track_artists(track_id, stale)
        if missing := desired - existing:
            await self.repository.add_track_artists(track_id, missing)
