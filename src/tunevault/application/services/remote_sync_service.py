# Hey future me - REMOTE half of the reconciler. Unlike local files, Spotify gives us stable
# external ids, so identity is "remote_* mapping first, name second". Name matching is only
# how a freshly followed album gets glued onto an album that local sync already created.
#
# Every album/track/artist we touch goes into a synced_* set. At the end, association rows
# of THIS remote source that aren't in those sets get deleted (the user unfollowed). Canonical
# rows and remote_* mappings are NEVER deleted - re-following reuses the same ids.
"""Remote catalog sync: fetched album trees -> canonical catalog."""

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from tunevault.application.services.catalog_reconciler import (
    CatalogReconciler,
    assign_if_changed,
)
from tunevault.domain.entities import (
    RemoteAlbumRef,
    RemoteArtistRef,
    RemoteTrackRef,
    SpotifyCredentials,
)
from tunevault.domain.exceptions import DatabaseQueryFail
from tunevault.infrastructure.persistence.models import (
    AlbumModel,
    ArtistModel,
    RemoteSourceModel,
    TrackModel,
    ensure_utc_aware,
)
from tunevault.infrastructure.persistence.repositories import CatalogRepository

logger = logging.getLogger(__name__)


@dataclass
class RemoteSyncStats:
    """Counters of one remote source sync."""

    source_id: int
    albums: int = 0
    tracks: int = 0
    artists: int = 0
    removed_albums: int = 0
    removed_tracks: int = 0
    removed_artists: int = 0
    ambiguous: list[str] = field(default_factory=list)


@dataclass
class _SyncedIds:
    albums: set[int] = field(default_factory=set)
    tracks: set[int] = field(default_factory=set)
    artists: set[int] = field(default_factory=set)


class RemoteSyncService:
    """Reconciles one remote source's albums inside the current session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.repository = CatalogRepository(session)
        self.catalog = CatalogReconciler(self.repository)

    async def sync_albums(self, source_id: int, albums: list[RemoteAlbumRef]) -> RemoteSyncStats:
        """Upsert every fetched album and drop associations that vanished.

        Args:
            source_id: remote_source row id
            albums: Full album trees as fetched from the remote catalog

        Returns:
            Counters of this source
        """
        stats = RemoteSyncStats(source_id=source_id)
        synced = _SyncedIds()

        for remote_album in albums:
            album = await self._sync_album(source_id, remote_album, stats)
            synced.albums.add(album.id)

            album_artist_ids = {
                await self._sync_artist(source_id, ref, stats) for ref in remote_album.artists
            }
            synced.artists |= album_artist_ids
            await self.catalog.sync_album_artists(album.id, album_artist_ids)

            for remote_track in remote_album.tracks:
                track = await self._sync_track(source_id, album, remote_track)
                synced.tracks.add(track.id)

                track_artist_ids = {
                    await self._sync_artist(source_id, ref, stats)
                    for ref in remote_track.artists
                }
                synced.artists |= track_artist_ids
                await self.catalog.sync_track_artists(track.id, track_artist_ids)

        stats.albums = len(synced.albums)
        stats.tracks = len(synced.tracks)
        stats.artists = len(synced.artists)

        stats.removed_albums = await self.repository.delete_remote_album_sources_except(
            source_id, synced.albums
        )
        stats.removed_tracks = await self.repository.delete_remote_track_sources_except(
            source_id, synced.tracks
        )
        stats.removed_artists = await self.repository.delete_remote_artist_sources_except(
            source_id, synced.artists
        )
        await self.session.flush()

        logger.info(
            f"Remote source {source_id} synced: {stats.albums} albums, {stats.tracks} tracks, "
            f"{stats.artists} artists; dropped {stats.removed_albums}/{stats.removed_tracks}/"
            f"{stats.removed_artists} associations"
        )
        return stats

    async def _sync_album(
        self, source_id: int, remote_album: RemoteAlbumRef, stats: RemoteSyncStats
    ) -> AlbumModel:
        mapping = await self.repository.get_remote_album(remote_album.external_id)
        if mapping is not None:
            album = await self.repository.get_album(mapping.album_id)
            if album is None:
                raise DatabaseQueryFail(
                    f"remote_album references missing album {mapping.album_id}"
                )
            if assign_if_changed(album, name=remote_album.name):
                logger.debug(f"Album {album.id} renamed to {remote_album.name!r} remotely")
        else:
            album = await self._link_album_by_name(remote_album, stats)
            await self.repository.insert_remote_album(album.id, remote_album.external_id)

        await self.repository.ensure_remote_album_source(album.id, source_id)
        return album

    # Listen up: several canonical albums can share a name ("Greatest Hits"). We take the
    # first one that no external id has claimed yet. If every candidate is already linked to
    # some other Spotify album, this one is genuinely different - new canonical row.
    async def _link_album_by_name(
        self, remote_album: RemoteAlbumRef, stats: RemoteSyncStats
    ) -> AlbumModel:
        candidates = await self.repository.select_albums_by_name(remote_album.name)
        if not candidates:
            return await self.repository.insert_album(remote_album.name)

        if len(candidates) > 1:
            logger.warning(
                f"Album name {remote_album.name!r} is ambiguous "
                f"({len(candidates)} albums), linking {remote_album.external_id} "
                f"to the first unlinked one"
            )
            stats.ambiguous.append(f"album {remote_album.name!r}")

        for candidate in candidates:
            if not await self.repository.has_remote_album_mapping(candidate.id):
                return candidate
        return await self.repository.insert_album(remote_album.name)

    async def _sync_artist(
        self, source_id: int, ref: RemoteArtistRef, stats: RemoteSyncStats
    ) -> int:
        mapping = await self.repository.get_remote_artist(ref.external_id)
        if mapping is not None:
            artist = await self.repository.get_artist(mapping.artist_id)
            if artist is None:
                raise DatabaseQueryFail(
                    f"remote_artist references missing artist {mapping.artist_id}"
                )
            if assign_if_changed(artist, name=ref.name):
                logger.debug(f"Artist {artist.id} renamed to {ref.name!r} remotely")
        else:
            artist = await self._link_artist_by_name(ref, stats)
            await self.repository.insert_remote_artist(artist.id, ref.external_id)

        await self.repository.ensure_remote_artist_source(artist.id, source_id)
        return artist.id

    async def _link_artist_by_name(
        self, ref: RemoteArtistRef, stats: RemoteSyncStats
    ) -> ArtistModel:
        candidates = await self.repository.select_artists_by_name(ref.name)
        if not candidates:
            return await self.repository.insert_artist(ref.name)

        if len(candidates) > 1:
            logger.warning(
                f"Artist name {ref.name!r} is ambiguous ({len(candidates)} artists), "
                f"linking {ref.external_id} to the first unlinked one"
            )
            stats.ambiguous.append(f"artist {ref.name!r}")

        for candidate in candidates:
            if not await self.repository.has_remote_artist_mapping(candidate.id):
                return candidate
        return await self.repository.insert_artist(ref.name)

    async def _sync_track(
        self, source_id: int, album: AlbumModel, remote_track: RemoteTrackRef
    ) -> TrackModel:
        def apply(track: TrackModel) -> bool:
            return assign_if_changed(
                track,
                album_id=album.id,
                disc_number=remote_track.disc_number,
                track_number=remote_track.track_number,
                title=remote_track.title,
            )

        mapping = await self.repository.get_remote_track(remote_track.external_id)
        if mapping is not None:
            track = await self.repository.get_track(mapping.track_id)
            if track is None:
                raise DatabaseQueryFail(
                    f"remote_track references missing track {mapping.track_id}"
                )
            if apply(track):
                logger.debug(f"Updated track {track.id} from {remote_track.external_id}")
        else:
            track = await self.catalog.upsert_track(
                album.id,
                remote_track.title,
                remote_track.disc_number,
                remote_track.track_number,
                new_track=apply,
                update_track=apply,
            )
            await self.repository.insert_remote_track(track.id, remote_track.external_id)

        await self.repository.ensure_remote_track_source(track.id, source_id)
        return track

    @staticmethod
    def store_credentials(
        source: RemoteSourceModel,
        credentials: SpotifyCredentials,
    ) -> bool:
        """Write refreshed tokens back to the source row if they changed.

        Returns:
            True if the row was modified
        """
        # SQLite hands the stored expiry back naive, which never equals an aware datetime
        source.expiry = ensure_utc_aware(source.expiry)
        return assign_if_changed(
            source,
            access_token=credentials.access_token,
            refresh_token=credentials.refresh_token,
            expiry=ensure_utc_aware(credentials.expiry),
        )
