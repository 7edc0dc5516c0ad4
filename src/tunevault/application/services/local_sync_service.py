# Hey future me - this is the LOCAL half of the reconciler. Per scanned file:
#   1. album by name (+ local_album link), album artists by name (+ local_artist links)
#   2. track identity: same path? -> compare hash/metadata. New path? -> look for same hash (move)
#   3. track artists
# and after the whole source: soft-remove every local_track whose path wasn't seen.
#
# All local sources share ONE transaction (the session passed in). Per-track problems
# (hash collision, ambiguous names) are collected and the track is skipped: its savepoint
# is rolled back, everything else stays. Anything SQL-level kills the whole transaction.
"""Local filesystem sync: scanned tracks -> canonical catalog."""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from tunevault.application.services.catalog_reconciler import (
    CatalogReconciler,
    assign_if_changed,
)
from tunevault.domain.entities import LocalSource, ScannedTrack
from tunevault.domain.exceptions import (
    DatabaseQueryFail,
    FileIoFail,
    HashCollision,
    MultipleAlbumsSameName,
    MultipleArtistsSameName,
    ScanError,
    TunevaultError,
)
from tunevault.domain.ports import ITagScanner
from tunevault.infrastructure.persistence.models import AlbumModel, TrackModel
from tunevault.infrastructure.persistence.repositories import CatalogRepository

logger = logging.getLogger(__name__)

# Per-track failures that skip the track but keep the run going
NON_FATAL_TRACK_ERRORS = (HashCollision, MultipleAlbumsSameName, MultipleArtistsSameName)


@dataclass
class LocalSyncStats:
    """Counters of one local source sync."""

    source_id: int
    scanned: int = 0
    inserted: int = 0
    moved: int = 0
    replaced: int = 0
    updated: int = 0
    removed: int = 0
    errors: list[TunevaultError] = field(default_factory=list)


def track_metadata_changed(track: TrackModel, album_id: int, scanned: ScannedTrack) -> bool:
    """Check whether a canonical track differs from a scanned file's tags."""
    return (
        track.album_id != album_id
        or track.disc_number != scanned.disc_number
        or track.disc_total != scanned.disc_total
        or track.track_number != scanned.track_number
        or track.track_total != scanned.track_total
        or track.title != scanned.title
    )


def apply_scanned_fields(track: TrackModel, album_id: int, scanned: ScannedTrack) -> bool:
    """Copy tag values onto a canonical track. Returns True if anything changed."""
    return assign_if_changed(
        track,
        album_id=album_id,
        disc_number=scanned.disc_number,
        disc_total=scanned.disc_total,
        track_number=scanned.track_number,
        track_total=scanned.track_total,
        title=scanned.title,
    )


class LocalSyncService:
    """Reconciles local sources against the catalog inside one session."""

    def __init__(
        self,
        session: AsyncSession,
        scanner: ITagScanner,
        scan_batch_size: int = 64,
    ) -> None:
        """Initialize service.

        Args:
            session: Session of the local sync transaction
            scanner: Tag scanner producing ScannedTracks
            scan_batch_size: Files pulled from the scanner thread per hop
        """
        self.session = session
        self.repository = CatalogRepository(session)
        self.catalog = CatalogReconciler(self.repository)
        self._scanner = scanner
        self._scan_batch_size = scan_batch_size

    async def sync_source(self, source: LocalSource) -> LocalSyncStats:
        """Scan one source directory and reconcile it.

        Args:
            source: The local source

        Returns:
            Counters and the non-fatal errors of this source
        """
        stats = LocalSyncStats(source_id=source.id)
        root = Path(source.directory)

        # Listen up: a missing root (unmounted USB disk, NAS offline) must NOT look like
        # "every file was deleted". Report it and leave the rows alone - no sweep.
        if not await asyncio.to_thread(root.is_dir):
            error = FileIoFail(source.directory, "source directory is missing or not a directory")
            logger.warning(f"Local source {source.id}: {error.message}, skipping")
            stats.errors.append(error)
            return stats

        logger.info(f"Syncing local source {source.id} at {root}")
        seen_paths: set[str] = set()
        unreadable: set[str] = set()

        async for item in self._scan(root):
            if isinstance(item, ScanError):
                # An I/O failure says nothing about whether the file (or directory) is still
                # there, so its rows stay. A tag error means the file is no longer a valid
                # track and its row goes in the sweep like a vanished file.
                if isinstance(item, FileIoFail) and item.file_path:
                    seen_paths.add(item.file_path)
                    unreadable.add(item.file_path)
                logger.warning(f"Local source {source.id}: {item.message}")
                stats.errors.append(item)
                continue

            stats.scanned += 1
            seen_paths.add(item.file_path)
            counts = (stats.inserted, stats.moved, stats.replaced, stats.updated)
            try:
                # One savepoint per file: a skipped track leaves none of its writes behind
                async with self.session.begin_nested():
                    await self._sync_track(source.id, root, item, stats)
            except NON_FATAL_TRACK_ERRORS as e:
                stats.inserted, stats.moved, stats.replaced, stats.updated = counts
                logger.warning(f"Local source {source.id}: skipping {item.file_path}: {e.message}")
                stats.errors.append(e)

        stats.removed = await self._mark_missing_removed(source.id, seen_paths, unreadable)

        logger.info(
            f"Local source {source.id} synced: {stats.scanned} scanned, "
            f"{stats.inserted} new, {stats.moved} moved, {stats.replaced} replaced, "
            f"{stats.updated} updated, {stats.removed} removed, {len(stats.errors)} errors"
        )
        return stats

    # Hey future me, the scanner is a blocking generator (os.walk + mutagen). We pull it in
    # batches on a worker thread so the event loop stays free for the coordinator. The same
    # generator is advanced from different threads, but never concurrently.
    async def _scan(self, root: Path) -> AsyncIterator[ScannedTrack | ScanError]:
        iterator = self._scanner.scan(root)
        while True:
            batch = await asyncio.to_thread(self._next_batch, iterator)
            if not batch:
                return
            for item in batch:
                yield item

    def _next_batch(
        self, iterator: Iterator[ScannedTrack | ScanError]
    ) -> list[ScannedTrack | ScanError]:
        return list(islice(iterator, self._scan_batch_size))

    async def _sync_track(
        self, source_id: int, root: Path, scanned: ScannedTrack, stats: LocalSyncStats
    ) -> None:
        album, _ = await self.catalog.upsert_album_by_name(scanned.album)
        await self.repository.ensure_local_album(album.id, source_id)

        album_artist_ids = {
            await self._sync_artist(source_id, name) for name in scanned.album_artists
        }
        await self.catalog.sync_album_artists(album.id, album_artist_ids)

        track = await self._resolve_track(source_id, root, album, scanned, stats)

        track_artist_ids = {
            await self._sync_artist(source_id, name) for name in scanned.track_artists
        }
        await self.catalog.sync_track_artists(track.id, track_artist_ids)

    async def _sync_artist(self, source_id: int, name: str) -> int:
        artist, _ = await self.catalog.upsert_artist_by_name(name)
        await self.repository.ensure_local_artist(artist.id, source_id)
        return artist.id

    # Listen up, future me - this is the heart of the local pipeline.
    #
    # Same path already known (case A):
    #   hash AND metadata changed -> a different file now lives at this path (replacement):
    #                                old local_track gets file_path=NULL, fresh track inserted
    #   only hash changed         -> audio re-encoded/repaired, just store the new hash
    #   only metadata changed     -> tags edited, update the canonical track in place
    #   nothing changed           -> no-op
    # Path unknown (case B), look up same hash within this source:
    #   none     -> brand new track
    #   one      -> the file MOVED: point that local_track at the new path, refresh the track,
    #               unless the old path still exists on disk (a copy, gets its own track)
    #   several  -> HashCollision, skip (we can't tell which row this file continues)
    async def _resolve_track(
        self,
        source_id: int,
        root: Path,
        album: AlbumModel,
        scanned: ScannedTrack,
        stats: LocalSyncStats,
    ) -> TrackModel:
        by_path = await self.repository.get_local_track_by_path(source_id, scanned.file_path)
        if by_path is not None:
            track = await self.repository.get_track(by_path.track_id)
            if track is None:
                raise DatabaseQueryFail(
                    f"local_track references missing track {by_path.track_id}"
                )

            hash_changed = by_path.hash != scanned.hash
            metadata_changed = track_metadata_changed(track, album.id, scanned)

            if hash_changed and metadata_changed:
                logger.debug(
                    f"{scanned.file_path} was replaced, retiring track {track.id}"
                )
                by_path.file_path = None
                # Flush now: the new row below reuses the same (source, path) unique key
                await self.session.flush()
                stats.replaced += 1
                return await self._insert_track(source_id, album, scanned)
            if hash_changed:
                by_path.hash = scanned.hash
                stats.updated += 1
            elif metadata_changed:
                apply_scanned_fields(track, album.id, scanned)
                stats.updated += 1
            return track

        by_hash = await self.repository.get_local_tracks_by_hash(source_id, scanned.hash)
        if not by_hash:
            stats.inserted += 1
            return await self._insert_track(source_id, album, scanned)
        if len(by_hash) > 1:
            raise HashCollision(
                scanned.file_path, scanned.hash, [lt.file_path for lt in by_hash]
            )

        moved = by_hash[0]
        if moved.file_path is not None and await asyncio.to_thread(
            (root / moved.file_path).is_file
        ):
            logger.debug(f"{scanned.file_path} is a copy of {moved.file_path}")
            stats.inserted += 1
            return await self._insert_track(source_id, album, scanned)

        logger.debug(f"Detected move {moved.file_path} -> {scanned.file_path}")
        moved.file_path = scanned.file_path
        track = await self.repository.get_track(moved.track_id)
        if track is None:
            raise DatabaseQueryFail(f"local_track references missing track {moved.track_id}")
        apply_scanned_fields(track, album.id, scanned)
        stats.moved += 1
        return track

    async def _insert_track(
        self, source_id: int, album: AlbumModel, scanned: ScannedTrack
    ) -> TrackModel:
        track = TrackModel(album_id=album.id, title=scanned.title)
        apply_scanned_fields(track, album.id, scanned)
        await self.repository.insert_track(track)
        await self.repository.insert_local_track(
            track.id, source_id, scanned.file_path, scanned.hash
        )
        return track

    async def _mark_missing_removed(
        self, source_id: int, seen_paths: set[str], unreadable: set[str]
    ) -> int:
        """Soft-remove local tracks whose file was not seen in this scan.

        Files below a directory the walk could not read are left alone.
        """
        prefixes = tuple(f"{path}/" for path in unreadable)
        removed = 0
        for local_track in await self.repository.list_present_local_tracks(source_id):
            path = local_track.file_path
            if path in seen_paths or (prefixes and path.startswith(prefixes)):
                continue
            logger.debug(f"{path} not seen, marking track {local_track.track_id} removed")
            local_track.file_path = None
            removed += 1
        await self.session.flush()
        return removed
