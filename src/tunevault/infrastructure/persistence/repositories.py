"""Repository implementations for the catalog and its sources."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

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

M = TypeVar("M", bound=Base)


class CatalogRepository:
    """Low-level reads and writes on the canonical catalog and its association tables."""

    # Hey future me, this repo NEVER commits. It only stages changes and flushes when a new
    # row's id is needed. The commit (or rollback) belongs to whoever opened the session -
    # the sync services, through Database.session_scope(). flush() is our version of
    # "insert then select the highest id": the id comes back from the same transaction.
    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def _insert(self, model: M) -> M:
        self.session.add(model)
        await self.session.flush()
        return model

    async def _ensure(self, model_cls: type[M], **key: Any) -> bool:
        """Insert an association row unless it exists. Returns True if inserted."""
        existing = await self.session.get(model_cls, key)
        if existing is not None:
            return False
        await self._insert(model_cls(**key))
        return True

    # =========================================================================
    # Albums / artists
    # =========================================================================

    async def select_albums_by_name(self, name: str) -> list[AlbumModel]:
        """Albums with exactly this name, newest first."""
        stmt = select(AlbumModel).where(AlbumModel.name == name).order_by(AlbumModel.id.desc())
        result = await self.session.scalars(stmt)
        return list(result.all())

    async def insert_album(self, name: str) -> AlbumModel:
        return await self._insert(AlbumModel(name=name))

    async def get_album(self, album_id: int) -> AlbumModel | None:
        return await self.session.get(AlbumModel, album_id)

    async def select_artists_by_name(self, name: str) -> list[ArtistModel]:
        """Artists with exactly this name, newest first."""
        stmt = (
            select(ArtistModel).where(ArtistModel.name == name).order_by(ArtistModel.id.desc())
        )
        result = await self.session.scalars(stmt)
        return list(result.all())

    async def insert_artist(self, name: str) -> ArtistModel:
        return await self._insert(ArtistModel(name=name))

    async def get_artist(self, artist_id: int) -> ArtistModel | None:
        return await self.session.get(ArtistModel, artist_id)

    # =========================================================================
    # Tracks
    # =========================================================================

    # Yo, disc_number and track_number narrow the lookup ONLY when they're known. A None
    # means "don't filter on it", not "must be NULL in the DB". Order is disc THEN track.
    async def select_tracks(
        self,
        album_id: int,
        title: str,
        disc_number: int | None = None,
        track_number: int | None = None,
    ) -> list[TrackModel]:
        """Tracks of an album with this title, optionally narrowed by numbering."""
        stmt = select(TrackModel).where(
            TrackModel.album_id == album_id, TrackModel.title == title
        )
        if disc_number is not None:
            stmt = stmt.where(TrackModel.disc_number == disc_number)
        if track_number is not None:
            stmt = stmt.where(TrackModel.track_number == track_number)
        result = await self.session.scalars(stmt.order_by(TrackModel.id.desc()))
        return list(result.all())

    async def insert_track(self, track: TrackModel) -> TrackModel:
        return await self._insert(track)

    async def get_track(self, track_id: int) -> TrackModel | None:
        return await self.session.get(TrackModel, track_id)

    # =========================================================================
    # Album / track artist links
    # =========================================================================

    async def get_album_artist_ids(self, album_id: int) -> set[int]:
        stmt = select(AlbumArtistModel.artist_id).where(AlbumArtistModel.album_id == album_id)
        return set((await self.session.scalars(stmt)).all())

    async def add_album_artists(self, album_id: int, artist_ids: Iterable[int]) -> None:
        self.session.add_all(
            AlbumArtistModel(album_id=album_id, artist_id=artist_id) for artist_id in artist_ids
        )
        await self.session.flush()

    async def remove_album_artists(self, album_id: int, artist_ids: Iterable[int]) -> None:
        await self.session.execute(
            delete(AlbumArtistModel).where(
                AlbumArtistModel.album_id == album_id,
                AlbumArtistModel.artist_id.in_(list(artist_ids)),
            )
        )

    async def get_track_artist_ids(self, track_id: int) -> set[int]:
        stmt = select(TrackArtistModel.artist_id).where(TrackArtistModel.track_id == track_id)
        return set((await self.session.scalars(stmt)).all())

    async def add_track_artists(self, track_id: int, artist_ids: Iterable[int]) -> None:
        self.session.add_all(
            TrackArtistModel(track_id=track_id, artist_id=artist_id) for artist_id in artist_ids
        )
        await self.session.flush()

    async def remove_track_artists(self, track_id: int, artist_ids: Iterable[int]) -> None:
        await self.session.execute(
            delete(TrackArtistModel).where(
                TrackArtistModel.track_id == track_id,
                TrackArtistModel.artist_id.in_(list(artist_ids)),
            )
        )

    # =========================================================================
    # Local associations
    # =========================================================================

    async def ensure_local_album(self, album_id: int, local_source_id: int) -> bool:
        return await self._ensure(
            LocalAlbumModel, album_id=album_id, local_source_id=local_source_id
        )

    async def ensure_local_artist(self, artist_id: int, local_source_id: int) -> bool:
        return await self._ensure(
            LocalArtistModel, artist_id=artist_id, local_source_id=local_source_id
        )

    async def get_local_track_by_path(
        self, local_source_id: int, file_path: str
    ) -> LocalTrackModel | None:
        stmt = select(LocalTrackModel).where(
            LocalTrackModel.local_source_id == local_source_id,
            LocalTrackModel.file_path == file_path,
        )
        return (await self.session.scalars(stmt)).one_or_none()

    async def get_local_tracks_by_hash(
        self, local_source_id: int, hash_value: int
    ) -> list[LocalTrackModel]:
        stmt = select(LocalTrackModel).where(
            LocalTrackModel.local_source_id == local_source_id,
            LocalTrackModel.hash == hash_value,
        )
        return list((await self.session.scalars(stmt)).all())

    async def insert_local_track(
        self, track_id: int, local_source_id: int, file_path: str, hash_value: int
    ) -> LocalTrackModel:
        return await self._insert(
            LocalTrackModel(
                track_id=track_id,
                local_source_id=local_source_id,
                file_path=file_path,
                hash=hash_value,
            )
        )

    async def list_present_local_tracks(self, local_source_id: int) -> list[LocalTrackModel]:
        """Local tracks of a source that currently have a file (non-null path)."""
        stmt = select(LocalTrackModel).where(
            LocalTrackModel.local_source_id == local_source_id,
            LocalTrackModel.file_path.is_not(None),
        )
        return list((await self.session.scalars(stmt)).all())

    # =========================================================================
    # Remote mappings
    # =========================================================================

    async def get_remote_album(self, remote_id: str) -> RemoteAlbumModel | None:
        stmt = select(RemoteAlbumModel).where(RemoteAlbumModel.remote_id == remote_id)
        return (await self.session.scalars(stmt)).one_or_none()

    async def has_remote_album_mapping(self, album_id: int) -> bool:
        stmt = select(RemoteAlbumModel.album_id).where(RemoteAlbumModel.album_id == album_id)
        return (await self.session.scalars(stmt.limit(1))).first() is not None

    async def insert_remote_album(self, album_id: int, remote_id: str) -> RemoteAlbumModel:
        return await self._insert(RemoteAlbumModel(album_id=album_id, remote_id=remote_id))

    async def get_remote_track(self, remote_id: str) -> RemoteTrackModel | None:
        stmt = select(RemoteTrackModel).where(RemoteTrackModel.remote_id == remote_id)
        return (await self.session.scalars(stmt)).one_or_none()

    async def insert_remote_track(self, track_id: int, remote_id: str) -> RemoteTrackModel:
        return await self._insert(RemoteTrackModel(track_id=track_id, remote_id=remote_id))

    async def get_remote_artist(self, remote_id: str) -> RemoteArtistModel | None:
        stmt = select(RemoteArtistModel).where(RemoteArtistModel.remote_id == remote_id)
        return (await self.session.scalars(stmt)).one_or_none()

    async def has_remote_artist_mapping(self, artist_id: int) -> bool:
        stmt = select(RemoteArtistModel.artist_id).where(
            RemoteArtistModel.artist_id == artist_id
        )
        return (await self.session.scalars(stmt.limit(1))).first() is not None

    async def insert_remote_artist(self, artist_id: int, remote_id: str) -> RemoteArtistModel:
        return await self._insert(RemoteArtistModel(artist_id=artist_id, remote_id=remote_id))

    # =========================================================================
    # Remote associations
    # =========================================================================

    async def ensure_remote_album_source(self, album_id: int, remote_source_id: int) -> bool:
        return await self._ensure(
            RemoteAlbumSourceModel, album_id=album_id, remote_source_id=remote_source_id
        )

    async def ensure_remote_track_source(self, track_id: int, remote_source_id: int) -> bool:
        return await self._ensure(
            RemoteTrackSourceModel, track_id=track_id, remote_source_id=remote_source_id
        )

    async def ensure_remote_artist_source(self, artist_id: int, remote_source_id: int) -> bool:
        return await self._ensure(
            RemoteArtistSourceModel, artist_id=artist_id, remote_source_id=remote_source_id
        )

    # Listen up, cleanup deletes ONLY association rows of ONE remote source. Canonical rows
    # and remote_* mappings stay, so a re-followed artist reuses the same canonical ids.
    async def delete_remote_album_sources_except(
        self, remote_source_id: int, keep_album_ids: set[int]
    ) -> int:
        return await self._delete_sources_except(
            RemoteAlbumSourceModel.album_id,
            RemoteAlbumSourceModel.remote_source_id,
            remote_source_id,
            keep_album_ids,
        )

    async def delete_remote_track_sources_except(
        self, remote_source_id: int, keep_track_ids: set[int]
    ) -> int:
        return await self._delete_sources_except(
            RemoteTrackSourceModel.track_id,
            RemoteTrackSourceModel.remote_source_id,
            remote_source_id,
            keep_track_ids,
        )

    async def delete_remote_artist_sources_except(
        self, remote_source_id: int, keep_artist_ids: set[int]
    ) -> int:
        return await self._delete_sources_except(
            RemoteArtistSourceModel.artist_id,
            RemoteArtistSourceModel.remote_source_id,
            remote_source_id,
            keep_artist_ids,
        )

    async def _delete_sources_except(
        self, id_column: Any, source_column: Any, remote_source_id: int, keep_ids: set[int]
    ) -> int:
        # Read first, delete by explicit id list: keeps the statement bounded by what
        # actually vanished instead of sending a huge NOT IN list for big catalogs.
        stmt = select(id_column).where(source_column == remote_source_id)
        stale = [i for i in (await self.session.scalars(stmt)).all() if i not in keep_ids]
        if not stale:
            return 0
        await self.session.execute(
            delete(id_column.class_).where(
                source_column == remote_source_id, id_column.in_(stale)
            )
        )
        return len(stale)


class SourceRepository:
    """Reads and writes local and remote source rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with session."""
        self.session = session

    async def list_local_sources(self, enabled_only: bool = False) -> list[LocalSourceModel]:
        stmt = select(LocalSourceModel).order_by(LocalSourceModel.id)
        if enabled_only:
            stmt = stmt.where(LocalSourceModel.enabled.is_(True))
        return list((await self.session.scalars(stmt)).all())

    async def get_local_source(self, source_id: int) -> LocalSourceModel | None:
        return await self.session.get(LocalSourceModel, source_id)

    async def get_local_source_by_directory(self, directory: str) -> LocalSourceModel | None:
        stmt = select(LocalSourceModel).where(LocalSourceModel.directory == directory)
        return (await self.session.scalars(stmt)).one_or_none()

    async def add_local_source(self, directory: str, enabled: bool = True) -> LocalSourceModel:
        model = LocalSourceModel(directory=directory, enabled=enabled)
        self.session.add(model)
        await self.session.flush()
        return model

    async def list_remote_sources(self, enabled_only: bool = False) -> list[RemoteSourceModel]:
        stmt = select(RemoteSourceModel).order_by(RemoteSourceModel.id)
        if enabled_only:
            stmt = stmt.where(RemoteSourceModel.enabled.is_(True))
        return list((await self.session.scalars(stmt)).all())

    async def get_remote_source(self, source_id: int) -> RemoteSourceModel | None:
        return await self.session.get(RemoteSourceModel, source_id)

    async def get_remote_source_by_user(self, user_id: int) -> RemoteSourceModel | None:
        stmt = select(RemoteSourceModel).where(RemoteSourceModel.user_id == user_id)
        return (await self.session.scalars(stmt)).one_or_none()

    async def add_remote_source(self, model: RemoteSourceModel) -> RemoteSourceModel:
        self.session.add(model)
        await self.session.flush()
        return model
