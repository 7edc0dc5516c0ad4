"""Tests for the remote sync pipeline (fetched album trees -> catalog rows)."""

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import select

from tunevault.application.services.remote_sync_service import RemoteSyncService, RemoteSyncStats
from tunevault.domain.entities import (
    RemoteAlbumRef,
    RemoteArtistRef,
    RemoteTrackRef,
    SpotifyCredentials,
)
from tunevault.domain.exceptions import MultipleTracksSameAlbumAndTitle
from tunevault.infrastructure.persistence import (
    AlbumArtistModel,
    AlbumModel,
    ArtistModel,
    CatalogRepository,
    Database,
    RemoteAlbumModel,
    RemoteAlbumSourceModel,
    RemoteArtistModel,
    RemoteArtistSourceModel,
    RemoteSourceModel,
    RemoteTrackModel,
    RemoteTrackSourceModel,
    SourceRepository,
    TrackArtistModel,
    TrackModel,
)

BAND = RemoteArtistRef(external_id="artist-1", name="Band")


def album_ref(
    external_id: str = "R1",
    name: str = "Record",
    tracks: list[RemoteTrackRef] | None = None,
    artists: list[RemoteArtistRef] | None = None,
) -> RemoteAlbumRef:
    if tracks is None:
        tracks = [RemoteTrackRef("t1", "Opening", 1, 1, [BAND])]
    return RemoteAlbumRef(
        external_id=external_id,
        name=name,
        artists=[BAND] if artists is None else artists,
        tracks=tracks,
    )


async def all_rows(db: Database, model: type) -> list[Any]:
    async with db.session_scope() as session:
        return list((await session.scalars(select(model))).all())


async def make_remote_source(db: Database, user_id: int = 1) -> int:
    async with db.session_scope() as session:
        model = await SourceRepository(session).add_remote_source(
            RemoteSourceModel(
                user_id=user_id,
                enabled=True,
                access_token="access",
                refresh_token="refresh",
                expiry=datetime(2030, 1, 1, tzinfo=UTC),
            )
        )
        return model.id


async def run_sync(db: Database, source_id: int, albums: list[RemoteAlbumRef]) -> RemoteSyncStats:
    async with db.session_scope() as session:
        return await RemoteSyncService(session).sync_albums(source_id, albums)


@pytest.fixture
async def source_id(db: Database) -> int:
    return await make_remote_source(db)


class TestRemoteSyncAlbums:
    """Album/track/artist identity through remote_* mappings."""

    async def test_first_sync_creates_catalog_and_mappings(self, db: Database, source_id: int) -> None:
        """Test that one album tree creates canonical rows, mappings and associations."""
        stats = await run_sync(db, source_id, [album_ref()])

        assert (stats.albums, stats.tracks, stats.artists) == (1, 1, 1)
        [album] = await all_rows(db, AlbumModel)
        [track] = await all_rows(db, TrackModel)
        [artist] = await all_rows(db, ArtistModel)
        assert album.name == "Record"
        assert (track.album_id, track.title, track.disc_number, track.track_number) == (
            album.id,
            "Opening",
            1,
            1,
        )
        assert artist.name == "Band"
        assert [(m.album_id, m.remote_id) for m in await all_rows(db, RemoteAlbumModel)] == [
            (album.id, "R1")
        ]
        assert [(m.track_id, m.remote_id) for m in await all_rows(db, RemoteTrackModel)] == [
            (track.id, "t1")
        ]
        assert [(m.artist_id, m.remote_id) for m in await all_rows(db, RemoteArtistModel)] == [
            (artist.id, "artist-1")
        ]
        assert len(await all_rows(db, RemoteAlbumSourceModel)) == 1
        assert len(await all_rows(db, RemoteTrackSourceModel)) == 1
        assert len(await all_rows(db, RemoteArtistSourceModel)) == 1
        assert len(await all_rows(db, AlbumArtistModel)) == 1
        assert len(await all_rows(db, TrackArtistModel)) == 1

    async def test_resync_reuses_mappings(self, db: Database, source_id: int) -> None:
        """Test that syncing the same tree twice creates nothing new."""
        await run_sync(db, source_id, [album_ref()])
        await run_sync(db, source_id, [album_ref()])

        assert len(await all_rows(db, AlbumModel)) == 1
        assert len(await all_rows(db, TrackModel)) == 1
        assert len(await all_rows(db, ArtistModel)) == 1
        assert len(await all_rows(db, RemoteAlbumSourceModel)) == 1

    async def test_mapped_album_follows_rename(self, db: Database, source_id: int) -> None:
        """Test that an album found by external id keeps its row and takes the new name."""
        await run_sync(db, source_id, [album_ref()])
        [before] = await all_rows(db, AlbumModel)
        await run_sync(db, source_id, [album_ref(name="Record (Remastered)")])

        [album] = await all_rows(db, AlbumModel)
        assert album.id == before.id
        assert album.name == "Record (Remastered)"

    async def test_mapped_artist_follows_rename(self, db: Database, source_id: int) -> None:
        """Test that an artist found by external id takes the remote name."""
        await run_sync(db, source_id, [album_ref()])
        [before] = await all_rows(db, ArtistModel)
        renamed = RemoteArtistRef(external_id=BAND.external_id, name="The Band")
        tracks = [RemoteTrackRef("t1", "Opening", 1, 1, [renamed])]
        await run_sync(db, source_id, [album_ref(artists=[renamed], tracks=tracks)])

        [artist] = await all_rows(db, ArtistModel)
        assert (artist.id, artist.name) == (before.id, "The Band")

    async def test_links_album_created_by_local_sync(self, db: Database, source_id: int) -> None:
        """Test that an unmapped remote album attaches to the album of the same name."""
        async with db.session_scope() as session:
            existing = await CatalogRepository(session).insert_album("Record")

        await run_sync(db, source_id, [album_ref()])

        [album] = await all_rows(db, AlbumModel)
        assert album.id == existing.id
        [mapping] = await all_rows(db, RemoteAlbumModel)
        assert mapping.album_id == existing.id

    async def test_ambiguous_name_links_unmapped_album(self, db: Database, source_id: int) -> None:
        """Test that among same-named albums the one without a mapping is chosen."""
        await run_sync(db, source_id, [album_ref(external_id="R-old", tracks=[])])
        async with db.session_scope() as session:
            unmapped = await CatalogRepository(session).insert_album("Record")

        stats = await run_sync(
            db, source_id, [album_ref(external_id="R-old", tracks=[]), album_ref(external_id="R-new")]
        )

        mappings = {m.remote_id: m.album_id for m in await all_rows(db, RemoteAlbumModel)}
        assert mappings["R-new"] == unmapped.id
        assert mappings["R-old"] != unmapped.id
        assert stats.ambiguous == ["album 'Record'"]

    async def test_all_candidates_mapped_creates_new_album(
        self, db: Database, source_id: int
    ) -> None:
        """Test that a second remote album with a taken name gets its own row."""
        await run_sync(db, source_id, [album_ref(external_id="R1", tracks=[])])
        await run_sync(
            db, source_id, [album_ref(external_id="R1", tracks=[]), album_ref(external_id="R2")]
        )

        albums = await all_rows(db, AlbumModel)
        assert [a.name for a in albums] == ["Record", "Record"]
        mappings = {m.remote_id: m.album_id for m in await all_rows(db, RemoteAlbumModel)}
        assert mappings["R1"] != mappings["R2"]

    async def test_artist_links_to_existing_name(self, db: Database, source_id: int) -> None:
        """Test that a remote artist reuses an artist row local sync created."""
        async with db.session_scope() as session:
            existing = await CatalogRepository(session).insert_artist("Band")

        await run_sync(db, source_id, [album_ref()])

        [artist] = await all_rows(db, ArtistModel)
        assert artist.id == existing.id
        [mapping] = await all_rows(db, RemoteArtistModel)
        assert mapping.artist_id == existing.id


class TestRemoteSyncTracks:
    """Track updates and lookups."""

    async def test_mapped_track_is_updated_in_place(self, db: Database, source_id: int) -> None:
        """Test that changed title and numbering update the mapped track."""
        await run_sync(db, source_id, [album_ref()])
        [before] = await all_rows(db, TrackModel)

        await run_sync(
            db,
            source_id,
            [album_ref(tracks=[RemoteTrackRef("t1", "Opening (Live)", 2, 5, [BAND])])],
        )

        [after] = await all_rows(db, TrackModel)
        assert after.id == before.id
        assert (after.title, after.disc_number, after.track_number) == ("Opening (Live)", 2, 5)

    async def test_unmapped_track_links_to_local_track(self, db: Database, source_id: int) -> None:
        """Test that a remote track finds a track with the same album, title and numbering."""
        async with db.session_scope() as session:
            repo = CatalogRepository(session)
            album = await repo.insert_album("Record")
            local = await repo.insert_track(
                TrackModel(album_id=album.id, title="Opening", disc_number=1, track_number=1)
            )

        await run_sync(db, source_id, [album_ref()])

        [track] = await all_rows(db, TrackModel)
        assert track.id == local.id
        [mapping] = await all_rows(db, RemoteTrackModel)
        assert mapping.track_id == local.id

    async def test_duplicate_tracks_fail_the_source(self, db: Database, source_id: int) -> None:
        """Test that two matching tracks raise MultipleTracksSameAlbumAndTitle."""
        async with db.session_scope() as session:
            repo = CatalogRepository(session)
            album = await repo.insert_album("Record")
            for _ in range(2):
                await repo.insert_track(
                    TrackModel(album_id=album.id, title="Opening", disc_number=1, track_number=1)
                )

        with pytest.raises(MultipleTracksSameAlbumAndTitle):
            await run_sync(db, source_id, [album_ref()])

        assert await all_rows(db, RemoteAlbumModel) == []


class TestRemoteAssociationCleanup:
    """Association rows follow what the account currently follows."""

    async def test_vanished_album_loses_associations_only(
        self, db: Database, source_id: int
    ) -> None:
        """Test that an album gone from the fetch drops its *_source rows, nothing else."""
        await run_sync(db, source_id, [album_ref()])

        stats = await run_sync(db, source_id, [])

        assert (stats.removed_albums, stats.removed_tracks, stats.removed_artists) == (1, 1, 1)
        assert await all_rows(db, RemoteAlbumSourceModel) == []
        assert await all_rows(db, RemoteTrackSourceModel) == []
        assert await all_rows(db, RemoteArtistSourceModel) == []
        assert len(await all_rows(db, AlbumModel)) == 1
        assert len(await all_rows(db, TrackModel)) == 1
        assert len(await all_rows(db, RemoteAlbumModel)) == 1
        assert len(await all_rows(db, RemoteTrackModel)) == 1

    async def test_refollow_reuses_canonical_rows(self, db: Database, source_id: int) -> None:
        """Test that following an album again restores associations to the same ids."""
        await run_sync(db, source_id, [album_ref()])
        [album] = await all_rows(db, AlbumModel)
        await run_sync(db, source_id, [])

        await run_sync(db, source_id, [album_ref()])

        [association] = await all_rows(db, RemoteAlbumSourceModel)
        assert association.album_id == album.id
        assert len(await all_rows(db, AlbumModel)) == 1

    async def test_cleanup_is_scoped_to_one_source(self, db: Database, source_id: int) -> None:
        """Test that another account's associations are untouched."""
        other_id = await make_remote_source(db, user_id=2)
        await run_sync(db, source_id, [album_ref()])
        await run_sync(db, other_id, [album_ref()])

        await run_sync(db, source_id, [])

        rows = await all_rows(db, RemoteAlbumSourceModel)
        assert [r.remote_source_id for r in rows] == [other_id]

    async def test_dropped_track_keeps_album_association(
        self, db: Database, source_id: int
    ) -> None:
        """Test that only the vanished track's association goes."""
        tracks = [
            RemoteTrackRef("t1", "Opening", 1, 1, [BAND]),
            RemoteTrackRef("t2", "Closing", 1, 2, [BAND]),
        ]
        await run_sync(db, source_id, [album_ref(tracks=tracks)])

        stats = await run_sync(db, source_id, [album_ref(tracks=tracks[:1])])

        assert stats.removed_tracks == 1
        assert stats.removed_albums == 0
        assert len(await all_rows(db, RemoteTrackSourceModel)) == 1
        assert len(await all_rows(db, RemoteAlbumSourceModel)) == 1


class TestStoreCredentials:
    """Writing refreshed tokens back onto the source row."""

    def make_model(self, expiry: datetime) -> RemoteSourceModel:
        return RemoteSourceModel(
            user_id=1, enabled=True, access_token="a", refresh_token="r", expiry=expiry
        )

    def test_unchanged_credentials(self) -> None:
        """Test that identical tokens (naive stored expiry) report no change."""
        expiry = datetime(2030, 1, 1, tzinfo=UTC)
        model = self.make_model(expiry.replace(tzinfo=None))

        changed = RemoteSyncService.store_credentials(model, SpotifyCredentials("a", "r", expiry))

        assert changed is False

    def test_refreshed_credentials(self) -> None:
        """Test that a new access token and expiry are copied onto the row."""
        model = self.make_model(datetime(2030, 1, 1, tzinfo=UTC))
        new_expiry = datetime(2030, 1, 1, tzinfo=UTC) + timedelta(hours=1)

        changed = RemoteSyncService.store_credentials(
            model, SpotifyCredentials("a2", "r2", new_expiry)
        )

        assert changed is True
        assert (model.access_token, model.refresh_token, model.expiry) == ("a2", "r2", new_expiry)
