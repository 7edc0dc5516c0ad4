"""Tests for SyncService: transaction layout, error policy and cancellation."""

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from tunevault.application.services.local_sync_service import LocalSyncService
from tunevault.application.services.sync_service import SyncService
from tunevault.config import Settings
from tunevault.domain.entities import (
    RemoteAlbumRef,
    RemoteArtistRef,
    RemoteTrackRef,
    ScannedTrack,
    SpotifyCredentials,
)
from tunevault.domain.exceptions import (
    ConfigurationError,
    DatabaseQueryFail,
    LocalSyncNonFatal,
    RefreshTokenFail,
    ScanError,
    SourceNotFound,
    SyncCancelled,
    SyncRunFailed,
    TagReadFail,
    UnexpectedStatus,
)
from tunevault.domain.ports import IRemoteCatalogClient, ITagScanner
from tunevault.infrastructure.persistence import (
    AlbumModel,
    Database,
    LocalTrackModel,
    RemoteAlbumSourceModel,
    RemoteSourceModel,
    SourceRepository,
)


class RecordingScanner(ITagScanner):
    """Yields the same items for every directory and remembers what it scanned."""

    def __init__(self, items: list[ScannedTrack | ScanError] | None = None) -> None:
        self.items = items or []
        self.scanned: list[Path] = []

    def scan(self, directory: Path) -> Iterator[ScannedTrack | ScanError]:
        self.scanned.append(directory)
        yield from list(self.items)


class FakeRemoteClient(IRemoteCatalogClient):
    """Answers per access token: albums, or an exception to raise.

    A token listed in ``refresh`` is swapped for the new value first, the way
    SpotifyClient mutates the credentials on a 401.
    """

    def __init__(self) -> None:
        self.responses: dict[str, list[RemoteAlbumRef] | Exception] = {}
        self.refresh: dict[str, str] = {}
        self.calls: list[str] = []

    async def fetch_followed_albums(self, credentials: SpotifyCredentials) -> list[RemoteAlbumRef]:
        self.calls.append(credentials.access_token)
        if credentials.access_token in self.refresh:
            credentials.apply_refresh(
                self.refresh[credentials.access_token], 3600, "rotated-refresh"
            )
        response = self.responses.get(credentials.access_token, [])
        if isinstance(response, Exception):
            raise response
        return response


def record(external_id: str = "R1") -> RemoteAlbumRef:
    band = RemoteArtistRef("artist-1", "Band")
    return RemoteAlbumRef(
        external_id=external_id,
        name=f"Record {external_id}",
        artists=[band],
        tracks=[RemoteTrackRef(f"{external_id}-t1", "Opening", 1, 1, [band])],
    )


def good_track(path: str = "a/01.mp3") -> ScannedTrack:
    return ScannedTrack(
        file_path=path, title="T1", album="A", hash=0xAAAA, track_artists=["X"], album_artists=["X"]
    )


async def add_local(db: Database, directory: Path, enabled: bool = True) -> int:
    directory.mkdir(parents=True, exist_ok=True)
    async with db.session_scope() as session:
        model = await SourceRepository(session).add_local_source(str(directory), enabled=enabled)
        return model.id


async def add_remote(db: Database, user_id: int, access_token: str, enabled: bool = True) -> int:
    async with db.session_scope() as session:
        model = await SourceRepository(session).add_remote_source(
            RemoteSourceModel(
                user_id=user_id,
                enabled=enabled,
                access_token=access_token,
                refresh_token="refresh",
                expiry=datetime(2030, 1, 1, tzinfo=UTC),
            )
        )
        return model.id


async def count(db: Database, model: type) -> int:
    async with db.session_scope() as session:
        return len((await session.scalars(select(model))).all())


async def remote_row(db: Database, source_id: int) -> RemoteSourceModel:
    async with db.session_scope() as session:
        model = await SourceRepository(session).get_remote_source(source_id)
        assert model is not None
        return model


@pytest.fixture
def scanner() -> RecordingScanner:
    return RecordingScanner()


@pytest.fixture
def remote_client() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def service(
    db: Database, scanner: RecordingScanner, remote_client: FakeRemoteClient, settings: Settings
) -> SyncService:
    return SyncService(db=db, scanner=scanner, remote_client=remote_client, settings=settings)


class TestLocalSync:
    """sync_local_all / sync_local."""

    async def test_non_fatal_errors_still_commit(
        self, db: Database, service: SyncService, scanner: RecordingScanner, tmp_path: Path
    ) -> None:
        """Test that a skipped file raises LocalSyncNonFatal after the good file committed."""
        await add_local(db, tmp_path / "music")
        scanner.items = [TagReadFail("bad.mp3", "garbage frame"), good_track()]

        with pytest.raises(LocalSyncNonFatal) as exc_info:
            await service.sync_local_all()

        assert len(exc_info.value.errors) == 1
        assert await count(db, LocalTrackModel) == 1

    async def test_disabled_sources_are_skipped(
        self, db: Database, service: SyncService, scanner: RecordingScanner, tmp_path: Path
    ) -> None:
        """Test that sync_local_all only scans enabled sources."""
        await add_local(db, tmp_path / "on")
        await add_local(db, tmp_path / "off", enabled=False)

        results = await service.sync_local_all()

        assert len(results) == 1
        assert scanner.scanned == [tmp_path / "on"]

    async def test_sync_local_accepts_disabled_source(
        self, db: Database, service: SyncService, scanner: RecordingScanner, tmp_path: Path
    ) -> None:
        """Test that an explicit single-source sync runs regardless of enabled."""
        source_id = await add_local(db, tmp_path / "off", enabled=False)
        scanner.items = [good_track()]

        stats = await service.sync_local(source_id)

        assert stats.inserted == 1

    async def test_unknown_source(self, service: SyncService) -> None:
        """Test that a missing id raises SourceNotFound."""
        with pytest.raises(SourceNotFound):
            await service.sync_local(404)

    async def test_database_error_rolls_back(
        self, db: Database, service: SyncService, tmp_path: Path, mocker
    ) -> None:
        """Test that SQL failures surface as DatabaseQueryFail with nothing committed."""
        await add_local(db, tmp_path / "music")
        mocker.patch.object(
            LocalSyncService,
            "sync_source",
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
        )

        with pytest.raises(DatabaseQueryFail):
            await service.sync_local_all()

        assert await count(db, AlbumModel) == 0

    async def test_progress_reports_each_source(
        self, db: Database, service: SyncService, tmp_path: Path
    ) -> None:
        """Test that the progress callback names every source."""
        first = await add_local(db, tmp_path / "one")
        second = await add_local(db, tmp_path / "two")
        messages: list[str] = []

        await service.sync_local_all(messages.append)

        assert messages == [
            f"local source {first}: {tmp_path / 'one'}",
            f"local source {second}: {tmp_path / 'two'}",
        ]


class TestRemoteSync:
    """sync_remote / sync_remote_all and credential persistence."""

    async def test_refreshed_tokens_are_persisted(
        self, db: Database, service: SyncService, remote_client: FakeRemoteClient
    ) -> None:
        """Test that tokens refreshed during the fetch end up on the source row."""
        source_id = await add_remote(db, 1, "stale")
        remote_client.refresh["stale"] = "fresh"
        remote_client.responses["fresh"] = [record()]

        stats = await service.sync_remote(source_id)

        assert stats.albums == 1
        row = await remote_row(db, source_id)
        assert (row.access_token, row.refresh_token) == ("fresh", "rotated-refresh")

    async def test_refreshed_tokens_survive_fetch_failure(
        self, db: Database, service: SyncService, remote_client: FakeRemoteClient
    ) -> None:
        """Test that a refresh followed by a failing request still stores the new tokens."""
        source_id = await add_remote(db, 1, "stale")
        remote_client.refresh["stale"] = "fresh"
        remote_client.responses["fresh"] = UnexpectedStatus(500, "https://api.test/v1/me")

        with pytest.raises(UnexpectedStatus):
            await service.sync_remote(source_id)

        assert (await remote_row(db, source_id)).access_token == "fresh"
        assert await count(db, RemoteAlbumSourceModel) == 0

    async def test_unknown_remote_source(self, service: SyncService) -> None:
        """Test that a missing remote id raises SourceNotFound."""
        with pytest.raises(SourceNotFound):
            await service.sync_remote(404)

    async def test_one_failing_source_does_not_stop_others(
        self, db: Database, service: SyncService, remote_client: FakeRemoteClient
    ) -> None:
        """Test per-source transactions: the good source commits, the run fails."""
        await add_remote(db, 1, "broken")
        await add_remote(db, 2, "works")
        remote_client.responses["broken"] = RefreshTokenFail(error_code="invalid_grant")
        remote_client.responses["works"] = [record()]

        with pytest.raises(SyncRunFailed) as exc_info:
            await service.sync_remote_all()

        assert [type(e) for e in exc_info.value.errors] == [RefreshTokenFail]
        assert remote_client.calls == ["broken", "works"]
        assert await count(db, RemoteAlbumSourceModel) == 1

    async def test_configuration_error_does_not_stop_others(
        self, db: Database, service: SyncService, remote_client: FakeRemoteClient
    ) -> None:
        """Test that a missing client secret on refresh fails only that source."""
        await add_remote(db, 1, "needs-refresh")
        await add_remote(db, 2, "works")
        remote_client.responses["needs-refresh"] = ConfigurationError(
            "Spotify client_id and client_secret are required"
        )
        remote_client.responses["works"] = [record()]

        with pytest.raises(SyncRunFailed) as exc_info:
            await service.sync_remote_all()

        assert [type(e) for e in exc_info.value.errors] == [ConfigurationError]
        assert remote_client.calls == ["needs-refresh", "works"]
        assert await count(db, RemoteAlbumSourceModel) == 1

    async def test_disabled_remote_sources_are_skipped(
        self, db: Database, service: SyncService, remote_client: FakeRemoteClient
    ) -> None:
        """Test that sync_remote_all ignores disabled accounts."""
        await add_remote(db, 1, "off", enabled=False)
        await add_remote(db, 2, "on")

        results = await service.sync_remote_all()

        assert len(results) == 1
        assert remote_client.calls == ["on"]

    async def test_progress_messages(
        self, db: Database, service: SyncService, remote_client: FakeRemoteClient
    ) -> None:
        """Test fetching/reconciling progress for a remote source."""
        source_id = await add_remote(db, 1, "token")
        remote_client.responses["token"] = [record("R1"), record("R2")]
        messages: list[str] = []

        await service.sync_remote(source_id, messages.append)

        assert messages == [
            f"remote source {source_id}: fetching",
            f"remote source {source_id}: reconciling 2 albums",
        ]


class TestSyncAllAndCancel:
    """Whole-run aggregation and cooperative cancellation."""

    async def test_sync_all_collects_both_parts(
        self,
        db: Database,
        service: SyncService,
        scanner: RecordingScanner,
        remote_client: FakeRemoteClient,
        tmp_path: Path,
    ) -> None:
        """Test that a local failure doesn't stop the remote part and both are reported."""
        await add_local(db, tmp_path / "music")
        scanner.items = [TagReadFail("bad.mp3", "garbage frame")]
        await add_remote(db, 1, "broken")
        await add_remote(db, 2, "works")
        remote_client.responses["broken"] = UnexpectedStatus(503, "https://api.test/v1/me")
        remote_client.responses["works"] = [record()]

        with pytest.raises(SyncRunFailed) as exc_info:
            await service.sync_all()

        assert [type(e) for e in exc_info.value.errors] == [LocalSyncNonFatal, UnexpectedStatus]
        assert await count(db, RemoteAlbumSourceModel) == 1

    async def test_sync_all_success(
        self,
        db: Database,
        service: SyncService,
        scanner: RecordingScanner,
        remote_client: FakeRemoteClient,
        tmp_path: Path,
    ) -> None:
        """Test that a clean run returns without raising."""
        await add_local(db, tmp_path / "music")
        scanner.items = [good_track()]
        await add_remote(db, 1, "works")
        remote_client.responses["works"] = [record()]

        await service.sync_all()

        assert await count(db, AlbumModel) == 2

    async def test_cancel_before_local(
        self, db: Database, service: SyncService, scanner: RecordingScanner, tmp_path: Path
    ) -> None:
        """Test that a pending cancel stops the run before the transaction opens."""
        await add_local(db, tmp_path / "music")
        service.request_cancel()

        with pytest.raises(SyncCancelled):
            await service.sync_all()

        assert scanner.scanned == []

    async def test_cancel_between_remote_sources(
        self, db: Database, service: SyncService, remote_client: FakeRemoteClient
    ) -> None:
        """Test that cancel is observed at the next source boundary."""
        await add_remote(db, 1, "first")
        await add_remote(db, 2, "second")

        original = remote_client.fetch_followed_albums

        async def fetch_then_cancel(credentials: SpotifyCredentials) -> list[RemoteAlbumRef]:
            albums = await original(credentials)
            service.request_cancel()
            return albums

        remote_client.fetch_followed_albums = fetch_then_cancel  # type: ignore[method-assign]

        with pytest.raises(SyncCancelled):
            await service.sync_remote_all()

        assert remote_client.calls == ["first"]

    async def test_cancel_flag_is_consumed(
        self, db: Database, service: SyncService, tmp_path: Path
    ) -> None:
        """Test that the next run after a cancellation proceeds normally."""
        await add_local(db, tmp_path / "music")
        service.request_cancel()
        with pytest.raises(SyncCancelled):
            await service.sync_local_all()

        results = await service.sync_local_all()

        assert len(results) == 1

    async def test_clear_cancel_drops_unconsumed_request(
        self, db: Database, service: SyncService, tmp_path: Path
    ) -> None:
        """Test that a cleared cancel request doesn't fail the following run."""
        await add_local(db, tmp_path / "music")
        service.request_cancel()
        service.clear_cancel()

        results = await service.sync_local_all()

        assert len(results) == 1
