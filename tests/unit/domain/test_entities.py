"""Tests for domain entities."""

from datetime import UTC, datetime, timedelta

import pytest

from tunevault.domain.entities import (
    SpotifyCredentials,
    SyncCommand,
    SyncCommandKind,
    SyncState,
    SyncStatus,
)


class TestSyncCommand:
    """Test SyncCommand validation."""

    @pytest.mark.parametrize("kind", [SyncCommandKind.SYNC_LOCAL, SyncCommandKind.SYNC_REMOTE])
    def test_single_source_kinds_need_id(self, kind: SyncCommandKind) -> None:
        with pytest.raises(ValueError):
            SyncCommand(kind)

    @pytest.mark.parametrize(
        "kind",
        [
            SyncCommandKind.SYNC_ALL,
            SyncCommandKind.SYNC_LOCAL_ALL,
            SyncCommandKind.SYNC_REMOTE_ALL,
            SyncCommandKind.GET_STATUS,
        ],
    )
    def test_other_kinds_reject_id(self, kind: SyncCommandKind) -> None:
        with pytest.raises(ValueError):
            SyncCommand(kind, source_id=1)

    def test_starts_sync(self) -> None:
        assert SyncCommand.sync_local(3).starts_sync
        assert not SyncCommand.get_status().starts_sync
        assert SyncCommand.sync_remote(4).source_id == 4


class TestSyncStatus:
    """Test SyncStatus helpers."""

    def test_constructors(self) -> None:
        assert SyncStatus.idle().state is SyncState.IDLE
        assert SyncStatus.busy("x") == SyncStatus(SyncState.BUSY, progress="x")
        assert SyncStatus.failed("nope").reason == "nope"

    def test_finished_states(self) -> None:
        assert SyncStatus.completed().is_finished
        assert SyncStatus.failed("nope").is_finished
        assert not SyncStatus.busy().is_finished
        assert SyncStatus.busy().is_busy

    def test_state_values_are_strings(self) -> None:
        assert SyncState.COMPLETED.value == "completed"


class TestSpotifyCredentials:
    """Test token bookkeeping."""

    def test_is_expired(self) -> None:
        now = datetime(2030, 1, 1, tzinfo=UTC)
        creds = SpotifyCredentials("a", "r", now)

        assert creds.is_expired(now)
        assert not creds.is_expired(now - timedelta(seconds=1))

    def test_naive_expiry_is_treated_as_utc(self) -> None:
        creds = SpotifyCredentials("a", "r", datetime(2030, 1, 1))

        assert not creds.is_expired(datetime(2029, 12, 31, 23, 59, tzinfo=UTC))

    def test_apply_refresh_keeps_refresh_token_unless_rotated(self) -> None:
        creds = SpotifyCredentials("a", "r", datetime(2000, 1, 1, tzinfo=UTC))

        creds.apply_refresh("a2", 3600)
        assert (creds.access_token, creds.refresh_token) == ("a2", "r")
        assert not creds.is_expired()

        creds.apply_refresh("a3", 3600, "r3")
        assert creds.refresh_token == "r3"

    def test_copy_is_independent(self) -> None:
        creds = SpotifyCredentials("a", "r", datetime(2030, 1, 1, tzinfo=UTC))
        snapshot = creds.copy()

        creds.apply_refresh("changed", 60)

        assert snapshot.access_token == "a"
        assert snapshot != creds
