"""Domain entities."""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum


# Hey future me, ScannedTrack is what the tag scanner hands to the reconciler - one per
# .mp3 file. file_path is RELATIVE to the source directory and always uses "/" so the same
# library scanned on Windows and Linux produces identical rows. hash is the CRC32 of the
# audio payload ONLY (tags stripped) - that's what makes move detection survive tag edits.
# Artist lists have at most one element today (single-valued ID3 frames) but stay lists so
# multi-artist support doesn't need a schema change.
@dataclass(frozen=True)
class ScannedTrack:
    """Tag metadata and content hash of one audio file."""

    file_path: str
    title: str
    album: str
    hash: int
    disc_number: int | None = None
    disc_total: int | None = None
    track_number: int | None = None
    track_total: int | None = None
    track_artists: list[str] = field(default_factory=list)
    album_artists: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RemoteArtistRef:
    """Artist as referenced by the remote catalog."""

    external_id: str
    name: str


@dataclass(frozen=True)
class RemoteTrackRef:
    """Track entry of a remote album."""

    external_id: str
    title: str
    disc_number: int | None = None
    track_number: int | None = None
    artists: list[RemoteArtistRef] = field(default_factory=list)


# Yo, RemoteAlbumRef is the full tree the fetcher produces for ONE album: the album itself,
# its artists and every track (with the track's own artists). The reconciler never talks to
# the API - it only sees these.
@dataclass(frozen=True)
class RemoteAlbumRef:
    """Album with its artists and full track list from the remote catalog."""

    external_id: str
    name: str
    artists: list[RemoteArtistRef] = field(default_factory=list)
    tracks: list[RemoteTrackRef] = field(default_factory=list)


# Listen up, SpotifyCredentials is SHARED MUTABLE STATE on purpose. The Spotify client
# mutates it in place when it refreshes the access token, and the remote sync writes it back
# to the remote_source row at the end of that source's transaction if it differs from the
# snapshot taken before fetching. Always hand the client a copy() of what's in the DB.
@dataclass
class SpotifyCredentials:
    """OAuth tokens of one remote source."""

    access_token: str
    refresh_token: str
    expiry: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check whether the access token has expired."""
        now = now or datetime.now(UTC)
        expiry = self.expiry if self.expiry.tzinfo else self.expiry.replace(tzinfo=UTC)
        return expiry <= now

    def apply_refresh(
        self, access_token: str, expires_in: int, refresh_token: str | None = None
    ) -> None:
        """Store a freshly issued access token (and rotated refresh token, if any)."""
        self.access_token = access_token
        self.expiry = datetime.now(UTC) + timedelta(seconds=expires_in)
        if refresh_token:
            self.refresh_token = refresh_token

    def copy(self) -> "SpotifyCredentials":
        """Return an independent copy."""
        return replace(self)


@dataclass(frozen=True)
class SpotifyUser:
    """Profile of the authorized Spotify user."""

    id: str
    display_name: str | None = None


@dataclass(frozen=True)
class PlaybackDevice:
    """A Spotify Connect device."""

    id: str | None
    name: str
    is_active: bool = False


@dataclass(frozen=True)
class LocalSource:
    """A watched directory."""

    id: int
    enabled: bool
    directory: str


@dataclass(frozen=True)
class RemoteSource:
    """A linked streaming account (tokens are deliberately not exposed here)."""

    id: int
    enabled: bool
    user_id: int
    expiry: datetime


# Hey future me, SyncState is the coordinator's state machine. COMPLETED/FAILED are
# "report once" states: the first GetStatus after the task ends sees them, the one after that
# sees IDLE again. Stored/compared as strings so logs and JSON stay readable.
class SyncState(str, Enum):
    """State of the sync coordinator."""

    IDLE = "idle"
    BUSY = "busy"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of the coordinator state returned to callers."""

    state: SyncState
    progress: str | None = None
    reason: str | None = None

    @classmethod
    def idle(cls) -> "SyncStatus":
        return cls(SyncState.IDLE)

    @classmethod
    def busy(cls, progress: str | None = None) -> "SyncStatus":
        return cls(SyncState.BUSY, progress=progress)

    @classmethod
    def completed(cls) -> "SyncStatus":
        return cls(SyncState.COMPLETED)

    @classmethod
    def failed(cls, reason: str) -> "SyncStatus":
        return cls(SyncState.FAILED, reason=reason)

    @property
    def is_busy(self) -> bool:
        return self.state is SyncState.BUSY

    @property
    def is_finished(self) -> bool:
        return self.state in (SyncState.COMPLETED, SyncState.FAILED)


class SyncCommandKind(str, Enum):
    """Requests understood by the sync coordinator."""

    SYNC_ALL = "sync_all"
    SYNC_LOCAL_ALL = "sync_local_all"
    SYNC_LOCAL = "sync_local"
    SYNC_REMOTE_ALL = "sync_remote_all"
    SYNC_REMOTE = "sync_remote"
    GET_STATUS = "get_status"


@dataclass(frozen=True)
class SyncCommand:
    """A coordinator request. source_id is only set for the single-source kinds."""

    kind: SyncCommandKind
    source_id: int | None = None

    def __post_init__(self) -> None:
        needs_id = self.kind in (SyncCommandKind.SYNC_LOCAL, SyncCommandKind.SYNC_REMOTE)
        if needs_id and self.source_id is None:
            raise ValueError(f"{self.kind.value} requires a source_id")
        if not needs_id and self.source_id is not None:
            raise ValueError(f"{self.kind.value} does not take a source_id")

    @property
    def starts_sync(self) -> bool:
        return self.kind is not SyncCommandKind.GET_STATUS

    @classmethod
    def sync_all(cls) -> "SyncCommand":
        return cls(SyncCommandKind.SYNC_ALL)

    @classmethod
    def sync_local_all(cls) -> "SyncCommand":
        return cls(SyncCommandKind.SYNC_LOCAL_ALL)

    @classmethod
    def sync_local(cls, source_id: int) -> "SyncCommand":
        return cls(SyncCommandKind.SYNC_LOCAL, source_id)

    @classmethod
    def sync_remote_all(cls) -> "SyncCommand":
        return cls(SyncCommandKind.SYNC_REMOTE_ALL)

    @classmethod
    def sync_remote(cls, source_id: int) -> "SyncCommand":
        return cls(SyncCommandKind.SYNC_REMOTE, source_id)

    @classmethod
    def get_status(cls) -> "SyncCommand":
        return cls(SyncCommandKind.GET_STATUS)


__all__ = [
    "ScannedTrack",
    "RemoteArtistRef",
    "RemoteTrackRef",
    "RemoteAlbumRef",
    "SpotifyCredentials",
    "SpotifyUser",
    "PlaybackDevice",
    "LocalSource",
    "RemoteSource",
    "SyncState",
    "SyncStatus",
    "SyncCommandKind",
    "SyncCommand",
]
