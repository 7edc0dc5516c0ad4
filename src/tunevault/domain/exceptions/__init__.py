"""Domain exceptions."""

from typing import Any


class TunevaultError(Exception):
    """Base exception for all tunevault errors."""

    # Hey future me, message is stored as an attribute so handlers (coordinator, logs) can read
    # it without parsing str(exc). Never raise this directly - pick a subclass so callers can
    # tell a per-file hiccup from a transaction-killing failure.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class ConfigurationError(TunevaultError):
    """Application misconfiguration.

    Example:
        raise ConfigurationError("Spotify client credentials not configured")
    """

    pass


# =============================================================================
# Scanner errors
# These are PER-FILE. The scanner yields them instead of raising so one broken file
# never stops the walk; sync collects them as non-fatal.
# =============================================================================


class ScanError(TunevaultError):
    """A single file could not be turned into a scanned track."""

    def __init__(self, file_path: str, message: str) -> None:
        super().__init__(f"{file_path}: {message}")
        self.file_path = file_path


class TagMissingRequiredField(ScanError):
    """The ID3 tag lacks a title or album."""

    def __init__(self, file_path: str, field: str) -> None:
        super().__init__(file_path, f"tag has no {field}")
        self.field = field


class TagReadFail(ScanError):
    """The tag is present but could not be parsed."""

    pass


class FileIoFail(ScanError):
    """Reading the file failed at the OS level."""

    pass


# =============================================================================
# Reconciler errors
# =============================================================================


class SyncError(TunevaultError):
    """Base class for reconciliation failures."""

    pass


class HashCollision(SyncError):
    """Several local tracks of one source share the audio hash of a scanned file.

    Move detection cannot decide which row the file belongs to, so the scanned
    track is skipped and the existing rows are left untouched.
    """

    def __init__(self, file_path: str, hash_value: int, colliding_paths: list[str | None]) -> None:
        super().__init__(
            f"{file_path}: {len(colliding_paths)} local tracks already have hash "
            f"{hash_value:#010x} ({', '.join(str(p) for p in colliding_paths)})"
        )
        self.file_path = file_path
        self.hash_value = hash_value
        self.colliding_paths = colliding_paths


class MultipleAlbumsSameName(SyncError):
    """More than one canonical album carries the same name."""

    def __init__(self, name: str, album_ids: list[int]) -> None:
        super().__init__(f"Multiple albums named {name!r}: ids {album_ids}")
        self.name = name
        self.album_ids = album_ids


class MultipleArtistsSameName(SyncError):
    """More than one canonical artist carries the same name."""

    def __init__(self, name: str, artist_ids: list[int]) -> None:
        super().__init__(f"Multiple artists named {name!r}: ids {artist_ids}")
        self.name = name
        self.artist_ids = artist_ids


class MultipleTracksSameAlbumAndTitle(SyncError):
    """Track lookup by album, title and numbering matched more than one row."""

    def __init__(self, album_id: int, title: str, track_ids: list[int]) -> None:
        super().__init__(
            f"Multiple tracks titled {title!r} on album {album_id}: ids {track_ids}"
        )
        self.album_id = album_id
        self.title = title
        self.track_ids = track_ids


class DatabaseQueryFail(SyncError):
    """A database statement failed; the surrounding transaction is rolled back."""

    pass


class SourceNotFound(SyncError):
    """A local or remote source id does not exist."""

    def __init__(self, source_kind: str, source_id: int) -> None:
        super().__init__(f"{source_kind} source {source_id} not found")
        self.source_kind = source_kind
        self.source_id = source_id


class LocalSyncNonFatal(SyncError):
    """Local sync committed, but some files or tracks were skipped."""

    def __init__(self, errors: list[TunevaultError]) -> None:
        super().__init__(f"Local sync finished with {len(errors)} non-fatal error(s)")
        self.errors = errors


class SyncCancelled(SyncError):
    """A cancel request was observed between two source transactions."""

    pass


class SyncRunFailed(SyncError):
    """A sync run touching several sources collected one or more failures."""

    def __init__(self, errors: list[TunevaultError]) -> None:
        summary = "; ".join(e.message for e in errors[:5])
        if len(errors) > 5:
            summary += f"; and {len(errors) - 5} more"
        super().__init__(f"Sync failed: {summary}")
        self.errors = errors


# =============================================================================
# Remote API errors
# =============================================================================


class RemoteApiError(TunevaultError):
    """Base class for remote catalog API failures."""

    pass


class UnexpectedStatus(RemoteApiError):
    """The API answered with a status the caller cannot handle."""

    # Yo, message is the server's own {"error": {"message": ...}} text when the body had one.
    # It's None for bodies that don't decode (HTML error pages from a proxy, empty 502s).
    # reason is only sent by the player endpoints (e.g. "PREMIUM_REQUIRED").
    def __init__(
        self,
        status_code: int,
        url: str,
        message: str | None = None,
        reason: str | None = None,
    ) -> None:
        detail = f": {message}" if message else ""
        super().__init__(f"Unexpected status {status_code} from {url}{detail}")
        self.status_code = status_code
        self.url = url
        self.server_message = message
        self.reason = reason


class RetryExhausted(RemoteApiError):
    """A 401 or 429 kept coming back after all retries."""

    def __init__(self, status_code: int, url: str, attempts: int) -> None:
        super().__init__(
            f"Giving up on {url} after {attempts} attempt(s), last status {status_code}"
        )
        self.status_code = status_code
        self.url = url
        self.attempts = attempts


class CannotRetry(RemoteApiError):
    """A retry was needed but the request body cannot be replayed."""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"Cannot replay request to {url} after status {status_code}")
        self.status_code = status_code
        self.url = url


class RefreshTokenFail(RemoteApiError):
    """The access token could not be refreshed; the user must re-authorize."""

    def __init__(
        self,
        message: str = "Token refresh failed. Please re-authenticate with Spotify.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code  # e.g., "invalid_grant"
        self.http_status = http_status


class PlayFail(RemoteApiError):
    """Starting playback on a device failed."""

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(f"{message} ({reason})" if reason else message)
        self.reason = reason


__all__ = [
    # Base
    "TunevaultError",
    "ConfigurationError",
    # Scanner
    "ScanError",
    "TagMissingRequiredField",
    "TagReadFail",
    "FileIoFail",
    # Reconciler
    "SyncError",
    "HashCollision",
    "MultipleAlbumsSameName",
    "MultipleArtistsSameName",
    "MultipleTracksSameAlbumAndTitle",
    "DatabaseQueryFail",
    "SourceNotFound",
    "LocalSyncNonFatal",
    "SyncCancelled",
    "SyncRunFailed",
    # Remote
    "RemoteApiError",
    "UnexpectedStatus",
    "RetryExhausted",
    "CannotRetry",
    "RefreshTokenFail",
    "PlayFail",
]
