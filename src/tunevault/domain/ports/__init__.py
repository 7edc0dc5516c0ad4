"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path

from tunevault.domain.entities import RemoteAlbumRef, ScannedTrack, SpotifyCredentials
from tunevault.domain.exceptions import ScanError


# Hey future me, ITagScanner is the PORT the local sync depends on. The real implementation
# (mutagen-based) lives in the application services; tests can swap in a fake that yields
# hand-built ScannedTracks without touching the filesystem. scan() is a LAZY generator and
# is SYNCHRONOUS - the caller runs it in a worker thread.
class ITagScanner(ABC):
    """Walks a directory and yields scanned tracks or per-file errors."""

    @abstractmethod
    def scan(self, directory: Path) -> Iterator[ScannedTrack | ScanError]:
        """Scan ``directory`` recursively.

        Yields at most one item per regular file. Errors are yielded, never raised.
        """


# Yo, IRemoteCatalogClient is what the remote sync needs from Spotify - nothing more. The
# credentials object is mutated in place when the token gets refreshed, so the caller can
# compare it against its snapshot afterwards and persist the change.
class IRemoteCatalogClient(ABC):
    """Fetches the album catalog a remote account follows."""

    @abstractmethod
    async def fetch_followed_albums(
        self, credentials: SpotifyCredentials
    ) -> list[RemoteAlbumRef]:
        """Fetch every album (with tracks) of every followed artist."""


__all__ = ["ITagScanner", "IRemoteCatalogClient"]
