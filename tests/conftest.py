"""Shared fixtures: settings, a fresh SQLite database per test, mp3 file builders.

Hey future me - the database is a FILE under tmp_path, not :memory:. aiosqlite opens a new
connection per pooled checkout and every :memory: connection is its own empty database,
so tables created in one session would be invisible in the next.
"""

import zlib
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
from mutagen.id3 import ID3, TALB, TIT2, TPE1, TPE2, TPOS, TRCK

from tunevault.config import Settings
from tunevault.infrastructure.persistence import Database

Mp3Writer = Callable[..., int]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway database and a fake Spotify app."""
    return Settings(
        database={"url": f"sqlite+aiosqlite:///{tmp_path / 'tunevault-test.db'}"},
        spotify={
            "client_id": "test-client-id",
            "client_secret": "test-client-secret",
            "accounts_base_url": "https://accounts.test/",
            "api_base_url": "https://api.test/v1/",
        },
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    """Database with all tables created."""
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def music_dir(tmp_path: Path) -> Path:
    """Empty directory acting as a local source root."""
    path = tmp_path / "music"
    path.mkdir()
    return path


def audio_payload(seed: str, size: int = 4096) -> bytes:
    """Deterministic fake MPEG frames (never contains an ID3 or TAG marker)."""
    unit = b"\xff\xfb\x90\x64" + seed.encode()
    return (unit * (size // len(unit) + 1))[:size]


@pytest.fixture
def make_payload() -> Callable[..., bytes]:
    """Expose audio_payload() to tests that assemble files by hand."""
    return audio_payload


@pytest.fixture
def write_mp3() -> Mp3Writer:
    """Factory writing an ID3v2 tagged mp3; returns the expected payload CRC32."""

    def _write(
        path: Path,
        seed: str,
        *,
        title: str | None = None,
        album: str | None = None,
        artist: str | None = None,
        album_artist: str | None = None,
        track: str | None = None,
        disc: str | None = None,
    ) -> int:
        payload = audio_payload(seed)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)

        tags = ID3()
        for frame_cls, value in (
            (TIT2, title),
            (TALB, album),
            (TPE1, artist),
            (TPE2, album_artist),
            (TRCK, track),
            (TPOS, disc),
        ):
            if value is not None:
                tags.add(frame_cls(encoding=3, text=value))
        tags.save(path)
        return zlib.crc32(payload) & 0xFFFFFFFF

    return _write


@pytest.fixture
def id3v1_block() -> Callable[..., bytes]:
    """Factory for a raw 128-byte ID3v1.1 tag."""

    def _block(title: str, artist: str, album: str, track: int = 0) -> bytes:
        def field(value: str, size: int) -> bytes:
            return value.encode("latin-1")[:size].ljust(size, b"\x00")

        return (
            b"TAG"
            + field(title, 30)
            + field(artist, 30)
            + field(album, 30)
            + b"2024"
            + field("", 28)
            + b"\x00"
            + bytes([track])
            + b"\xff"
        )

    return _block
