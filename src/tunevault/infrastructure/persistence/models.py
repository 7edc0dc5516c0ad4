"""SQLAlchemy ORM models for the tunevault catalog."""

from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! Token expiry comes back "naive" from
# SQLite, so attach UTC before comparing with datetime.now(UTC) or you get a TypeError.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Canonical catalog
# Album/Track/Artist rows are created on first observation and NEVER hard-deleted by sync.
# Ids are plain autoincrement integers; a flush() after add() hands back the new id.
# =============================================================================


class AlbumModel(Base):
    """Canonical album."""

    __tablename__ = "album"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)


# Listen up, album_id is NOT NULL and the FK has no cascade: a track can never lose its album,
# and since sync never deletes albums that's all the protection we need.
class TrackModel(Base):
    """Canonical track, belongs to exactly one album."""

    __tablename__ = "track"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    album_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("album.id"), nullable=False, index=True
    )
    disc_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    disc_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    track_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    track_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("ix_track_album_title", "album_id", "title"),)


class ArtistModel(Base):
    """Canonical artist."""

    __tablename__ = "artist"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)


class AlbumArtistModel(Base):
    """Album to artist link."""

    __tablename__ = "album_artist"

    album_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("album.id", ondelete="CASCADE"), primary_key=True
    )
    artist_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("artist.id", ondelete="CASCADE"), primary_key=True
    )


class TrackArtistModel(Base):
    """Track to artist link."""

    __tablename__ = "track_artist"

    track_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("track.id", ondelete="CASCADE"), primary_key=True
    )
    artist_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("artist.id", ondelete="CASCADE"), primary_key=True
    )


# =============================================================================
# Sources
# =============================================================================


class LocalSourceModel(Base):
    """A watched directory."""

    __tablename__ = "local_source"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    directory: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


# Hey future me, the token columns are OPAQUE to the reconciler - only the Spotify client
# reads them (through SpotifyCredentials). expiry is stored timezone-aware UTC but SQLite
# drops the tz, so always go through ensure_utc_aware() when reading it back.
class RemoteSourceModel(Base):
    """A linked Spotify account."""

    __tablename__ = "remote_source"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    expiry: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)


# =============================================================================
# Local associations
# =============================================================================


class LocalAlbumModel(Base):
    """Marks an album as observed in a local source."""

    __tablename__ = "local_album"

    album_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("album.id", ondelete="CASCADE"), primary_key=True
    )
    local_source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("local_source.id", ondelete="CASCADE"), primary_key=True
    )


# Yo, LocalTrack is where move/replace detection lives. file_path=NULL means "seen before,
# currently missing" (soft-removed). The unique index only bites on non-null paths because
# SQLite treats NULLs as distinct - so any number of removed rows can coexist. hash is a u32
# CRC stored in a BigInteger, compared by plain equality.
class LocalTrackModel(Base):
    """A track file inside a local source."""

    __tablename__ = "local_track"

    track_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("track.id", ondelete="CASCADE"), primary_key=True
    )
    local_source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("local_source.id", ondelete="CASCADE"), primary_key=True
    )
    file_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    hash: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index(
            "ux_local_track_source_path", "local_source_id", "file_path", unique=True
        ),
        Index("ix_local_track_source_hash", "local_source_id", "hash"),
    )


class LocalArtistModel(Base):
    """Marks an artist as observed in a local source."""

    __tablename__ = "local_artist"

    artist_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("artist.id", ondelete="CASCADE"), primary_key=True
    )
    local_source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("local_source.id", ondelete="CASCADE"), primary_key=True
    )


# =============================================================================
# Remote mappings (canonical id <-> Spotify id). remote_id is UNIQUE so one Spotify id can
# never point at two canonical rows. These survive association cleanup.
# =============================================================================


class RemoteAlbumModel(Base):
    """Maps a canonical album to a Spotify album id."""

    __tablename__ = "remote_album"

    album_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("album.id", ondelete="CASCADE"), primary_key=True
    )
    remote_id: Mapped[str] = mapped_column(String(64), primary_key=True, unique=True)


class RemoteTrackModel(Base):
    """Maps a canonical track to a Spotify track id."""

    __tablename__ = "remote_track"

    track_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("track.id", ondelete="CASCADE"), primary_key=True
    )
    remote_id: Mapped[str] = mapped_column(String(64), primary_key=True, unique=True)


class RemoteArtistModel(Base):
    """Maps a canonical artist to a Spotify artist id."""

    __tablename__ = "remote_artist"

    artist_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("artist.id", ondelete="CASCADE"), primary_key=True
    )
    remote_id: Mapped[str] = mapped_column(String(64), primary_key=True, unique=True)


# =============================================================================
# Remote associations (what a given account currently sees). Rebuilt every sync: rows
# for items that disappeared from the account are deleted at the end of the run.
# =============================================================================


class RemoteAlbumSourceModel(Base):
    """Album currently visible through a remote source."""

    __tablename__ = "remote_album_source"

    album_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("album.id", ondelete="CASCADE"), primary_key=True
    )
    remote_source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("remote_source.id", ondelete="CASCADE"), primary_key=True
    )


class RemoteTrackSourceModel(Base):
    """Track currently visible through a remote source."""

    __tablename__ = "remote_track_source"

    track_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("track.id", ondelete="CASCADE"), primary_key=True
    )
    remote_source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("remote_source.id", ondelete="CASCADE"), primary_key=True
    )


class RemoteArtistSourceModel(Base):
    """Artist currently visible through a remote source."""

    __tablename__ = "remote_artist_source"

    artist_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("artist.id", ondelete="CASCADE"), primary_key=True
    )
    remote_source_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("remote_source.id", ondelete="CASCADE"), primary_key=True
    )
