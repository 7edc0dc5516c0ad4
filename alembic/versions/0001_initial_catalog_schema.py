"""initial catalog schema

Revision ID: 0001_initial_catalog_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

Hey future me - THE starting schema of the sync engine!

Three groups of tables:
1. CANONICAL catalog: album, track, artist + album_artist / track_artist links.
   Created on first observation, never hard-deleted by a sync.
2. SOURCES: local_source (a directory), remote_source (a Spotify account + its tokens).
3. ASSOCIATIONS per source kind:
   - local_album / local_track / local_artist (local_track carries path + content hash,
     file_path NULL = soft-removed)
   - remote_album / remote_track / remote_artist map canonical ids to Spotify ids
     (remote_id UNIQUE), remote_*_source say "this account currently sees it" and get
     garbage-collected every remote sync.

KEY CONSTRAINTS:
- ux_local_track_source_path: a path exists at most once per source (NULLs are distinct)
- remote_*.remote_id unique: one Spotify id -> at most one canonical row
- every association FK cascades on delete
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_catalog_schema"
down_revision = None
branch_labels = None
depends_on = None


def _link_table(name: str, left: tuple[str, str], right: tuple[str, str]) -> None:
    """Create a two-column association table with cascading FKs."""
    left_column, left_target = left
    right_column, right_target = right
    op.create_table(
        name,
        sa.Column(
            left_column,
            sa.Integer(),
            sa.ForeignKey(left_target, ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            right_column,
            sa.Integer(),
            sa.ForeignKey(right_target, ondelete="CASCADE"),
            primary_key=True,
        ),
    )


def _remote_mapping_table(name: str, id_column: str, target: str) -> None:
    """Create a canonical-id <-> Spotify-id mapping table."""
    op.create_table(
        name,
        sa.Column(
            id_column,
            sa.Integer(),
            sa.ForeignKey(target, ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("remote_id", sa.String(64), primary_key=True),
        sa.UniqueConstraint("remote_id", name=f"uq_{name}_remote_id"),
    )


def upgrade() -> None:
    """Create the catalog, source and association tables."""
    # === Canonical catalog ===
    op.create_table(
        "album",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
    )
    op.create_index("ix_album_name", "album", ["name"])

    op.create_table(
        "artist",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.Text(), nullable=False),
    )
    op.create_index("ix_artist_name", "artist", ["name"])

    op.create_table(
        "track",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("album_id", sa.Integer(), sa.ForeignKey("album.id"), nullable=False),
        sa.Column("disc_number", sa.Integer(), nullable=True),
        sa.Column("disc_total", sa.Integer(), nullable=True),
        sa.Column("track_number", sa.Integer(), nullable=True),
        sa.Column("track_total", sa.Integer(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
    )
    op.create_index("ix_track_album_id", "track", ["album_id"])
    op.create_index("ix_track_album_title", "track", ["album_id", "title"])

    _link_table("album_artist", ("album_id", "album.id"), ("artist_id", "artist.id"))
    _link_table("track_artist", ("track_id", "track.id"), ("artist_id", "artist.id"))

    # === Sources ===
    op.create_table(
        "local_source",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("directory", sa.Text(), nullable=False),
        sa.UniqueConstraint("directory", name="uq_local_source_directory"),
    )

    op.create_table(
        "remote_source",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=False),
        sa.Column("expiry", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", name="uq_remote_source_user_id"),
    )

    # === Local associations ===
    _link_table(
        "local_album", ("album_id", "album.id"), ("local_source_id", "local_source.id")
    )
    _link_table(
        "local_artist", ("artist_id", "artist.id"), ("local_source_id", "local_source.id")
    )
    op.create_table(
        "local_track",
        sa.Column(
            "track_id",
            sa.Integer(),
            sa.ForeignKey("track.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "local_source_id",
            sa.Integer(),
            sa.ForeignKey("local_source.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("file_path", sa.Text(), nullable=True),
        sa.Column("hash", sa.BigInteger(), nullable=False),
    )
    op.create_index(
        "ux_local_track_source_path",
        "local_track",
        ["local_source_id", "file_path"],
        unique=True,
    )
    op.create_index("ix_local_track_source_hash", "local_track", ["local_source_id", "hash"])

    # === Remote mappings + associations ===
    _remote_mapping_table("remote_album", "album_id", "album.id")
    _remote_mapping_table("remote_track", "track_id", "track.id")
    _remote_mapping_table("remote_artist", "artist_id", "artist.id")

    _link_table(
        "remote_album_source",
        ("album_id", "album.id"),
        ("remote_source_id", "remote_source.id"),
    )
    _link_table(
        "remote_track_source",
        ("track_id", "track.id"),
        ("remote_source_id", "remote_source.id"),
    )
    _link_table(
        "remote_artist_source",
        ("artist_id", "artist.id"),
        ("remote_source_id", "remote_source.id"),
    )


def downgrade() -> None:
    """Drop everything, associations first."""
    for table in (
        "remote_artist_source",
        "remote_track_source",
        "remote_album_source",
        "remote_artist",
        "remote_track",
        "remote_album",
    ):
        op.drop_table(table)

    op.drop_index("ix_local_track_source_hash", table_name="local_track")
    op.drop_index("ux_local_track_source_path", table_name="local_track")
    for table in ("local_track", "local_artist", "local_album", "remote_source", "local_source"):
        op.drop_table(table)

    for table in ("track_artist", "album_artist"):
        op.drop_table(table)

    op.drop_index("ix_track_album_title", table_name="track")
    op.drop_index("ix_track_album_id", table_name="track")
    op.drop_table("track")
    op.drop_index("ix_artist_name", table_name="artist")
    op.drop_table("artist")
    op.drop_index("ix_album_name", table_name="album")
    op.drop_table("album")
