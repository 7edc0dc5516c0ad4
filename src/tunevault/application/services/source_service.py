"""Source management: watched directories and linked Spotify accounts.

Hey future me - this is what the outer layers (API, setup wizard, OAuth callback) call to
register where catalog data comes from. Each method is its own short transaction and is
wrapped in with_db_retry, because it may well run while a sync holds the SQLite write lock.

Usage:
    sources = SourceService(db)
    local = await sources.create_or_enable_local_source("/music")
    remote = await sources.create_or_update_remote_source(
        user_id=1, access_token="...", refresh_token="...", expiry=expires_at
    )
"""

import logging
from datetime import datetime
from pathlib import Path

from tunevault.domain.entities import LocalSource, RemoteSource
from tunevault.domain.exceptions import SourceNotFound
from tunevault.infrastructure.persistence import (
    Database,
    LocalSourceModel,
    RemoteSourceModel,
    SourceRepository,
    with_db_retry,
)
from tunevault.infrastructure.persistence.models import ensure_utc_aware

logger = logging.getLogger(__name__)


def local_source_from_model(model: LocalSourceModel) -> LocalSource:
    """Convert a local_source row into its domain entity."""
    return LocalSource(id=model.id, enabled=model.enabled, directory=model.directory)


def remote_source_from_model(model: RemoteSourceModel) -> RemoteSource:
    """Convert a remote_source row into its domain entity (tokens stay behind)."""
    return RemoteSource(
        id=model.id,
        enabled=model.enabled,
        user_id=model.user_id,
        expiry=ensure_utc_aware(model.expiry),
    )


class SourceService:
    """Creates, lists and toggles local and remote sources."""

    def __init__(self, db: Database) -> None:
        """Initialize service.

        Args:
            db: Database used to open one session per call
        """
        self._db = db

    # =========================================================================
    # Local sources
    # =========================================================================

    @with_db_retry(max_attempts=3)
    async def list_local_sources(self) -> list[LocalSource]:
        async with self._db.session_scope() as session:
            models = await SourceRepository(session).list_local_sources()
            return [local_source_from_model(m) for m in models]

    @with_db_retry(max_attempts=3)
    async def get_local_source(self, source_id: int) -> LocalSource:
        """Get one local source.

        Raises:
            SourceNotFound: No local source with this id
        """
        async with self._db.session_scope() as session:
            model = await SourceRepository(session).get_local_source(source_id)
            if model is None:
                raise SourceNotFound("local", source_id)
            return local_source_from_model(model)

    # Yo, directories are stored absolute and resolved so "/music" and "/music/../music"
    # don't become two sources scanning the same files.
    @with_db_retry(max_attempts=3)
    async def create_or_enable_local_source(self, directory: str | Path) -> LocalSource:
        """Register a directory, or re-enable it if it's already known.

        Args:
            directory: Root of the music tree

        Returns:
            The (enabled) local source
        """
        normalized = str(Path(directory).expanduser().resolve())
        async with self._db.session_scope() as session:
            repo = SourceRepository(session)
            model = await repo.get_local_source_by_directory(normalized)
            if model is None:
                model = await repo.add_local_source(normalized)
                logger.info(f"Added local source {model.id} at {normalized}")
            elif not model.enabled:
                model.enabled = True
                logger.info(f"Re-enabled local source {model.id} at {normalized}")
            return local_source_from_model(model)

    @with_db_retry(max_attempts=3)
    async def set_local_source_enabled(self, source_id: int, enabled: bool) -> LocalSource:
        async with self._db.session_scope() as session:
            model = await SourceRepository(session).get_local_source(source_id)
            if model is None:
                raise SourceNotFound("local", source_id)
            model.enabled = enabled
            logger.info(f"Local source {source_id} {'enabled' if enabled else 'disabled'}")
            return local_source_from_model(model)

    # =========================================================================
    # Remote sources
    # =========================================================================

    @with_db_retry(max_attempts=3)
    async def list_remote_sources(self) -> list[RemoteSource]:
        async with self._db.session_scope() as session:
            models = await SourceRepository(session).list_remote_sources()
            return [remote_source_from_model(m) for m in models]

    @with_db_retry(max_attempts=3)
    async def get_remote_source(self, source_id: int) -> RemoteSource:
        """Get one remote source.

        Raises:
            SourceNotFound: No remote source with this id
        """
        async with self._db.session_scope() as session:
            model = await SourceRepository(session).get_remote_source(source_id)
            if model is None:
                raise SourceNotFound("remote", source_id)
            return remote_source_from_model(model)

    # Listen up, this is the landing spot for the OAuth callback: one remote source per user.
    # A second authorization of the same user just swaps the tokens (and re-enables it).
    @with_db_retry(max_attempts=3)
    async def create_or_update_remote_source(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str,
        expiry: datetime,
    ) -> RemoteSource:
        """Store the tokens of a user's Spotify account.

        Args:
            user_id: Owning user
            access_token: OAuth access token
            refresh_token: OAuth refresh token
            expiry: When the access token expires

        Returns:
            The (enabled) remote source
        """
        expiry = ensure_utc_aware(expiry)
        async with self._db.session_scope() as session:
            repo = SourceRepository(session)
            model = await repo.get_remote_source_by_user(user_id)
            if model is None:
                model = await repo.add_remote_source(
                    RemoteSourceModel(
                        user_id=user_id,
                        enabled=True,
                        access_token=access_token,
                        refresh_token=refresh_token,
                        expiry=expiry,
                    )
                )
                logger.info(f"Added remote source {model.id} for user {user_id}")
            else:
                model.access_token = access_token
                model.refresh_token = refresh_token
                model.expiry = expiry
                model.enabled = True
                logger.info(f"Updated tokens of remote source {model.id} (user {user_id})")
            return remote_source_from_model(model)

    @with_db_retry(max_attempts=3)
    async def set_remote_source_enabled(self, source_id: int, enabled: bool) -> RemoteSource:
        async with self._db.session_scope() as session:
            model = await SourceRepository(session).get_remote_source(source_id)
            if model is None:
                raise SourceNotFound("remote", source_id)
            model.enabled = enabled
            logger.info(f"Remote source {source_id} {'enabled' if enabled else 'disabled'}")
            return remote_source_from_model(model)
