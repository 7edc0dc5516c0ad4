# Hey future me - SyncService is what ONE coordinator task runs. It owns the transaction
# layout of a run:
#   - local:  ONE transaction for every enabled local source together
#   - remote: ONE transaction PER remote source, and the HTTP fetch happens BEFORE it opens,
#             so a 30-minute Spotify crawl never holds the SQLite write lock
# Cancellation is cooperative: request_cancel() sets a flag that's only looked at between
# transactions. A half-written transaction is never abandoned on purpose.
"""Sync run orchestration over local and remote sources."""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tunevault.application.services.local_sync_service import (
    LocalSyncService,
    LocalSyncStats,
)
from tunevault.application.services.remote_sync_service import (
    RemoteSyncService,
    RemoteSyncStats,
)
from tunevault.application.services.source_service import local_source_from_model
from tunevault.config import Settings
from tunevault.domain.entities import LocalSource, SpotifyCredentials
from tunevault.domain.exceptions import (
    DatabaseQueryFail,
    LocalSyncNonFatal,
    RemoteApiError,
    SourceNotFound,
    SyncCancelled,
    SyncRunFailed,
    TunevaultError,
)
from tunevault.domain.ports import IRemoteCatalogClient, ITagScanner
from tunevault.infrastructure.persistence import Database, SourceRepository
from tunevault.infrastructure.persistence.models import ensure_utc_aware

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]


class SyncService:
    """Runs local and remote syncs with their transaction and error policy."""

    def __init__(
        self,
        db: Database,
        scanner: ITagScanner,
        remote_client: IRemoteCatalogClient,
        settings: Settings,
    ) -> None:
        """Initialize service.

        Args:
            db: Database for opening the per-run transactions
            scanner: Tag scanner for local sources
            remote_client: Catalog client for remote sources
            settings: Application settings
        """
        self.db = db
        self.scanner = scanner
        self.remote_client = remote_client
        self.settings = settings
        self._cancel_requested = False

    def request_cancel(self) -> None:
        """Ask the running sync to stop at the next transaction boundary."""
        logger.info("Sync cancel requested")
        self._cancel_requested = True

    def clear_cancel(self) -> None:
        """Forget a cancel request that no transaction boundary consumed."""
        self._cancel_requested = False

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            self._cancel_requested = False
            raise SyncCancelled("Sync cancelled")

    @staticmethod
    def _report(progress: ProgressCallback | None, message: str) -> None:
        if progress is not None:
            progress(message)

    # Listen up, SQLAlchemy errors become DatabaseQueryFail AFTER session_scope() has rolled
    # back, so callers only ever see domain errors. Commit failures are covered too.
    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with self.db.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Database error, transaction rolled back: {e}")
            raise DatabaseQueryFail(f"Database query failed: {e}") from e

    # =========================================================================
    # Whole run
    # =========================================================================

    async def sync_all(self, progress: ProgressCallback | None = None) -> None:
        """Sync every enabled local source, then every enabled remote source.

        A local failure doesn't stop the remote part.

        Raises:
            SyncRunFailed: Anything went wrong in either part
            SyncCancelled: A cancel request was observed
        """
        errors: list[TunevaultError] = []

        try:
            await self.sync_local_all(progress)
        except SyncCancelled:
            raise
        except TunevaultError as e:
            errors.append(e)

        try:
            await self.sync_remote_all(progress)
        except SyncRunFailed as e:
            errors.extend(e.errors)
        except SyncCancelled:
            raise
        except TunevaultError as e:
            errors.append(e)

        if errors:
            raise SyncRunFailed(errors)

    # =========================================================================
    # Local
    # =========================================================================

    async def sync_local_all(
        self, progress: ProgressCallback | None = None
    ) -> list[LocalSyncStats]:
        """Sync every enabled local source in one transaction.

        Raises:
            LocalSyncNonFatal: Committed, but some files/tracks were skipped
            DatabaseQueryFail: Rolled back
        """
        self._check_cancelled()
        async with self._transaction() as session:
            models = await SourceRepository(session).list_local_sources(enabled_only=True)
            results = await self._sync_local_sources(
                session, [local_source_from_model(m) for m in models], progress
            )
        return self._raise_for_local_errors(results)

    async def sync_local(
        self, source_id: int, progress: ProgressCallback | None = None
    ) -> LocalSyncStats:
        """Sync one local source, enabled or not.

        Raises:
            SourceNotFound: Unknown id
            LocalSyncNonFatal: Committed, but some files/tracks were skipped
            DatabaseQueryFail: Rolled back
        """
        self._check_cancelled()
        async with self._transaction() as session:
            model = await SourceRepository(session).get_local_source(source_id)
            if model is None:
                raise SourceNotFound("local", source_id)
            results = await self._sync_local_sources(
                session, [local_source_from_model(model)], progress
            )
        return self._raise_for_local_errors(results)[0]

    async def _sync_local_sources(
        self,
        session: AsyncSession,
        sources: list[LocalSource],
        progress: ProgressCallback | None,
    ) -> list[LocalSyncStats]:
        service = LocalSyncService(session, self.scanner, self.settings.sync.scan_batch_size)
        results = []
        for source in sources:
            self._report(progress, f"local source {source.id}: {source.directory}")
            results.append(await service.sync_source(source))
        return results

    @staticmethod
    def _raise_for_local_errors(results: list[LocalSyncStats]) -> list[LocalSyncStats]:
        # Runs after the transaction committed: skipped files don't undo the rest
        errors = [e for stats in results for e in stats.errors]
        if errors:
            raise LocalSyncNonFatal(errors)
        return results

    # =========================================================================
    # Remote
    # =========================================================================

    async def sync_remote_all(
        self, progress: ProgressCallback | None = None
    ) -> list[RemoteSyncStats]:
        """Sync every enabled remote source, each in its own transaction.

        One failing source doesn't stop the others.

        Raises:
            SyncRunFailed: At least one source failed (the others are committed)
            SyncCancelled: A cancel request was observed
        """
        async with self._transaction() as session:
            source_ids = [
                m.id for m in await SourceRepository(session).list_remote_sources(enabled_only=True)
            ]

        results = []
        errors: list[TunevaultError] = []
        for source_id in source_ids:
            self._check_cancelled()
            try:
                results.append(await self.sync_remote(source_id, progress))
            except SyncCancelled:
                raise
            except TunevaultError as e:
                logger.error(f"Remote source {source_id} failed: {e.message}")
                errors.append(e)

        if errors:
            raise SyncRunFailed(errors)
        return results

    async def sync_remote(
        self, source_id: int, progress: ProgressCallback | None = None
    ) -> RemoteSyncStats:
        """Fetch one remote source's catalog and reconcile it.

        Raises:
            SourceNotFound: Unknown id
            RemoteApiError: Fetch failed (nothing reconciled)
            DatabaseQueryFail: Rolled back
        """
        self._check_cancelled()
        async with self._transaction() as session:
            model = await SourceRepository(session).get_remote_source(source_id)
            if model is None:
                raise SourceNotFound("remote", source_id)
            credentials = SpotifyCredentials(
                access_token=model.access_token,
                refresh_token=model.refresh_token,
                expiry=ensure_utc_aware(model.expiry),
            )
        snapshot = credentials.copy()

        self._report(progress, f"remote source {source_id}: fetching")
        try:
            albums = await self.remote_client.fetch_followed_albums(credentials)
        except RemoteApiError:
            # A refresh may have succeeded before the failure; don't lose the new tokens
            if credentials != snapshot:
                await self._store_credentials(source_id, credentials)
            raise

        self._report(progress, f"remote source {source_id}: reconciling {len(albums)} albums")
        async with self._transaction() as session:
            model = await SourceRepository(session).get_remote_source(source_id)
            if model is None:
                raise SourceNotFound("remote", source_id)
            if credentials != snapshot and RemoteSyncService.store_credentials(model, credentials):
                logger.debug(f"Remote source {source_id}: storing refreshed tokens")
            return await RemoteSyncService(session).sync_albums(source_id, albums)

    async def _store_credentials(self, source_id: int, credentials: SpotifyCredentials) -> None:
        async with self._transaction() as session:
            model = await SourceRepository(session).get_remote_source(source_id)
            if model is not None:
                RemoteSyncService.store_credentials(model, credentials)
                logger.debug(f"Remote source {source_id}: stored refreshed tokens after failure")
