"""Engine lifecycle: wiring of settings, database, clients, services and the coordinator.

The host process (web server, desktop app, test harness) enters ``lifespan()`` once at
startup and gets a ready ``SyncEngine``; leaving the context stops the coordinator and
releases the HTTP client and the connection pool.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from tunevault.application.services import Id3TagScanner, SourceService, SyncService
from tunevault.application.workers import SyncCoordinator
from tunevault.config import Settings, get_settings
from tunevault.domain.exceptions import ConfigurationError
from tunevault.infrastructure.integrations import SpotifyClient
from tunevault.infrastructure.observability import configure_logging
from tunevault.infrastructure.persistence import Database

logger = logging.getLogger(__name__)


@dataclass
class SyncEngine:
    """Everything a host process needs to drive syncs."""

    settings: Settings
    db: Database
    spotify: SpotifyClient
    sources: SourceService
    sync_service: SyncService
    coordinator: SyncCoordinator


# Hey future me, this validates the SQLite path BEFORE the engine is created. SQLite also
# needs to create -journal/-wal files next to the .db, so the directory must be writable.
# A clear ConfigurationError at startup beats a cryptic "unable to open database file" on
# the first sync.
def validate_sqlite_path(settings: Settings) -> None:
    """Ensure the SQLite database directory exists and is writable."""
    db_path = settings.database.sqlite_path
    if db_path is None:
        return

    try:
        if str(db_path.parent) != ".":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        test_file = db_path.parent / f".{db_path.stem}_write_test"
        test_file.write_bytes(b"test")
        test_file.unlink()
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to write files in database directory '{db_path.parent}': {exc}. "
            "Update TUNEVAULT_DATABASE__URL or adjust directory permissions."
        ) from exc
    logger.debug(f"Verified SQLite directory {db_path.parent}")


def build_engine(settings: Settings) -> SyncEngine:
    """Create all components without starting anything."""
    db = Database(settings)
    spotify = SpotifyClient(settings.spotify)
    sync_service = SyncService(
        db=db,
        scanner=Id3TagScanner(),
        remote_client=spotify,
        settings=settings,
    )
    return SyncEngine(
        settings=settings,
        db=db,
        spotify=spotify,
        sources=SourceService(db),
        sync_service=sync_service,
        coordinator=SyncCoordinator(sync_service),
    )


@asynccontextmanager
async def lifespan(
    settings: Settings | None = None,
    create_schema: bool = False,
) -> AsyncGenerator[SyncEngine, None]:
    """Start the sync engine and shut it down on exit.

    Args:
        settings: Settings to use (defaults to get_settings())
        create_schema: Create tables directly instead of relying on alembic
    """
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.logging.level,
        json_format=settings.logging.json_format,
        app_name=settings.app_name,
    )
    logger.info(f"Starting {settings.app_name}")

    validate_sqlite_path(settings)
    engine = build_engine(settings)
    try:
        if create_schema:
            await engine.db.create_tables()
        if not settings.spotify.is_configured:
            logger.warning("Spotify client credentials missing, remote syncs will fail")
        await engine.coordinator.start()
        yield engine
    finally:
        logger.info(f"Shutting down {settings.app_name}")
        await engine.coordinator.stop()
        await engine.spotify.close()
        await engine.db.close()
