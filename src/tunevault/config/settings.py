"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Hey future me, DatabaseSettings drives the Database class directly. pool_size=16 is the
# bounded pool every sync draws its single connection from. For SQLite the pool knobs are
# ignored (aiosqlite uses NullPool/StaticPool) - they only matter for a server database.
class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./tunevault.db"
    echo: bool = False
    pool_size: int = Field(default=16, ge=1)
    max_overflow: int = Field(default=0, ge=0)
    pool_timeout: int = Field(default=30, ge=1)
    pool_recycle: int = Field(default=3600, ge=-1)
    pool_pre_ping: bool = True

    @property
    def sqlite_path(self) -> Path | None:
        """File path of a SQLite database, None for other backends or in-memory."""
        if not self.url.startswith("sqlite"):
            return None
        _, _, path = self.url.partition(":///")
        if not path or path.startswith(":memory:"):
            return None
        return Path(path.split("?", 1)[0])


# Yo, these are the Spotify APP credentials (not the user's tokens - those live on the
# remote_source row). Base URLs end with "/" because every endpoint path is joined onto
# them. max_retries bounds BOTH the 401 refresh loop and the 429 wait loop.
class SpotifySettings(BaseModel):
    """Spotify Web API settings."""

    client_id: str = ""
    client_secret: str = ""
    accounts_base_url: str = "https://accounts.spotify.com/"
    api_base_url: str = "https://api.spotify.com/v1/"
    max_retries: int = Field(default=2, ge=0)
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("accounts_base_url", "api_base_url")
    @classmethod
    def ensure_trailing_slash(cls, value: str) -> str:
        """Base URLs must end with a slash so relative paths join correctly."""
        return value if value.endswith("/") else f"{value}/"

    @property
    def is_configured(self) -> bool:
        """Check whether client credentials are present."""
        return bool(self.client_id.strip() and self.client_secret.strip())


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    json_format: bool = False


class SyncSettings(BaseModel):
    """Tuning knobs for sync runs."""

    # Number of scanned files handed from the scanner thread to the reconciler per batch
    scan_batch_size: int = Field(default=64, ge=1)


class Settings(BaseSettings):
    """Root settings object.

    Values come from environment variables prefixed with ``TUNEVAULT_``; nested
    sections use ``__`` as delimiter, e.g. ``TUNEVAULT_SPOTIFY__CLIENT_ID``.
    """

    model_config = SettingsConfigDict(
        env_prefix="TUNEVAULT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "tunevault"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
