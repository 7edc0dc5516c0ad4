"""Configuration module for tunevault."""

from .settings import (
    DatabaseSettings,
    LoggingSettings,
    Settings,
    SpotifySettings,
    SyncSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "LoggingSettings",
    "Settings",
    "SpotifySettings",
    "SyncSettings",
    "get_settings",
]
