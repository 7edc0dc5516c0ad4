"""External service integrations."""

from tunevault.infrastructure.integrations.spotify_client import SpotifyClient

__all__ = ["SpotifyClient"]
