"""Spotify Web API client: followed-artist catalog fetching and playback."""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, cast
from urllib.parse import urljoin

import httpx

from tunevault.config import SpotifySettings
from tunevault.domain.entities import (
    PlaybackDevice,
    RemoteAlbumRef,
    RemoteArtistRef,
    RemoteTrackRef,
    SpotifyCredentials,
    SpotifyUser,
)
from tunevault.domain.exceptions import (
    CannotRetry,
    ConfigurationError,
    PlayFail,
    RefreshTokenFail,
    RemoteApiError,
    RetryExhausted,
    UnexpectedStatus,
)
from tunevault.domain.ports import IRemoteCatalogClient

logger = logging.getLogger(__name__)


class SpotifyClient(IRemoteCatalogClient):
    """HTTP client for the Spotify Web API with token refresh and rate-limit handling."""

    FOLLOWED_ARTISTS_LIMIT = 50
    ARTIST_ALBUMS_LIMIT = 50
    ALBUM_BATCH_SIZE = 20
    DEFAULT_RETRY_AFTER = 5

    # Hey future me, we DON'T create the httpx client here - it gets lazy-loaded in
    # _get_client() so constructing the client outside a running loop is safe. transport is
    # only for tests (httpx.MockTransport); production always uses the default one.
    def __init__(
        self,
        settings: SpotifySettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize Spotify client.

        Args:
            settings: Spotify configuration settings
            transport: Optional custom httpx transport
        """
        self.settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._sleep = asyncio.sleep

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SpotifyClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    # =========================================================================
    # Token refresh
    # =========================================================================

    # Yo, this refreshes IN PLACE: the credentials object the caller passed in gets the new
    # access token, expiry (now + expires_in) and, if Spotify rotated it, the new refresh
    # token. The remote sync compares against its snapshot afterwards and writes the change
    # to the remote_source row. Spotify wants form data + HTTP basic auth with the app's
    # client id/secret here, NOT a bearer token.
    async def refresh_access_token(self, credentials: SpotifyCredentials) -> None:
        """
        Refresh the access token of ``credentials``.

        Args:
            credentials: Credentials to refresh (mutated in place)

        Raises:
            ConfigurationError: If client id/secret are missing
            RefreshTokenFail: If Spotify rejects the refresh or is unreachable
        """
        if not self.settings.is_configured:
            raise ConfigurationError(
                "Spotify client credentials are not configured. "
                "Set TUNEVAULT_SPOTIFY__CLIENT_ID and TUNEVAULT_SPOTIFY__CLIENT_SECRET."
            )

        client = await self._get_client()
        url = urljoin(self.settings.accounts_base_url, "api/token")
        try:
            response = await client.post(
                url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": credentials.refresh_token,
                },
                auth=(self.settings.client_id, self.settings.client_secret),
            )
        except httpx.HTTPError as e:
            raise RefreshTokenFail(f"Token refresh request failed: {e}") from e

        if response.status_code != 200:
            error_code, description = self._token_error(response)
            raise RefreshTokenFail(
                message=f"Token refresh rejected ({response.status_code}): {description}",
                error_code=error_code,
                http_status=response.status_code,
            )

        try:
            body = response.json()
            access_token = str(body["access_token"])
            expires_in = int(body["expires_in"])
        except (ValueError, KeyError, TypeError) as e:
            raise RefreshTokenFail(f"Malformed token refresh response: {e}") from e

        credentials.apply_refresh(access_token, expires_in, body.get("refresh_token"))
        logger.info(f"Refreshed Spotify access token (valid for {expires_in}s)")

    @staticmethod
    def _token_error(response: httpx.Response) -> tuple[str | None, str]:
        try:
            body = response.json()
        except ValueError:
            return None, response.text or "no details"
        if not isinstance(body, dict):
            return None, "no details"
        error = body.get("error")
        description = body.get("error_description") or str(error or "no details")
        return (str(error) if error else None), description

    # =========================================================================
    # Transport
    # =========================================================================

    # Listen up, future me: EVERY API call goes through here, and the order of checks matters.
    # 1. Expired token -> refresh BEFORE sending (saves a guaranteed 401 round trip).
    # 2. 401 -> refresh and resend, at most max_retries times, then RetryExhausted.
    # 3. 429 -> sleep Retry-After + 1 + retry seconds (Retry-After defaults to 5 when missing
    #    or garbage), at most max_retries times, then RetryExhausted.
    # 4. 400/403/404/5xx -> UnexpectedStatus carrying Spotify's {"error": {"message"}} text.
    # 5. Anything else (200, 201, 204, 304...) goes back to the caller untouched.
    # A streaming body can't be resent, so a 401/429 on one is CannotRetry.
    async def _request(
        self,
        method: str,
        path: str,
        credentials: SpotifyCredentials,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: bytes | AsyncIterator[bytes] | None = None,
    ) -> httpx.Response:
        """Send an authorized API request with refresh and retry handling.

        Args:
            method: HTTP method
            path: Path relative to the API base URL, or an absolute URL (paging links)
            credentials: Credentials used and refreshed in place
            params: Query parameters
            json: JSON body
            content: Raw body; an async iterator body cannot be retried

        Returns:
            The response for any status not handled above

        Raises:
            RetryExhausted: 401/429 persisted after max_retries retries
            CannotRetry: A retry was needed for a non-replayable body
            UnexpectedStatus: 400/403/404/5xx
            RefreshTokenFail: Token refresh failed
            RemoteApiError: Network level failure
        """
        client = await self._get_client()
        url = urljoin(self.settings.api_base_url, path)
        replayable = content is None or isinstance(content, bytes)
        max_retries = self.settings.max_retries
        retry = 0

        while True:
            if credentials.is_expired():
                logger.debug("Spotify access token expired, refreshing before request")
                await self.refresh_access_token(credentials)

            try:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    content=content,
                    headers={"Authorization": f"Bearer {credentials.access_token}"},
                )
            except httpx.HTTPError as e:
                raise RemoteApiError(f"Request to {url} failed: {e}") from e

            status = response.status_code
            if status in (401, 429):
                if not replayable:
                    raise CannotRetry(status, url)
                if retry >= max_retries:
                    logger.error(f"Spotify {status} persisted after {retry} retries: {url}")
                    raise RetryExhausted(status, url, retry + 1)

                if status == 401:
                    logger.info(f"Spotify 401 on {url}, refreshing token (retry {retry + 1})")
                    await self.refresh_access_token(credentials)
                else:
                    wait = self._retry_after(response) + 1 + retry
                    logger.warning(
                        f"Spotify 429 Rate Limit on {url}: waiting {wait}s "
                        f"(retry {retry + 1}/{max_retries})"
                    )
                    await self._sleep(wait)
                retry += 1
                continue

            if status in (400, 403, 404) or status >= 500:
                message, reason = self._error_details(response)
                raise UnexpectedStatus(status, url, message, reason)

            return response

    def _retry_after(self, response: httpx.Response) -> int:
        try:
            return max(0, int(response.headers["Retry-After"]))
        except (KeyError, ValueError):
            return self.DEFAULT_RETRY_AFTER

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str | None, str | None]:
        """Extract (message, reason) from a {"error": {...}} body, if it has that shape."""
        try:
            body = response.json()
        except ValueError:
            return None, None
        error = body.get("error") if isinstance(body, dict) else None
        if not isinstance(error, dict):
            return None, None
        message = error.get("message")
        reason = error.get("reason")
        return (str(message) if message else None), (str(reason) if reason else None)

    @staticmethod
    def _expect_json(response: httpx.Response) -> dict[str, Any]:
        if response.status_code != 200:
            raise UnexpectedStatus(response.status_code, str(response.url))
        try:
            return cast(dict[str, Any], response.json())
        except ValueError as e:
            raise RemoteApiError(f"Invalid JSON from {response.url}: {e}") from e

    # =========================================================================
    # Catalog endpoints
    # =========================================================================

    async def get_followed_artists(
        self, credentials: SpotifyCredentials, after: str | None = None
    ) -> dict[str, Any]:
        """
        Get one page of the current user's followed artists.

        Args:
            credentials: OAuth credentials
            after: Cursor from the previous page

        Returns:
            The "artists" object: items, cursors.after, total
        """
        params: dict[str, Any] = {"type": "artist", "limit": self.FOLLOWED_ARTISTS_LIMIT}
        if after:
            params["after"] = after
        response = await self._request("GET", "me/following", credentials, params=params)
        return cast(dict[str, Any], self._expect_json(response).get("artists") or {})

    async def get_artist_albums(
        self, artist_id: str, credentials: SpotifyCredentials, offset: int = 0
    ) -> dict[str, Any]:
        """
        Get one page of an artist's albums and singles.

        Args:
            artist_id: Spotify artist ID
            credentials: OAuth credentials
            offset: Index of the first album to return

        Returns:
            Paging object with items and total
        """
        response = await self._request(
            "GET",
            f"artists/{artist_id}/albums",
            credentials,
            params={
                "include_groups": "album,single",
                "country": "from_token",
                "limit": self.ARTIST_ALBUMS_LIMIT,
                "offset": offset,
            },
        )
        return self._expect_json(response)

    # Hey future me, /albums takes max 20 comma-separated ids. Removed/invalid albums come
    # back as null in their slot - those are filtered out here.
    async def get_albums(
        self, album_ids: list[str], credentials: SpotifyCredentials
    ) -> list[dict[str, Any]]:
        """
        Get full album objects (with inline tracks) for up to 20 ids.

        Args:
            album_ids: Spotify album IDs (max 20)
            credentials: OAuth credentials

        Returns:
            Album objects, nulls filtered out
        """
        if not album_ids:
            return []
        if len(album_ids) > self.ALBUM_BATCH_SIZE:
            raise ValueError(f"At most {self.ALBUM_BATCH_SIZE} album ids per request")

        response = await self._request(
            "GET", "albums", credentials, params={"ids": ",".join(album_ids)}
        )
        albums = self._expect_json(response).get("albums") or []
        return [album for album in albums if album is not None]

    async def list_followed_artists(
        self, credentials: SpotifyCredentials
    ) -> list[RemoteArtistRef]:
        """Page through all followed artists until the cursor runs out."""
        artists: list[RemoteArtistRef] = []
        after: str | None = None
        while True:
            page = await self.get_followed_artists(credentials, after=after)
            artists.extend(self._parse_artist(item) for item in page.get("items") or [])
            after = (page.get("cursors") or {}).get("after")
            if not after:
                return artists

    async def list_artist_album_ids(
        self, artist_id: str, credentials: SpotifyCredentials
    ) -> list[str]:
        """Page through an artist's albums (offset paging) and collect their ids."""
        album_ids: list[str] = []
        offset = 0
        while True:
            page = await self.get_artist_albums(artist_id, credentials, offset=offset)
            items = page.get("items") or []
            album_ids.extend(item["id"] for item in items if item and item.get("id"))
            offset += self.ARTIST_ALBUMS_LIMIT
            if not items or offset >= int(page.get("total") or 0):
                return album_ids

    # Yo, this is THE entry point the remote sync uses. Followed artists -> their albums ->
    # full albums in batches of 20. An album shared by two followed artists is fetched once
    # (ids are de-duplicated, first-seen order kept so runs are reproducible).
    async def fetch_followed_albums(
        self, credentials: SpotifyCredentials
    ) -> list[RemoteAlbumRef]:
        """
        Fetch every album of every followed artist, with full track lists.

        Args:
            credentials: OAuth credentials (refreshed in place if needed)

        Returns:
            Albums with artists and tracks
        """
        artists = await self.list_followed_artists(credentials)
        logger.info(f"Fetching albums of {len(artists)} followed Spotify artists")

        album_ids: dict[str, None] = {}
        for artist in artists:
            for album_id in await self.list_artist_album_ids(artist.external_id, credentials):
                album_ids.setdefault(album_id)

        ids = list(album_ids)
        albums: list[RemoteAlbumRef] = []
        for start in range(0, len(ids), self.ALBUM_BATCH_SIZE):
            batch = ids[start : start + self.ALBUM_BATCH_SIZE]
            for data in await self.get_albums(batch, credentials):
                albums.append(await self._parse_album(data, credentials))

        logger.info(f"Fetched {len(albums)} Spotify albums")
        return albums

    async def _parse_album(
        self, data: dict[str, Any], credentials: SpotifyCredentials
    ) -> RemoteAlbumRef:
        tracks_page = data.get("tracks") or {}
        track_items = list(tracks_page.get("items") or [])
        # Albums with more than 50 tracks only inline the first page
        next_url = tracks_page.get("next")
        while next_url:
            page = self._expect_json(await self._request("GET", next_url, credentials))
            track_items.extend(page.get("items") or [])
            next_url = page.get("next")

        return RemoteAlbumRef(
            external_id=data["id"],
            name=data.get("name") or "",
            artists=[self._parse_artist(a) for a in data.get("artists") or []],
            tracks=[self._parse_track(t) for t in track_items if t and t.get("id")],
        )

    @staticmethod
    def _parse_artist(data: dict[str, Any]) -> RemoteArtistRef:
        return RemoteArtistRef(external_id=data["id"], name=data.get("name") or "")

    @classmethod
    def _parse_track(cls, data: dict[str, Any]) -> RemoteTrackRef:
        return RemoteTrackRef(
            external_id=data["id"],
            title=data.get("name") or "",
            disc_number=data.get("disc_number"),
            track_number=data.get("track_number"),
            artists=[cls._parse_artist(a) for a in data.get("artists") or [] if a.get("id")],
        )

    # =========================================================================
    # User and playback
    # =========================================================================

    async def me(self, credentials: SpotifyCredentials) -> SpotifyUser:
        """Get the current user's profile."""
        body = self._expect_json(await self._request("GET", "me", credentials))
        return SpotifyUser(id=body["id"], display_name=body.get("display_name"))

    async def get_devices(self, credentials: SpotifyCredentials) -> list[PlaybackDevice]:
        """List the user's Spotify Connect devices."""
        body = self._expect_json(await self._request("GET", "me/player/devices", credentials))
        return [
            PlaybackDevice(
                id=device.get("id"),
                name=device.get("name") or "",
                is_active=bool(device.get("is_active")),
            )
            for device in body.get("devices") or []
        ]

    # Hey future me, Spotify's play endpoint needs SOME device. If the caller doesn't pick
    # one we take the active device, else the first listed. 403 usually means "Premium
    # required", 404 "no active device" - both become PlayFail with Spotify's reason.
    async def play_track(
        self,
        track_id: str,
        credentials: SpotifyCredentials,
        device_id: str | None = None,
    ) -> None:
        """
        Start playing a track.

        Args:
            track_id: Spotify track ID
            credentials: OAuth credentials
            device_id: Target device; defaults to the active or first device

        Raises:
            PlayFail: No device available, or Spotify refused playback
        """
        if device_id is None:
            devices = await self.get_devices(credentials)
            active = next((d for d in devices if d.is_active and d.id), None)
            chosen = active or next((d for d in devices if d.id), None)
            if chosen is None:
                raise PlayFail("No Spotify device available for playback")
            device_id = chosen.id

        try:
            response = await self._request(
                "PUT",
                "me/player/play",
                credentials,
                params={"device_id": device_id},
                json={"uris": [f"spotify:track:{track_id}"]},
            )
        except UnexpectedStatus as e:
            if e.status_code in (403, 404):
                raise PlayFail(e.server_message or "Playback refused", e.reason) from e
            raise

        if response.status_code != 204:
            raise UnexpectedStatus(response.status_code, str(response.url))
