"""Spotify HTTP client implementing the streaming provider port."""

import logging
from typing import Any, cast
from urllib.parse import urlencode

import httpx

from earshot.config.settings import SpotifySettings
from earshot.domain.dtos import AlbumDTO, ArtistDTO, NowPlayingDTO, TokenGrant, TrackDTO
from earshot.domain.exceptions import (
    AccessTokenRejected,
    AuthenticationError,
    ConfigurationError,
    DomainException,
    MetadataFetchError,
    ProviderUnreachable,
    RefreshTokenInvalid,
)
from earshot.domain.ports import IStreamingProvider
from earshot.infrastructure.rate_limiter import RateLimiter, get_spotify_limiter

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


def _first_image(payload: dict[str, Any]) -> str | None:
    images = payload.get("images") or []
    return images[0].get("url") if images else None


def _parse_grant(data: dict[str, Any]) -> TokenGrant:
    return TokenGrant(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_in=int(data.get("expires_in") or DEFAULT_EXPIRES_IN),
        token_type=data.get("token_type", "Bearer"),
        scope=data.get("scope"),
    )


class SpotifyClient(IStreamingProvider):
    """HTTP client for the Spotify accounts service and Web API."""

    AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
    TOKEN_URL = "https://accounts.spotify.com/api/token"  # nosec B105 - public endpoint URL
    API_BASE_URL = "https://api.spotify.com/v1"

    # Hey future me, this init is deceptively simple - we DON'T create the HTTP client here
    # because it must be created inside the running event loop. It is lazy-loaded in
    # _get_client().
    def __init__(
        self,
        settings: SpotifySettings,
        rate_limiter: RateLimiter | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.settings = settings
        self._rate_limiter = rate_limiter or get_spotify_limiter()
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    # Hey, this close() is IMPORTANT - if you don't call it, you leak connections. The app
    # lifespan calls it on shutdown.
    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _require_credentials(self) -> None:
        if not self.settings.is_configured:
            raise ConfigurationError(
                "Spotify credentials are not configured. "
                "Set SPOTIFY__CLIENT_ID and SPOTIFY__CLIENT_SECRET in the environment. "
                "Get credentials at https://developer.spotify.com/dashboard"
            )

    # Hey future me - CENTRALIZED API REQUEST with rate limiting! Every Web API call goes
    # through here. Token bucket before the call, Retry-After honoured on 429, at most
    # max_retries retries. Transport errors (DNS, connect, timeout) become
    # ProviderUnreachable so callers only deal with domain errors.
    async def _api_request(
        self,
        method: str,
        url: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        max_retries: int = 2,
    ) -> httpx.Response:
        """Make a rate-limited API request with automatic retry on 429.

        Raises:
            ProviderUnreachable: transport failure or still rate limited after retries
        """
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {access_token}"}

        for attempt in range(max_retries + 1):
            try:
                async with self._rate_limiter:
                    response = await client.request(
                        method=method, url=url, params=params, headers=headers
                    )
            except httpx.TransportError as e:
                raise ProviderUnreachable(
                    f"Spotify request failed: {type(e).__name__}: {e}"
                ) from e

            if response.status_code != 429:
                return response

            retry_after_str = response.headers.get("Retry-After")
            retry_after = float(retry_after_str) if retry_after_str else None
            if attempt >= max_retries:
                logger.error(
                    "Spotify API rate limited after %d retries: %s (Retry-After: %s)",
                    max_retries,
                    url,
                    retry_after_str or "not provided",
                )
                raise ProviderUnreachable(
                    f"Spotify API rate limited (429), Retry-After: "
                    f"{retry_after_str or 'not provided'}",
                    http_status=429,
                )
            await self._rate_limiter.handle_rate_limit_response(retry_after)

        raise RuntimeError("Unexpected state in Spotify request loop")

    async def _token_request(self, data: dict[str, str]) -> httpx.Response:
        """POST to the accounts service (form encoded, HTTP Basic client auth)."""
        self._require_credentials()
        client = await self._get_client()
        try:
            return await client.post(
                self.TOKEN_URL,
                data=data,
                auth=(self.settings.client_id, self.settings.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.TransportError as e:
            raise ProviderUnreachable(
                f"Spotify token endpoint unreachable: {type(e).__name__}: {e}"
            ) from e

    @staticmethod
    def _error_code(response: httpx.Response) -> tuple[str, str]:
        try:
            payload = response.json()
        except ValueError:
            return "", response.text[:200]
        if not isinstance(payload, dict):
            return "", ""
        return str(payload.get("error", "")), str(payload.get("error_description", ""))

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        """Build the Spotify consent URL.

        Raises:
            ConfigurationError: client_id or redirect_uri not configured
        """
        if not self.settings.client_id.strip():
            raise ConfigurationError("SPOTIFY__CLIENT_ID is not configured")
        if not redirect_uri.strip():
            raise ConfigurationError("SPOTIFY__REDIRECT_URI is not configured")

        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": " ".join(self.settings.scopes),
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    # Yo future me, this is THE critical step after the user granted access. The code is
    # single-use and expires after a few minutes, and redirect_uri MUST match the one used
    # for the consent URL or Spotify answers invalid_grant.
    async def exchange_auth_code(self, code: str, redirect_uri: str) -> TokenGrant:
        response = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            }
        )
        if response.status_code >= 500:
            raise ProviderUnreachable(
                f"Spotify token endpoint error {response.status_code}",
                http_status=response.status_code,
            )
        if response.status_code != 200:
            error_code, description = self._error_code(response)
            raise AuthenticationError(
                f"Spotify rejected the authorization code: {error_code or response.status_code}"
                + (f" ({description})" if description else "")
            )

        grant = _parse_grant(cast(dict[str, Any], response.json()))
        if not grant.refresh_token:
            raise AuthenticationError("Spotify did not return a refresh token")
        return grant

    # Hey future me, access tokens live one hour. Spotify answers 400 invalid_grant when the
    # refresh token was revoked, that's the "re-link required" case. 401/403 also mean the
    # grant is dead. Everything else (5xx, network) is transient and must NOT invalidate
    # the account!
    async def exchange_refresh_token(self, refresh_token: str) -> TokenGrant:
        response = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

        if response.status_code == 400:
            error_code, description = self._error_code(response)
            if error_code == "invalid_grant":
                raise RefreshTokenInvalid(
                    message=f"Refresh token invalid: {description or 'revoked'}. "
                    "Please link your Spotify account again.",
                    error_code=error_code,
                    http_status=400,
                )
        if response.status_code in (401, 403):
            raise RefreshTokenInvalid(
                message="Spotify access denied. Please link your Spotify account again.",
                error_code="access_denied",
                http_status=response.status_code,
            )
        if response.status_code != 200:
            raise ProviderUnreachable(
                f"Spotify token refresh failed with {response.status_code}",
                http_status=response.status_code,
            )
        return _parse_grant(cast(dict[str, Any], response.json()))

    async def client_credentials_token(self) -> TokenGrant:
        response = await self._token_request({"grant_type": "client_credentials"})
        if response.status_code != 200:
            raise ProviderUnreachable(
                f"Spotify client credentials grant failed with {response.status_code}",
                http_status=response.status_code,
            )
        return _parse_grant(cast(dict[str, Any], response.json()))

    def _check_user_response(self, response: httpx.Response, what: str) -> None:
        if response.status_code == 401:
            raise AccessTokenRejected(f"Spotify rejected the access token ({what})")
        if response.status_code >= 400:
            raise ProviderUnreachable(
                f"Spotify {what} failed with {response.status_code}",
                http_status=response.status_code,
            )

    async def get_current_user_id(self, access_token: str) -> str:
        response = await self._api_request(
            "GET", f"{self.API_BASE_URL}/me", access_token=access_token
        )
        self._check_user_response(response, "profile")
        return str(response.json().get("id", ""))

    # Listen up: 204 means "no active device", an item of null means an ad or a private
    # session. Podcast episodes come back as currently_playing_type="episode" without
    # artists/album, we treat those as "nothing playing" because there is no track to log.
    async def get_now_playing(self, access_token: str) -> NowPlayingDTO | None:
        response = await self._api_request(
            "GET",
            f"{self.API_BASE_URL}/me/player/currently-playing",
            access_token=access_token,
        )
        if response.status_code == 204:
            return None
        self._check_user_response(response, "currently-playing")
        if not response.content:
            return None

        data = cast(dict[str, Any], response.json())
        item = data.get("item")
        if not item or data.get("currently_playing_type", "track") != "track":
            return None
        if not item.get("id"):
            # Local files have no catalog id, nothing to resolve or log
            return None

        return NowPlayingDTO(
            track_external_id=item["id"],
            title=item.get("name", ""),
            artist_names=[a.get("name", "") for a in item.get("artists") or []],
            album_cover_url=_first_image(item.get("album") or {}),
            is_playing=bool(data.get("is_playing")),
            progress_ms=data.get("progress_ms"),
            duration_ms=item.get("duration_ms"),
        )

    async def _get_catalog(
        self, entity_type: str, path: str, app_token: str, external_id: str
    ) -> dict[str, Any]:
        try:
            response = await self._api_request(
                "GET", f"{self.API_BASE_URL}/{path}/{external_id}", access_token=app_token
            )
        except DomainException as e:
            raise MetadataFetchError(entity_type, external_id, e.message) from e
        if response.status_code == 401:
            raise AccessTokenRejected(f"Spotify rejected the app token ({entity_type})")
        if response.status_code != 200:
            raise MetadataFetchError(
                entity_type, external_id, f"HTTP {response.status_code}"
            )
        return cast(dict[str, Any], response.json())

    async def get_track(self, app_token: str, external_id: str) -> TrackDTO:
        data = await self._get_catalog("track", "tracks", app_token, external_id)
        artists = data.get("artists") or []
        return TrackDTO(
            external_id=data["id"],
            title=data.get("name", ""),
            artist_external_ids=[a["id"] for a in artists if a.get("id")],
            artist_names=[a.get("name", "") for a in artists],
            album_external_id=(data.get("album") or {}).get("id"),
            duration_ms=data.get("duration_ms"),
            preview_url=data.get("preview_url"),
        )

    async def get_artist(self, app_token: str, external_id: str) -> ArtistDTO:
        data = await self._get_catalog("artist", "artists", app_token, external_id)
        return ArtistDTO(
            external_id=data["id"],
            name=data.get("name", ""),
            image_url=_first_image(data),
        )

    async def get_album(self, app_token: str, external_id: str) -> AlbumDTO:
        data = await self._get_catalog("album", "albums", app_token, external_id)
        return AlbumDTO(
            external_id=data["id"],
            title=data.get("name", ""),
            artist_external_ids=[a["id"] for a in data.get("artists") or [] if a.get("id")],
            release_date=data.get("release_date"),
            cover_image_url=_first_image(data),
        )

    async def __aenter__(self) -> "SpotifyClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
