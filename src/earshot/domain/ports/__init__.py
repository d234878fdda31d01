"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod

from earshot.domain.dtos import AlbumDTO, ArtistDTO, NowPlayingDTO, TokenGrant, TrackDTO


# Hey future me - this is the ONLY surface the services see of a streaming provider.
# Tests plug in a fake implementation, production uses SpotifyClient. Error contract:
# - auth code / refresh grant rejected -> AuthenticationError / RefreshTokenInvalid
# - 401 on a user-scoped call, or on a catalog lookup with the app token -> AccessTokenRejected
# - transport failure, timeout, 5xx, exhausted 429 -> ProviderUnreachable
# - metadata lookups failing for any other reason -> MetadataFetchError
class IStreamingProvider(ABC):
    """Interface for a streaming provider (Spotify-shaped)."""

    @abstractmethod
    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        """Build the URL the user is sent to for granting access."""
        pass

    @abstractmethod
    async def exchange_auth_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Exchange an authorization code for user tokens."""
        pass

    @abstractmethod
    async def exchange_refresh_token(self, refresh_token: str) -> TokenGrant:
        """Get a fresh access token for a user."""
        pass

    @abstractmethod
    async def client_credentials_token(self) -> TokenGrant:
        """Get an app-level token for catalog lookups."""
        pass

    @abstractmethod
    async def get_current_user_id(self, access_token: str) -> str:
        """Return the provider's id for the token owner."""
        pass

    @abstractmethod
    async def get_now_playing(self, access_token: str) -> NowPlayingDTO | None:
        """Return what the user is playing, None when nothing is."""
        pass

    @abstractmethod
    async def get_track(self, app_token: str, external_id: str) -> TrackDTO:
        pass

    @abstractmethod
    async def get_artist(self, app_token: str, external_id: str) -> ArtistDTO:
        pass

    @abstractmethod
    async def get_album(self, app_token: str, external_id: str) -> AlbumDTO:
        pass

    async def close(self) -> None:
        """Release transport resources (no-op by default)."""
        return None


__all__ = ["IStreamingProvider"]
