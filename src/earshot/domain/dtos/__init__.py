"""
Data Transfer Objects returned by streaming provider clients.

Hey future me - these DTOs are the lingua franca between the provider client and the
application services. The client converts raw Spotify JSON into these, services never
touch provider JSON directly.

Why DTOs instead of entities?
1. Entities have internal IDs, API payloads don't have them yet
2. DTOs are dumb data carriers, entities belong to the database side
"""

from dataclasses import dataclass, field

from earshot.domain.exceptions import ValidationError


@dataclass(frozen=True)
class TokenGrant:
    """Result of a token endpoint call.

    Hey future me - refresh_token might be None on refresh!
    Spotify doesn't always return a new refresh_token.
    """

    access_token: str
    refresh_token: str | None
    expires_in: int
    token_type: str = "Bearer"
    scope: str | None = None


@dataclass
class ArtistDTO:
    """Artist details as reported by the provider."""

    external_id: str
    name: str
    image_url: str | None = None

    def __post_init__(self) -> None:
        if not self.external_id:
            raise ValidationError("Artist DTO without external id")


@dataclass
class AlbumDTO:
    """Album details as reported by the provider."""

    external_id: str
    title: str
    artist_external_ids: list[str] = field(default_factory=list)
    release_date: str | None = None
    cover_image_url: str | None = None

    def __post_init__(self) -> None:
        if not self.external_id:
            raise ValidationError("Album DTO without external id")

    @property
    def primary_artist_id(self) -> str | None:
        return self.artist_external_ids[0] if self.artist_external_ids else None


# Yo, TrackDTO carries only the FIRST artist and the album as external ids. The resolver
# ensures those two exist before it writes the track row, so the FK chain is always intact.
@dataclass
class TrackDTO:
    """Track details as reported by the provider."""

    external_id: str
    title: str
    artist_external_ids: list[str] = field(default_factory=list)
    artist_names: list[str] = field(default_factory=list)
    album_external_id: str | None = None
    duration_ms: int | None = None
    preview_url: str | None = None

    def __post_init__(self) -> None:
        if not self.external_id:
            raise ValidationError("Track DTO without external id")

    @property
    def primary_artist_id(self) -> str | None:
        return self.artist_external_ids[0] if self.artist_external_ids else None


@dataclass(frozen=True)
class NowPlayingDTO:
    """What the provider reports as currently playing for a user."""

    track_external_id: str
    title: str
    artist_names: list[str]
    album_cover_url: str | None
    is_playing: bool
    progress_ms: int | None
    duration_ms: int | None

    @property
    def artist_name(self) -> str:
        return ", ".join(self.artist_names)


__all__ = [
    "AlbumDTO",
    "ArtistDTO",
    "NowPlayingDTO",
    "TokenGrant",
    "TrackDTO",
]
