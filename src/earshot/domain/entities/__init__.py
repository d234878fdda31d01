"""Domain entities."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

UNKNOWN_SONG = "Unknown Song"
UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"


class Platform(str, Enum):
    """Streaming platforms a user can link."""

    SPOTIFY = "spotify"
    APPLE_MUSIC = "apple_music"


@dataclass
class User:
    """A person on earshot.

    The core only reads users and patches current_track_id/last_activity_at.
    Profile editing lives outside this service.
    """

    id: str
    external_id: str
    username: str
    display_name: str | None = None
    email: str | None = None
    profile_picture_url: str | None = None
    current_track_id: str | None = None
    last_activity_at: datetime | None = None


# Hey future me - the token fields here are CIPHERTEXT, never plaintext! Only the token
# manager unseals them and only right before a provider call. expires_at is epoch
# MILLISECONDS (not a datetime) because the refresh rule is plain integer math against
# now_ms + skew and we never want timezone bugs in there.
@dataclass
class PlatformAccount:
    """A user's link to a streaming platform."""

    id: str
    user_id: str
    platform: Platform
    platform_user_id: str
    access_token_cipher: str
    refresh_token_cipher: str
    expires_at: int
    scope: str | None = None
    is_valid: bool = True
    last_error: str | None = None
    last_refreshed_at: datetime | None = None

    def needs_refresh(self, now_ms: int, skew_ms: int) -> bool:
        """True when the access token expires inside the skew window."""
        return self.expires_at < now_ms + skew_ms


@dataclass(frozen=True)
class AccountStatus:
    """Link status shown to the owner of the account."""

    linked: bool
    expires_at: int | None = None
    needs_relink: bool = False


@dataclass(frozen=True)
class ArtistRef:
    id: str
    external_id: str
    name: str


@dataclass(frozen=True)
class AlbumRef:
    id: str
    external_id: str
    title: str


@dataclass(frozen=True)
class TrackRef:
    id: str
    external_id: str
    title: str


@dataclass(frozen=True)
class PlaybackSnapshot:
    """What a user is listening to right now, as returned to the client."""

    title: str
    artist_name: str
    album_cover: str | None
    is_playing: bool
    progress_ms: int | None
    duration_ms: int | None


@dataclass
class ListeningEvent:
    """One history row: a user listened to a track."""

    id: str
    user_id: str
    track_id: str
    platform: Platform
    occurred_at: datetime
    listened_duration_ms: int | None = None


# Yo, HistoryEntry is a ListeningEvent hydrated with track/artist/album names. Missing
# rows fall back to the "Unknown ..." placeholders instead of dropping the event, a
# deleted album must not make someone's history shrink.
@dataclass(frozen=True)
class HistoryEntry:
    event_id: str
    user_id: str
    track_id: str
    occurred_at: datetime
    platform: Platform
    title: str = UNKNOWN_SONG
    artist_name: str = UNKNOWN_ARTIST
    album_title: str = UNKNOWN_ALBUM
    album_cover: str | None = None
    username: str | None = None
    display_name: str | None = None
    profile_picture_url: str | None = None
    duration_ms: int | None = None
    preview_url: str | None = None


@dataclass(frozen=True)
class UserSummary:
    id: str
    username: str
    display_name: str | None = None
    profile_picture_url: str | None = None


@dataclass(frozen=True)
class FriendStatus:
    is_following: bool
    is_followed_by: bool

    @property
    def is_mutual(self) -> bool:
        return self.is_following and self.is_followed_by


@dataclass(frozen=True)
class MusicSearchResult:
    tracks: list[TrackRef] = field(default_factory=list)
    artists: list[ArtistRef] = field(default_factory=list)


@dataclass
class PollSummary:
    """Outcome counters of one scheduled polling cycle."""

    users_total: int = 0
    updated: int = 0
    idle: int = 0
    skipped: int = 0
    failed: int = 0
    timed_out: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def as_dict(self) -> dict[str, int]:
        return {
            "users_total": self.users_total,
            "updated": self.updated,
            "idle": self.idle,
            "skipped": self.skipped,
            "failed": self.failed,
            "timed_out": self.timed_out,
        }


__all__ = [
    "UNKNOWN_ALBUM",
    "UNKNOWN_ARTIST",
    "UNKNOWN_SONG",
    "AccountStatus",
    "AlbumRef",
    "ArtistRef",
    "FriendStatus",
    "HistoryEntry",
    "ListeningEvent",
    "MusicSearchResult",
    "Platform",
    "PlatformAccount",
    "PlaybackSnapshot",
    "PollSummary",
    "TrackRef",
    "User",
    "UserSummary",
]
