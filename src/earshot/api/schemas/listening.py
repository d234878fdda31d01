"""API schemas for now-playing, history and account status."""

from datetime import datetime

from pydantic import BaseModel, Field

from earshot.domain.entities import AccountStatus, HistoryEntry, PlaybackSnapshot


class NowPlayingResponse(BaseModel):
    """What the user is listening to right now."""

    title: str
    artist_name: str
    album_cover: str | None = None
    is_playing: bool
    progress_ms: int | None = None
    duration_ms: int | None = None

    @classmethod
    def from_entity(cls, snapshot: PlaybackSnapshot) -> "NowPlayingResponse":
        return cls(
            title=snapshot.title,
            artist_name=snapshot.artist_name,
            album_cover=snapshot.album_cover,
            is_playing=snapshot.is_playing,
            progress_ms=snapshot.progress_ms,
            duration_ms=snapshot.duration_ms,
        )


class HistoryEntryResponse(BaseModel):
    """One hydrated listening event."""

    event_id: str
    user_id: str
    track_id: str
    occurred_at: datetime
    platform: str
    title: str
    artist_name: str
    album_title: str
    album_cover: str | None = None
    duration_ms: int | None = None
    preview_url: str | None = None
    username: str | None = None
    display_name: str | None = None
    profile_picture_url: str | None = None

    @classmethod
    def from_entity(cls, entry: HistoryEntry) -> "HistoryEntryResponse":
        return cls(
            event_id=entry.event_id,
            user_id=entry.user_id,
            track_id=entry.track_id,
            occurred_at=entry.occurred_at,
            platform=entry.platform.value,
            title=entry.title,
            artist_name=entry.artist_name,
            album_title=entry.album_title,
            album_cover=entry.album_cover,
            duration_ms=entry.duration_ms,
            preview_url=entry.preview_url,
            username=entry.username,
            display_name=entry.display_name,
            profile_picture_url=entry.profile_picture_url,
        )


class AccountStatusResponse(BaseModel):
    """Link status of one streaming platform."""

    platform: str
    linked: bool
    expires_at: int | None = Field(default=None, description="Access token expiry, epoch ms")
    needs_relink: bool = False

    @classmethod
    def from_entity(cls, platform: str, status: AccountStatus) -> "AccountStatusResponse":
        return cls(
            platform=platform,
            linked=status.linked,
            expires_at=status.expires_at,
            needs_relink=status.needs_relink,
        )
