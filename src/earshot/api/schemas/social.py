"""API schemas for the follow graph and search."""

from datetime import datetime

from pydantic import BaseModel

from earshot.application.services.social_service import TrackListener
from earshot.domain.entities import (
    ArtistRef,
    FriendStatus,
    MusicSearchResult,
    TrackRef,
    UserSummary,
)


class UserSummaryResponse(BaseModel):
    id: str
    username: str
    display_name: str | None = None
    profile_picture_url: str | None = None

    @classmethod
    def from_entity(cls, user: UserSummary) -> "UserSummaryResponse":
        return cls(
            id=user.id,
            username=user.username,
            display_name=user.display_name,
            profile_picture_url=user.profile_picture_url,
        )


class FriendStatusResponse(BaseModel):
    is_following: bool
    is_followed_by: bool
    is_mutual: bool

    @classmethod
    def from_entity(cls, status: FriendStatus) -> "FriendStatusResponse":
        return cls(
            is_following=status.is_following,
            is_followed_by=status.is_followed_by,
            is_mutual=status.is_mutual,
        )


class TrackListenerResponse(BaseModel):
    user: UserSummaryResponse
    last_listened_at: datetime

    @classmethod
    def from_entity(cls, listener: TrackListener) -> "TrackListenerResponse":
        return cls(
            user=UserSummaryResponse.from_entity(listener.user),
            last_listened_at=listener.last_listened_at,
        )


class TrackHit(BaseModel):
    id: str
    external_id: str
    title: str

    @classmethod
    def from_entity(cls, track: TrackRef) -> "TrackHit":
        return cls(id=track.id, external_id=track.external_id, title=track.title)


class ArtistHit(BaseModel):
    id: str
    external_id: str
    name: str

    @classmethod
    def from_entity(cls, artist: ArtistRef) -> "ArtistHit":
        return cls(id=artist.id, external_id=artist.external_id, name=artist.name)


class MusicSearchResponse(BaseModel):
    tracks: list[TrackHit]
    artists: list[ArtistHit]

    @classmethod
    def from_entity(cls, result: MusicSearchResult) -> "MusicSearchResponse":
        return cls(
            tracks=[TrackHit.from_entity(t) for t in result.tracks],
            artists=[ArtistHit.from_entity(a) for a in result.artists],
        )
