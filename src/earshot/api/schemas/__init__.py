"""API request/response schemas."""

from .listening import AccountStatusResponse, HistoryEntryResponse, NowPlayingResponse
from .social import (
    ArtistHit,
    FriendStatusResponse,
    MusicSearchResponse,
    TrackHit,
    TrackListenerResponse,
    UserSummaryResponse,
)

__all__ = [
    "AccountStatusResponse",
    "ArtistHit",
    "FriendStatusResponse",
    "HistoryEntryResponse",
    "MusicSearchResponse",
    "NowPlayingResponse",
    "TrackHit",
    "TrackListenerResponse",
    "UserSummaryResponse",
]
