"""Now-playing and listening history endpoints."""

from fastapi import APIRouter, Depends, Query

from earshot.api.dependencies import (
    get_current_user,
    get_listening_state,
    get_now_playing_service,
)
from earshot.api.schemas import HistoryEntryResponse, NowPlayingResponse
from earshot.application.services.listening_state import (
    HISTORY_LIMIT,
    RECENT_LIMIT,
    ListeningStateStore,
)
from earshot.application.services.now_playing_service import NowPlayingService
from earshot.domain.entities import Platform, User

router = APIRouter()


# Hey future me - this is the on-demand path. It talks to Spotify synchronously and also
# updates the stored pointer/history, so a client polling this endpoint keeps the feed
# fresh even when the background poller is disabled. null body = nothing playing.
@router.get("/current", response_model=NowPlayingResponse | None)
async def get_current_playing(
    platform: Platform = Query(default=Platform.SPOTIFY),
    user: User = Depends(get_current_user),
    service: NowPlayingService = Depends(get_now_playing_service),
) -> NowPlayingResponse | None:
    """What the caller is listening to right now."""
    snapshot = await service.get_current_playing(user.id, platform)
    if snapshot is None:
        return None
    return NowPlayingResponse.from_entity(snapshot)


@router.get("/history", response_model=list[HistoryEntryResponse])
async def get_listening_history(
    limit: int = Query(default=HISTORY_LIMIT, ge=1, le=200),
    user: User = Depends(get_current_user),
    state: ListeningStateStore = Depends(get_listening_state),
) -> list[HistoryEntryResponse]:
    """The caller's own listening history, newest first."""
    entries = await state.get_listening_history(user.id, user.id, limit)
    return [HistoryEntryResponse.from_entity(e) for e in entries]


@router.get("/users/{user_id}/recent", response_model=list[HistoryEntryResponse])
async def get_recently_listened(
    user_id: str,
    limit: int = Query(default=RECENT_LIMIT, ge=1, le=50),
    _: User = Depends(get_current_user),
    state: ListeningStateStore = Depends(get_listening_state),
) -> list[HistoryEntryResponse]:
    """Any user's last few listens (public)."""
    entries = await state.get_recently_listened(user_id, limit)
    return [HistoryEntryResponse.from_entity(e) for e in entries]
