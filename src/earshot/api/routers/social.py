"""Follow graph and friend feed endpoints."""

from fastapi import APIRouter, Depends, status

from earshot.api.dependencies import get_current_user, get_social_service
from earshot.api.schemas import (
    FriendStatusResponse,
    HistoryEntryResponse,
    TrackListenerResponse,
    UserSummaryResponse,
)
from earshot.application.services.social_service import SocialService
from earshot.domain.entities import User

router = APIRouter()


@router.post("/follow/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def follow_user(
    user_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> None:
    await service.follow(user.id, user_id)


@router.delete("/follow/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unfollow_user(
    user_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> None:
    await service.unfollow(user.id, user_id)


@router.get("/following", response_model=list[UserSummaryResponse])
async def get_following(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> list[UserSummaryResponse]:
    users = await service.get_following(user.id, user.id)
    return [UserSummaryResponse.from_entity(u) for u in users]


@router.get("/followers", response_model=list[UserSummaryResponse])
async def get_followers(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> list[UserSummaryResponse]:
    users = await service.get_followers(user.id, user.id)
    return [UserSummaryResponse.from_entity(u) for u in users]


@router.get("/status/{user_id}", response_model=FriendStatusResponse)
async def get_friend_status(
    user_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> FriendStatusResponse:
    """Follow relationship between the caller and another user."""
    return FriendStatusResponse.from_entity(await service.get_friend_status(user.id, user_id))


@router.get("/feed", response_model=list[HistoryEntryResponse])
async def get_friend_feed(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> list[HistoryEntryResponse]:
    """Latest listens of everyone the caller follows."""
    entries = await service.get_friend_feed(user.id, user.id)
    return [HistoryEntryResponse.from_entity(e) for e in entries]


@router.get("/tracks/{track_id}/listeners", response_model=list[TrackListenerResponse])
async def get_track_listeners(
    track_id: str,
    _: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> list[TrackListenerResponse]:
    listeners = await service.get_track_listeners(track_id)
    return [TrackListenerResponse.from_entity(listener) for listener in listeners]
