"""Search endpoints for users and the local catalog."""

from fastapi import APIRouter, Depends, Query

from earshot.api.dependencies import get_current_user, get_search_service
from earshot.api.schemas import MusicSearchResponse, UserSummaryResponse
from earshot.application.services.search_service import SearchService
from earshot.domain.entities import User

router = APIRouter()


# Short queries are not an error, they just return nothing. The frontend searches on every
# keystroke and shouldn't have to special-case the first two characters.
@router.get("/users", response_model=list[UserSummaryResponse])
async def search_users(
    q: str = Query(default="", max_length=100),
    _: User = Depends(get_current_user),
    service: SearchService = Depends(get_search_service),
) -> list[UserSummaryResponse]:
    users = await service.search_users(q)
    return [UserSummaryResponse.from_entity(u) for u in users]


@router.get("/music", response_model=MusicSearchResponse)
async def search_music(
    q: str = Query(default="", max_length=100),
    _: User = Depends(get_current_user),
    service: SearchService = Depends(get_search_service),
) -> MusicSearchResponse:
    """Tracks and artists already known to earshot (no provider call)."""
    return MusicSearchResponse.from_entity(await service.search_music(q))
