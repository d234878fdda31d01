"""Dependency injection for API endpoints."""

import logging
from typing import Any, cast

from fastapi import Header, HTTPException, Request

from earshot.application.services.listening_state import ListeningStateStore
from earshot.application.services.now_playing_service import NowPlayingService
from earshot.application.services.search_service import SearchService
from earshot.application.services.social_service import SocialService
from earshot.application.services.token_manager import TokenLifecycleManager
from earshot.config import Settings
from earshot.domain.entities import User
from earshot.domain.ports import IStreamingProvider
from earshot.infrastructure.persistence.database import Database
from earshot.infrastructure.persistence.repositories import UserRepository

logger = logging.getLogger(__name__)


# Hey future me, everything long-lived (db, services, worker) is built once in the
# lifespan and parked on app.state. If an attribute is missing, startup went wrong:
# 503 "not ready" is honest, a 500 with AttributeError is not.
def _from_state(request: Request, name: str) -> Any:
    if not hasattr(request.app.state, name):
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return getattr(request.app.state, name)


def get_app_settings(request: Request) -> Settings:
    return cast(Settings, _from_state(request, "settings"))


def get_database(request: Request) -> Database:
    return cast(Database, _from_state(request, "db"))


def get_token_manager(request: Request) -> TokenLifecycleManager:
    return cast(TokenLifecycleManager, _from_state(request, "token_manager"))


def get_now_playing_service(request: Request) -> NowPlayingService:
    return cast(NowPlayingService, _from_state(request, "now_playing_service"))


def get_listening_state(request: Request) -> ListeningStateStore:
    return cast(ListeningStateStore, _from_state(request, "listening_state"))


def get_social_service(request: Request) -> SocialService:
    return cast(SocialService, _from_state(request, "social_service"))


def get_search_service(request: Request) -> SearchService:
    return cast(SearchService, _from_state(request, "search_service"))


def get_spotify_provider(request: Request) -> IStreamingProvider:
    return cast(IStreamingProvider, _from_state(request, "spotify_client"))


# Listen up - authentication itself happens upstream (identity proxy / gateway). It
# forwards the verified subject in X-User-Id and we only map it to our user row.
# Missing header or unknown subject -> 401, never an anonymous fallback. The lookup uses its
# own short session, a request-long transaction would block the poller writes on SQLite.
async def get_current_user(
    request: Request,
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
) -> User:
    """Resolve the calling user from the identity header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    async with get_database(request).session_scope() as session:
        user = await UserRepository(session).get_by_external_id(x_user_id)
    if user is None:
        logger.info("auth.unknown_identity", extra={"external_id": x_user_id})
        raise HTTPException(status_code=401, detail="Unknown user")
    return user
