"""Streaming account linking (OAuth) and link status."""

import logging
import secrets
from urllib.parse import urlencode

from fastapi import APIRouter, Cookie, Depends, Query
from fastapi.responses import RedirectResponse

from earshot.api.dependencies import (
    get_app_settings,
    get_current_user,
    get_spotify_provider,
    get_token_manager,
)
from earshot.api.schemas import AccountStatusResponse
from earshot.application.services.token_manager import TokenLifecycleManager
from earshot.config import Settings
from earshot.domain.entities import Platform, User
from earshot.domain.exceptions import AuthenticationError, ProviderUnreachable
from earshot.domain.ports import IStreamingProvider

logger = logging.getLogger(__name__)

router = APIRouter()

STATE_COOKIE = "earshot_oauth_state"
STATE_COOKIE_MAX_AGE = 600


def _settings_redirect(settings: Settings, **params: str) -> RedirectResponse:
    base = settings.api.settings_redirect_url
    separator = "&" if "?" in base else "?"
    response = RedirectResponse(url=f"{base}{separator}{urlencode(params)}", status_code=302)
    response.delete_cookie(STATE_COOKIE)
    return response


@router.get("/spotify/authorize")
async def spotify_authorize(
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    provider: IStreamingProvider = Depends(get_spotify_provider),
) -> RedirectResponse:
    """Redirect the browser to the Spotify consent screen.

    The CSRF state lives in a short-lived HttpOnly cookie and is compared on callback.
    """
    state = secrets.token_urlsafe(16)
    url = provider.get_authorization_url(state, settings.spotify.redirect_uri)
    response = RedirectResponse(url=url, status_code=302)
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=STATE_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
    )
    logger.info("auth.authorize_redirect", extra={"user_id": user.id})
    return response


# Hey future me - the callback ALWAYS ends in a redirect back to the settings page, also
# on failure. The browser is mid-OAuth-dance here, a JSON error body would strand the user
# on a blank page. The status/error query params tell the frontend what happened.
@router.get("/spotify/callback")
async def spotify_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    oauth_state: str | None = Cookie(default=None, alias=STATE_COOKIE),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_app_settings),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
) -> RedirectResponse:
    """Finish the OAuth flow and store the sealed tokens."""
    if error:
        logger.info("auth.consent_denied", extra={"user_id": user.id, "error": error})
        return _settings_redirect(settings, status="spotify_failed", error=error)
    if not code:
        return _settings_redirect(settings, status="spotify_failed", error="missing_code")
    if not state or not oauth_state or not secrets.compare_digest(state, oauth_state):
        logger.warning("auth.state_mismatch", extra={"user_id": user.id})
        return _settings_redirect(settings, status="spotify_failed", error="state_mismatch")

    try:
        await token_manager.link_account(
            user.id, Platform.SPOTIFY, code, settings.spotify.redirect_uri
        )
    except (AuthenticationError, ProviderUnreachable) as e:
        logger.warning(
            "auth.link_failed",
            extra={"user_id": user.id, "error_type": type(e).__name__, "error": e.message},
        )
        return _settings_redirect(settings, status="spotify_failed", error=e.message)

    return _settings_redirect(settings, status="spotify_connected")


@router.get("/{platform}/status", response_model=AccountStatusResponse)
async def platform_account_status(
    platform: Platform,
    user: User = Depends(get_current_user),
    token_manager: TokenLifecycleManager = Depends(get_token_manager),
) -> AccountStatusResponse:
    """Whether the caller has linked the platform and whether it needs re-linking."""
    status = await token_manager.get_platform_account_status(user.id, platform)
    return AccountStatusResponse.from_entity(platform.value, status)
