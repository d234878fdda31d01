"""Application lifecycle management for startup and shutdown tasks.

The lifespan builds every long-lived object exactly once and parks it on app.state:

    settings, db, vault, spotify_client, app_tokens, token_manager, metadata_resolver,
    listening_state, now_playing_service, social_service, search_service,
    now_playing_worker (None when polling is disabled)

The API dependencies only read from app.state, nothing below the routers reads env vars.
"""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from earshot.application.services import (
    AppTokenCache,
    CredentialVault,
    ListeningStateStore,
    MetadataResolver,
    NowPlayingService,
    SearchService,
    SocialService,
    TokenLifecycleManager,
)
from earshot.application.workers import NowPlayingWorker
from earshot.config import Settings, get_settings
from earshot.domain.entities import Platform
from earshot.domain.ports import IStreamingProvider
from earshot.infrastructure.integrations import SpotifyClient
from earshot.infrastructure.observability import configure_logging
from earshot.infrastructure.persistence import Database

logger = logging.getLogger(__name__)


def build_services(
    app: FastAPI,
    settings: Settings,
    db: Database,
    spotify: IStreamingProvider | None = None,
) -> None:
    """Wire the core services onto app.state.

    Tests pass their own provider, production builds the real Spotify client.
    """
    vault = CredentialVault(settings.security.encryption_key)
    if not vault.is_configured:
        # Not fatal: read-only endpoints still work, linking/polling fails loudly per user.
        logger.warning("SECURITY__ENCRYPTION_KEY is not set, stored tokens cannot be used")

    if spotify is None:
        spotify = SpotifyClient(settings.spotify)
        if not settings.spotify.is_configured:
            logger.warning("Spotify client credentials are not configured")

    providers = {Platform.SPOTIFY: spotify}
    refresh_skew = timedelta(seconds=settings.polling.refresh_skew_seconds)

    app_tokens = AppTokenCache(spotify, refresh_skew=refresh_skew)
    token_manager = TokenLifecycleManager(
        db.session_scope, vault, providers, refresh_skew=refresh_skew
    )
    metadata_resolver = MetadataResolver(db.session_scope, spotify, app_tokens)
    listening_state = ListeningStateStore(
        db.session_scope,
        coalesce_window=timedelta(seconds=settings.polling.coalesce_window_seconds),
    )

    app.state.settings = settings
    app.state.db = db
    app.state.vault = vault
    app.state.spotify_client = spotify
    app.state.app_tokens = app_tokens
    app.state.token_manager = token_manager
    app.state.metadata_resolver = metadata_resolver
    app.state.listening_state = listening_state
    app.state.now_playing_service = NowPlayingService(
        token_manager,
        listening_state,
        metadata_resolver,
        providers,
        settings=settings.polling,
    )
    app.state.social_service = SocialService(db.session_scope)
    app.state.search_service = SearchService(db.session_scope)
    app.state.now_playing_worker = None


# Hey future me, this is the FastAPI lifespan. Startup wires services, then starts the
# poller (if enabled). The try/finally ensures shutdown runs in reverse order even when
# startup blew up halfway: worker first (it uses the client and the DB), then the HTTP
# client, then the engine.
def make_lifespan(
    settings: Settings | None = None,
) -> Callable[[FastAPI], AbstractAsyncContextManager[None]]:
    """Build the lifespan context manager, optionally with injected settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        app_settings = settings or get_settings()
        configure_logging(
            log_level=app_settings.log_level,
            json_format=app_settings.observability.log_json_format,
            app_name=app_settings.app_name,
        )
        logger.info("Starting application: %s", app_settings.app_name)

        db = Database(app_settings)
        try:
            build_services(app, app_settings, db)
            logger.info("Database initialized: %s", db.dialect_name)

            if app_settings.polling.enabled:
                worker = NowPlayingWorker(
                    app.state.now_playing_service,
                    interval_seconds=app_settings.polling.interval_seconds,
                )
                await worker.start()
                app.state.now_playing_worker = worker
            else:
                logger.info("Now-playing polling disabled (POLLING__ENABLED=false)")

            yield
        finally:
            logger.info("Shutting down application")
            worker = getattr(app.state, "now_playing_worker", None)
            if worker is not None:
                await worker.stop()
            spotify = getattr(app.state, "spotify_client", None)
            if spotify is not None:
                await spotify.close()
            await db.close()
            logger.info("Database connection closed")

    return lifespan
