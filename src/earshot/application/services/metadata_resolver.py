"""Makes sure tracks, artists and albums exist locally before anything points at them.

Hey future me - the resolver is "look up, else fetch with the app token, else upsert".
Order matters for a new track: first artist -> album (which ensures ITS first artist) ->
track, so every foreign key points at a row that already exists. A cached track is a
single SELECT and no provider call at all, which is the common case for a user looping
the same album.

Any fetch failure surfaces as MetadataFetchError and aborts the chain. Rows already
upserted by then stay (they're valid catalog rows, just not linked to a track yet).
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from earshot.application.services.token_manager import AppTokenCache, SessionScope
from earshot.domain.dtos import AlbumDTO, ArtistDTO, TrackDTO
from earshot.domain.entities import AlbumRef, ArtistRef, TrackRef
from earshot.domain.exceptions import (
    AccessTokenRejected,
    ConfigurationError,
    MetadataFetchError,
    ProviderUnreachable,
)
from earshot.domain.ports import IStreamingProvider
from earshot.infrastructure.persistence.repositories import CatalogRepository
from earshot.infrastructure.persistence.retry import with_db_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MetadataResolver:
    """Ensures catalog rows exist for provider ids."""

    def __init__(
        self,
        session_scope: SessionScope,
        provider: IStreamingProvider,
        app_tokens: AppTokenCache,
    ) -> None:
        self._session_scope = session_scope
        self._provider = provider
        self._app_tokens = app_tokens

    async def _read(self, query: Callable[[CatalogRepository], Awaitable[T]]) -> T:
        async with self._session_scope() as session:
            return await query(CatalogRepository(session))

    @with_db_retry()
    async def _write(self, command: Callable[[CatalogRepository], Awaitable[T]]) -> T:
        async with self._session_scope() as session:
            return await command(CatalogRepository(session))

    async def _app_token(self, entity_type: str, external_id: str) -> str:
        try:
            return await self._app_tokens.get_app_access_token()
        except (ProviderUnreachable, ConfigurationError) as e:
            raise MetadataFetchError(entity_type, external_id, e.message) from e

    async def _fetch(
        self,
        entity_type: str,
        external_id: str,
        fetch: Callable[[str, str], Awaitable[T]],
    ) -> T:
        token = await self._app_token(entity_type, external_id)
        try:
            return await fetch(token, external_id)
        except AccessTokenRejected as e:
            # Revoked app token: drop it, the next lookup fetches a fresh one
            self._app_tokens.invalidate()
            logger.warning(
                "metadata.app_token_rejected",
                extra={"entity_type": entity_type, "spotify_id": external_id},
            )
            raise MetadataFetchError(entity_type, external_id, e.message) from e
        except ProviderUnreachable as e:
            raise MetadataFetchError(entity_type, external_id, e.message) from e

    async def ensure_artist(self, external_id: str) -> ArtistRef:
        cached = await self._read(lambda repo: repo.get_artist_by_spotify_id(external_id))
        if cached is not None:
            return cached

        dto: ArtistDTO = await self._fetch("artist", external_id, self._provider.get_artist)
        ref = await self._write(lambda repo: repo.upsert_artist(dto))
        logger.debug("metadata.artist_stored", extra={"spotify_id": external_id})
        return ref

    async def ensure_album(self, external_id: str) -> AlbumRef:
        cached = await self._read(lambda repo: repo.get_album_by_spotify_id(external_id))
        if cached is not None:
            return cached

        dto: AlbumDTO = await self._fetch("album", external_id, self._provider.get_album)
        artist_id: str | None = None
        if dto.primary_artist_id:
            artist_id = (await self.ensure_artist(dto.primary_artist_id)).id

        ref = await self._write(lambda repo: repo.upsert_album(dto, artist_id))
        logger.debug("metadata.album_stored", extra={"spotify_id": external_id})
        return ref

    async def ensure_track(self, external_id: str) -> TrackRef:
        """Return the local track for a provider id, fetching it on first sight.

        Raises:
            MetadataFetchError: provider lookup of the track, its artist or album failed
        """
        cached = await self._read(lambda repo: repo.get_track_by_spotify_id(external_id))
        if cached is not None:
            return cached

        dto: TrackDTO = await self._fetch("track", external_id, self._provider.get_track)
        artist_id: str | None = None
        if dto.primary_artist_id:
            artist_id = (await self.ensure_artist(dto.primary_artist_id)).id
        album_id: str | None = None
        if dto.album_external_id:
            album_id = (await self.ensure_album(dto.album_external_id)).id

        ref = await self._write(lambda repo: repo.upsert_track(dto, artist_id, album_id))
        logger.info(
            "metadata.track_stored",
            extra={"spotify_id": external_id, "track_id": ref.id},
        )
        return ref
