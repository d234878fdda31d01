"""Tests for MetadataResolver (lookup, else fetch, else upsert)."""

import asyncio

import pytest
from sqlalchemy import func, select

from earshot.application.services.metadata_resolver import MetadataResolver
from earshot.application.services.token_manager import AppTokenCache
from earshot.domain.dtos import TokenGrant, TrackDTO
from earshot.domain.exceptions import MetadataFetchError, ProviderUnreachable
from earshot.infrastructure.persistence.database import Database
from earshot.infrastructure.persistence.models import TrackModel
from earshot.infrastructure.persistence.repositories import CatalogRepository


@pytest.fixture
def resolver(db: Database, provider, clock) -> MetadataResolver:
    return MetadataResolver(db.session_scope, provider, AppTokenCache(provider, clock=clock))


async def _count_tracks(db: Database, spotify_id: str) -> int:
    async with db.session_scope() as session:
        stmt = select(func.count()).select_from(TrackModel).where(
            TrackModel.spotify_id == spotify_id
        )
        return int((await session.execute(stmt)).scalar_one())


class TestEnsureTrack:
    async def test_new_track_fetches_artist_album_and_track(
        self, resolver: MetadataResolver, provider, db: Database
    ) -> None:
        provider.add_track("t1", title="Blue in Green", artist_id="a1", album_id="al1")

        track = await resolver.ensure_track("t1")

        assert track.external_id == "t1"
        assert track.title == "Blue in Green"
        fetched = [call for call, _ in provider.calls if call.startswith("get_")]
        assert fetched == ["get_track", "get_artist", "get_album"]
        async with db.session_scope() as session:
            catalog = CatalogRepository(session)
            assert await catalog.get_artist_by_spotify_id("a1") is not None
            assert await catalog.get_album_by_spotify_id("al1") is not None

    async def test_cached_track_makes_no_provider_call(
        self, resolver: MetadataResolver, provider
    ) -> None:
        provider.add_track("t1")
        first = await resolver.ensure_track("t1")
        provider.calls.clear()

        second = await resolver.ensure_track("t1")

        assert second.id == first.id
        assert provider.calls == []

    async def test_resolving_twice_creates_one_row(
        self, resolver: MetadataResolver, provider, db: Database
    ) -> None:
        provider.add_track("t1")

        await resolver.ensure_track("t1")
        await resolver.ensure_track("t1")

        assert await _count_tracks(db, "t1") == 1

    async def test_concurrent_resolution_creates_one_row(
        self, resolver: MetadataResolver, provider, db: Database
    ) -> None:
        provider.add_track("t1")

        refs = await asyncio.gather(*(resolver.ensure_track("t1") for _ in range(4)))

        assert len({ref.id for ref in refs}) == 1
        assert await _count_tracks(db, "t1") == 1

    async def test_shared_artist_is_fetched_once(
        self, resolver: MetadataResolver, provider
    ) -> None:
        provider.add_track("t1", artist_id="a1", album_id="al1")
        provider.add_track("t2", artist_id="a1", album_id="al1")

        await resolver.ensure_track("t1")
        await resolver.ensure_track("t2")

        assert provider.count("get_artist") == 1
        assert provider.count("get_album") == 1

    async def test_track_without_album(self, resolver: MetadataResolver, provider) -> None:
        provider.add_track("single", album_id=None)

        track = await resolver.ensure_track("single")

        assert track.external_id == "single"
        assert provider.count("get_album") == 0

    async def test_track_fetch_failure_raises(
        self, resolver: MetadataResolver, provider, db: Database
    ) -> None:
        provider.add_track("t1")
        provider.failing_ids.add("t1")

        with pytest.raises(MetadataFetchError):
            await resolver.ensure_track("t1")
        assert await _count_tracks(db, "t1") == 0

    async def test_album_failure_aborts_track(
        self, resolver: MetadataResolver, provider, db: Database
    ) -> None:
        provider.add_track("t1", artist_id="a1", album_id="al1")
        provider.failing_ids.add("al1")

        with pytest.raises(MetadataFetchError):
            await resolver.ensure_track("t1")

        assert await _count_tracks(db, "t1") == 0
        # The artist was stored before the album failed and stays, it's a valid row.
        async with db.session_scope() as session:
            assert await CatalogRepository(session).get_artist_by_spotify_id("a1") is not None

    async def test_app_token_failure_becomes_metadata_error(
        self, resolver: MetadataResolver, provider
    ) -> None:
        provider.add_track("t1")
        provider.app_error = ProviderUnreachable("accounts service down")

        with pytest.raises(MetadataFetchError):
            await resolver.ensure_track("t1")

    async def test_app_token_is_reused_across_lookups(
        self, resolver: MetadataResolver, provider
    ) -> None:
        provider.add_track("t1")

        await resolver.ensure_track("t1")

        assert provider.count("client_credentials_token") == 1

    async def test_rejected_app_token_is_dropped(
        self, resolver: MetadataResolver, provider
    ) -> None:
        # Hey future me - a revoked app token (client secret rotated) must not keep failing
        # every lookup until its hour is up. One failed lookup, then a fresh grant.
        provider.add_track("t1")
        provider.app_grant = TokenGrant("revoked", None, 3600)
        provider.rejected_app_tokens.add("revoked")

        with pytest.raises(MetadataFetchError):
            await resolver.ensure_track("t1")

        provider.app_grant = TokenGrant("fresh", None, 3600)
        track = await resolver.ensure_track("t1")

        assert track.external_id == "t1"
        assert provider.count("client_credentials_token") == 2


class TestCatalogUpsert:
    """ON CONFLICT patching keeps existing values for missing fields."""

    async def test_sparse_payload_does_not_erase_fields(self, db: Database) -> None:
        full = TrackDTO("t1", "Song", duration_ms=1000, preview_url="https://preview")
        sparse = TrackDTO("t1", "Song (Remastered)")

        async with db.session_scope() as session:
            await CatalogRepository(session).upsert_track(full, None, None)
        async with db.session_scope() as session:
            ref = await CatalogRepository(session).upsert_track(sparse, None, None)

        assert ref.title == "Song (Remastered)"
        async with db.session_scope() as session:
            row = (
                await session.execute(
                    select(TrackModel.duration_ms, TrackModel.preview_url).where(
                        TrackModel.spotify_id == "t1"
                    )
                )
            ).one()
        assert row.duration_ms == 1000
        assert row.preview_url == "https://preview"
