"""Shared fixtures: temp SQLite database, fake streaming provider, fixed clock.

Hey future me - service tests run against a REAL SQLite file (aiosqlite), not mocks.
The upserts use dialect ON CONFLICT and the history uses outer joins, a mocked session
would test nothing. Only the provider is faked, through the IStreamingProvider port.
"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from earshot.application.services.credential_vault import CredentialVault
from earshot.config import DatabaseSettings, PollingSettings, SecuritySettings, Settings
from earshot.domain.dtos import AlbumDTO, ArtistDTO, NowPlayingDTO, TokenGrant, TrackDTO
from earshot.domain.entities import User
from earshot.domain.exceptions import AccessTokenRejected, MetadataFetchError
from earshot.domain.ports import IStreamingProvider
from earshot.infrastructure.persistence.database import Database
from earshot.infrastructure.persistence.repositories import UserRepository

TEST_SECRET = "test-encryption-secret"


class FakeClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeProvider(IStreamingProvider):
    """In-memory provider. Set the attributes to script its answers."""

    def __init__(self) -> None:
        self.auth_grant = TokenGrant("access-initial", "refresh-initial", 3600, scope="s")
        self.auth_error: Exception | None = None
        self.refresh_grant = TokenGrant("access-refreshed", None, 3600)
        self.refresh_error: Exception | None = None
        self.app_grant = TokenGrant("app-token", None, 3600)
        self.app_error: Exception | None = None
        self.profile_id = "spotify-user-1"
        self.profile_error: Exception | None = None
        self.now_playing: NowPlayingDTO | None = None
        self.now_playing_error: Exception | None = None
        self.tracks: dict[str, TrackDTO] = {}
        self.artists: dict[str, ArtistDTO] = {}
        self.albums: dict[str, AlbumDTO] = {}
        self.failing_ids: set[str] = set()
        self.rejected_app_tokens: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def add_track(
        self,
        track_id: str,
        title: str = "Song",
        artist_id: str = "artist-1",
        artist_name: str = "Artist",
        album_id: str | None = "album-1",
        album_title: str = "Album",
    ) -> TrackDTO:
        self.artists[artist_id] = ArtistDTO(artist_id, artist_name)
        if album_id:
            self.albums[album_id] = AlbumDTO(
                album_id, album_title, [artist_id], cover_image_url="https://img/cover.jpg"
            )
        track = TrackDTO(track_id, title, [artist_id], [artist_name], album_id, 200_000)
        self.tracks[track_id] = track
        return track

    def play(self, track_id: str, is_playing: bool = True, progress_ms: int = 1000) -> None:
        track = self.tracks[track_id]
        self.now_playing = NowPlayingDTO(
            track_external_id=track_id,
            title=track.title,
            artist_names=track.artist_names,
            album_cover_url="https://img/cover.jpg",
            is_playing=is_playing,
            progress_ms=progress_ms,
            duration_ms=track.duration_ms,
        )

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    def get_authorization_url(self, state: str, redirect_uri: str) -> str:
        return f"https://accounts.example/authorize?state={state}&redirect_uri={redirect_uri}"

    async def exchange_auth_code(self, code: str, redirect_uri: str) -> TokenGrant:
        self.calls.append(("exchange_auth_code", code))
        if self.auth_error:
            raise self.auth_error
        return self.auth_grant

    async def exchange_refresh_token(self, refresh_token: str) -> TokenGrant:
        self.calls.append(("exchange_refresh_token", refresh_token))
        if self.refresh_error:
            raise self.refresh_error
        return self.refresh_grant

    async def client_credentials_token(self) -> TokenGrant:
        self.calls.append(("client_credentials_token", ""))
        if self.app_error:
            raise self.app_error
        return self.app_grant

    async def get_current_user_id(self, access_token: str) -> str:
        self.calls.append(("get_current_user_id", access_token))
        if self.profile_error:
            raise self.profile_error
        return self.profile_id

    async def get_now_playing(self, access_token: str) -> NowPlayingDTO | None:
        self.calls.append(("get_now_playing", access_token))
        if self.now_playing_error:
            raise self.now_playing_error
        return self.now_playing

    def _lookup(  # type: ignore[no-untyped-def]
        self, entity_type: str, table: dict, app_token: str, external_id: str
    ):
        self.calls.append((f"get_{entity_type}", external_id))
        if app_token in self.rejected_app_tokens:
            raise AccessTokenRejected(f"app token rejected ({entity_type})")
        if external_id in self.failing_ids or external_id not in table:
            raise MetadataFetchError(entity_type, external_id, "HTTP 404")
        return table[external_id]

    async def get_track(self, app_token: str, external_id: str) -> TrackDTO:
        return self._lookup("track", self.tracks, app_token, external_id)

    async def get_artist(self, app_token: str, external_id: str) -> ArtistDTO:
        return self._lookup("artist", self.artists, app_token, external_id)

    async def get_album(self, app_token: str, external_id: str) -> AlbumDTO:
        return self._lookup("album", self.albums, app_token, external_id)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the developer's env and .env file."""
    return Settings(
        _env_file=None,
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"),
        security=SecuritySettings(encryption_key=TEST_SECRET),
        polling=PollingSettings(enabled=False, user_timeout_seconds=2.0),
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncGenerator[Database, None]:
    database = Database(settings)
    await database.create_tables()
    yield database
    await database.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_SECRET)


async def create_user(db: Database, username: str, external_id: str | None = None) -> User:
    async with db.session_scope() as session:
        return await UserRepository(session).upsert_from_identity(
            external_id=external_id or f"idp|{username}",
            username=username,
            display_name=username.title(),
        )


@pytest.fixture
async def alice(db: Database) -> User:
    return await create_user(db, "alice")


@pytest.fixture
async def bob(db: Database) -> User:
    return await create_user(db, "bob")


@pytest.fixture
def make_user(db: Database):  # type: ignore[no-untyped-def]
    async def _make(username: str, external_id: str | None = None) -> User:
        return await create_user(db, username, external_id)

    return _make
