"""Repository implementations for data access."""

from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import Select, delete, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from earshot.domain.dtos import AlbumDTO, ArtistDTO, TrackDTO
from earshot.domain.entities import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    UNKNOWN_SONG,
    AlbumRef,
    ArtistRef,
    HistoryEntry,
    ListeningEvent,
    Platform,
    PlatformAccount,
    TrackRef,
    User,
    UserSummary,
)
from earshot.domain.exceptions import ConfigurationError, NotFoundError

from .models import (
    AlbumModel,
    ArtistModel,
    FollowEdgeModel,
    ListeningEventModel,
    PlatformAccountModel,
    TrackModel,
    UserModel,
    ensure_utc_aware,
    new_id,
    utc_now,
)


def _dialect_insert(session: AsyncSession) -> Any:
    """Return the dialect's insert() that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        raise ConfigurationError(f"Unsupported database dialect for upserts: {dialect}")
    return insert


RefT = TypeVar("RefT", ArtistRef, AlbumRef, TrackRef)


def _upserted(ref: RefT | None, entity_type: str, dto: ArtistDTO | AlbumDTO | TrackDTO) -> RefT:
    """Re-read after an upsert. Only a concurrent delete can make the row vanish."""
    if ref is None:
        raise NotFoundError(entity_type, dto.external_id)
    return ref


def _to_user(model: UserModel) -> User:
    return User(
        id=model.id,
        external_id=model.external_id,
        username=model.username,
        display_name=model.display_name,
        email=model.email,
        profile_picture_url=model.profile_picture_url,
        current_track_id=model.current_track_id,
        last_activity_at=(
            ensure_utc_aware(model.last_activity_at) if model.last_activity_at else None
        ),
    )


def _to_summary(model: UserModel) -> UserSummary:
    return UserSummary(
        id=model.id,
        username=model.username,
        display_name=model.display_name,
        profile_picture_url=model.profile_picture_url,
    )


class UserRepository:
    """Repository for users and their now-playing pointer."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, user_id: str) -> User | None:
        model = await self.session.get(UserModel, user_id)
        return _to_user(model) if model else None

    async def get_by_external_id(self, external_id: str) -> User | None:
        stmt = select(UserModel).where(UserModel.external_id == external_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_user(model) if model else None

    # Hey future me - this mirrors the identity provider's "user created/updated" webhook.
    # A new user gets the handle we were given, an EXISTING user keeps theirs (handles are
    # user-chosen later and must not be clobbered by a profile sync).
    async def upsert_from_identity(
        self,
        external_id: str,
        username: str,
        email: str | None = None,
        display_name: str | None = None,
        profile_picture_url: str | None = None,
    ) -> User:
        stmt = select(UserModel).where(UserModel.external_id == external_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model:
            model.email = email
            model.display_name = display_name
            model.profile_picture_url = profile_picture_url
        else:
            model = UserModel(
                id=new_id(),
                external_id=external_id,
                username=username,
                email=email,
                display_name=display_name,
                profile_picture_url=profile_picture_url,
            )
            self.session.add(model)
        await self.session.flush()
        return _to_user(model)

    async def set_current_track(
        self, user_id: str, track_id: str | None, touched_at: datetime | None
    ) -> bool:
        """Set (or clear) the pointer; touched_at=None leaves last_activity_at alone."""
        values: dict[str, Any] = {"current_track_id": track_id}
        if touched_at is not None:
            values["last_activity_at"] = touched_at
        stmt = update(UserModel).where(UserModel.id == user_id).values(**values)
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def get_summaries(self, user_ids: list[str]) -> list[UserSummary]:
        if not user_ids:
            return []
        stmt = select(UserModel).where(UserModel.id.in_(user_ids))
        result = await self.session.execute(stmt)
        by_id = {m.id: _to_summary(m) for m in result.scalars().all()}
        return [by_id[uid] for uid in user_ids if uid in by_id]

    async def search(self, query: str, limit: int = 10) -> list[UserSummary]:
        needle = query.lower()
        stmt = (
            select(UserModel)
            .where(
                or_(
                    func.lower(UserModel.username).contains(needle, autoescape=True),
                    func.lower(UserModel.display_name).contains(needle, autoescape=True),
                )
            )
            .order_by(UserModel.username)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [_to_summary(m) for m in result.scalars().all()]


def _to_account(model: PlatformAccountModel) -> PlatformAccount:
    return PlatformAccount(
        id=model.id,
        user_id=model.user_id,
        platform=Platform(model.platform),
        platform_user_id=model.platform_user_id,
        access_token_cipher=model.access_token_cipher,
        refresh_token_cipher=model.refresh_token_cipher,
        expires_at=model.expires_at,
        scope=model.scope,
        is_valid=model.is_valid,
        last_error=model.last_error,
        last_refreshed_at=(
            ensure_utc_aware(model.last_refreshed_at) if model.last_refreshed_at else None
        ),
    )


class PlatformAccountRepository:
    """Repository for linked platform accounts (sealed OAuth tokens).

    Only the token lifecycle manager writes through this repository.

    Key methods:
    - upsert_linked(): store tokens after the OAuth callback
    - update_after_refresh(): store a refreshed access token
    - mark_invalid(): flag the account after the provider rejected the refresh grant
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, account_id: str) -> PlatformAccount | None:
        model = await self.session.get(PlatformAccountModel, account_id)
        return _to_account(model) if model else None

    async def get_for_user(self, user_id: str, platform: Platform) -> PlatformAccount | None:
        stmt = select(PlatformAccountModel).where(
            PlatformAccountModel.user_id == user_id,
            PlatformAccountModel.platform == platform.value,
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return _to_account(model) if model else None

    # Hey future me - only VALID accounts are polled. Invalid ones wait for the user to
    # re-link, polling them would just raise RefreshTokenInvalid every minute.
    async def list_pollable(self, platform: Platform) -> list[PlatformAccount]:
        stmt = (
            select(PlatformAccountModel)
            .where(
                PlatformAccountModel.platform == platform.value,
                PlatformAccountModel.is_valid == True,  # noqa: E712
            )
            .order_by(PlatformAccountModel.user_id)
        )
        result = await self.session.execute(stmt)
        return [_to_account(m) for m in result.scalars().all()]

    # Listen up - OAuth callback calls this after successful auth! UPSERT on
    # (user_id, platform): update if linked before, else create. Resets is_valid and errors.
    async def upsert_linked(
        self,
        user_id: str,
        platform: Platform,
        platform_user_id: str | None,
        access_token_cipher: str,
        refresh_token_cipher: str,
        expires_at: int,
        scope: str | None,
    ) -> PlatformAccount:
        stmt = select(PlatformAccountModel).where(
            PlatformAccountModel.user_id == user_id,
            PlatformAccountModel.platform == platform.value,
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        now = utc_now()

        if model:
            model.access_token_cipher = access_token_cipher
            model.refresh_token_cipher = refresh_token_cipher
            model.expires_at = expires_at
            model.scope = scope
            if platform_user_id:
                model.platform_user_id = platform_user_id
            model.is_valid = True
            model.last_error = None
            model.last_error_at = None
            model.last_refreshed_at = now
        else:
            model = PlatformAccountModel(
                id=new_id(),
                user_id=user_id,
                platform=platform.value,
                platform_user_id=platform_user_id or "",
                access_token_cipher=access_token_cipher,
                refresh_token_cipher=refresh_token_cipher,
                expires_at=expires_at,
                scope=scope,
                is_valid=True,
                last_refreshed_at=now,
            )
            self.session.add(model)

        await self.session.flush()
        return _to_account(model)

    async def update_after_refresh(
        self,
        account_id: str,
        access_token_cipher: str,
        expires_at: int,
        refresh_token_cipher: str | None = None,
    ) -> bool:
        """Store a refreshed access token.

        refresh_token_cipher=None keeps the stored refresh token untouched (the provider
        did not rotate it).
        """
        model = await self.session.get(PlatformAccountModel, account_id)
        if not model:
            return False

        model.access_token_cipher = access_token_cipher
        model.expires_at = expires_at
        model.last_refreshed_at = utc_now()
        model.is_valid = True
        model.last_error = None
        model.last_error_at = None
        if refresh_token_cipher is not None:
            model.refresh_token_cipher = refresh_token_cipher
        return True

    async def mark_invalid(self, account_id: str, error_message: str) -> bool:
        model = await self.session.get(PlatformAccountModel, account_id)
        if not model:
            return False
        model.is_valid = False
        model.last_error = error_message
        model.last_error_at = utc_now()
        return True


class CatalogRepository:
    """Repository for artists, albums and tracks keyed by Spotify id.

    Hey future me - every write here is INSERT ... ON CONFLICT (spotify_id) DO UPDATE.
    Two pollers resolving the same new track at the same moment both "win", the second
    one just patches the row the first created. Never switch this back to
    select-then-insert, that's exactly the race that produced duplicate tracks.
    Nullable fields are patched with COALESCE so a sparse payload never erases data.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_artist_by_spotify_id(self, spotify_id: str) -> ArtistRef | None:
        stmt = select(ArtistModel).where(ArtistModel.spotify_id == spotify_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return ArtistRef(model.id, spotify_id, model.name) if model else None

    async def get_album_by_spotify_id(self, spotify_id: str) -> AlbumRef | None:
        stmt = select(AlbumModel).where(AlbumModel.spotify_id == spotify_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return AlbumRef(model.id, spotify_id, model.title) if model else None

    async def get_track_by_spotify_id(self, spotify_id: str) -> TrackRef | None:
        stmt = select(TrackModel).where(TrackModel.spotify_id == spotify_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return TrackRef(model.id, spotify_id, model.title) if model else None

    async def upsert_artist(self, dto: ArtistDTO) -> ArtistRef:
        insert = _dialect_insert(self.session)
        stmt = insert(ArtistModel).values(
            id=new_id(),
            spotify_id=dto.external_id,
            name=dto.name,
            image_url=dto.image_url,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[ArtistModel.spotify_id],
            set_={
                "name": stmt.excluded.name,
                "image_url": func.coalesce(stmt.excluded.image_url, ArtistModel.image_url),
                "updated_at": utc_now(),
            },
        )
        await self.session.execute(stmt)
        return _upserted(await self.get_artist_by_spotify_id(dto.external_id), "Artist", dto)

    async def upsert_album(self, dto: AlbumDTO, artist_id: str | None) -> AlbumRef:
        insert = _dialect_insert(self.session)
        stmt = insert(AlbumModel).values(
            id=new_id(),
            spotify_id=dto.external_id,
            title=dto.title,
            artist_id=artist_id,
            release_date=dto.release_date,
            cover_image_url=dto.cover_image_url,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[AlbumModel.spotify_id],
            set_={
                "title": stmt.excluded.title,
                "artist_id": func.coalesce(stmt.excluded.artist_id, AlbumModel.artist_id),
                "release_date": func.coalesce(
                    stmt.excluded.release_date, AlbumModel.release_date
                ),
                "cover_image_url": func.coalesce(
                    stmt.excluded.cover_image_url, AlbumModel.cover_image_url
                ),
                "updated_at": utc_now(),
            },
        )
        await self.session.execute(stmt)
        return _upserted(await self.get_album_by_spotify_id(dto.external_id), "Album", dto)

    async def upsert_track(
        self, dto: TrackDTO, artist_id: str | None, album_id: str | None
    ) -> TrackRef:
        insert = _dialect_insert(self.session)
        stmt = insert(TrackModel).values(
            id=new_id(),
            spotify_id=dto.external_id,
            title=dto.title,
            artist_id=artist_id,
            album_id=album_id,
            duration_ms=dto.duration_ms,
            preview_url=dto.preview_url,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[TrackModel.spotify_id],
            set_={
                "title": stmt.excluded.title,
                "artist_id": func.coalesce(stmt.excluded.artist_id, TrackModel.artist_id),
                "album_id": func.coalesce(stmt.excluded.album_id, TrackModel.album_id),
                "duration_ms": func.coalesce(
                    stmt.excluded.duration_ms, TrackModel.duration_ms
                ),
                "preview_url": func.coalesce(
                    stmt.excluded.preview_url, TrackModel.preview_url
                ),
                "updated_at": utc_now(),
            },
        )
        await self.session.execute(stmt)
        return _upserted(await self.get_track_by_spotify_id(dto.external_id), "Track", dto)

    async def search_tracks(self, query: str, limit: int = 10) -> list[TrackRef]:
        stmt = (
            select(TrackModel)
            .where(func.lower(TrackModel.title).contains(query.lower(), autoescape=True))
            .order_by(TrackModel.title)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            TrackRef(m.id, m.spotify_id or m.apple_music_id or "", m.title)
            for m in result.scalars().all()
        ]

    async def search_artists(self, query: str, limit: int = 10) -> list[ArtistRef]:
        stmt = (
            select(ArtistModel)
            .where(func.lower(ArtistModel.name).contains(query.lower(), autoescape=True))
            .order_by(ArtistModel.name)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            ArtistRef(m.id, m.spotify_id or m.apple_music_id or "", m.name)
            for m in result.scalars().all()
        ]


class ListeningEventRepository:
    """Repository for the append-only listening history."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_latest_for_user(self, user_id: str) -> ListeningEvent | None:
        stmt = (
            select(ListeningEventModel)
            .where(ListeningEventModel.user_id == user_id)
            .order_by(desc(ListeningEventModel.occurred_at))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        if not model:
            return None
        return ListeningEvent(
            id=model.id,
            user_id=model.user_id,
            track_id=model.track_id,
            platform=Platform(model.platform),
            occurred_at=ensure_utc_aware(model.occurred_at),
            listened_duration_ms=model.listened_duration_ms,
        )

    async def append(
        self,
        user_id: str,
        track_id: str,
        platform: Platform,
        occurred_at: datetime,
        listened_duration_ms: int | None = None,
    ) -> str:
        model = ListeningEventModel(
            id=new_id(),
            user_id=user_id,
            track_id=track_id,
            platform=platform.value,
            occurred_at=occurred_at,
            listened_duration_ms=listened_duration_ms,
        )
        self.session.add(model)
        await self.session.flush()
        return model.id

    def _hydrated(self) -> Select[Any]:
        # Outer joins everywhere: a missing catalog row must degrade to "Unknown ...",
        # never hide the event.
        album_artist = aliased(ArtistModel)
        return (
            select(
                ListeningEventModel,
                TrackModel.title,
                func.coalesce(ArtistModel.name, album_artist.name),
                AlbumModel.title,
                AlbumModel.cover_image_url,
                TrackModel.duration_ms,
                TrackModel.preview_url,
                UserModel.username,
                UserModel.display_name,
                UserModel.profile_picture_url,
            )
            .outerjoin(TrackModel, TrackModel.id == ListeningEventModel.track_id)
            .outerjoin(ArtistModel, ArtistModel.id == TrackModel.artist_id)
            .outerjoin(AlbumModel, AlbumModel.id == TrackModel.album_id)
            .outerjoin(album_artist, album_artist.id == AlbumModel.artist_id)
            .outerjoin(UserModel, UserModel.id == ListeningEventModel.user_id)
        )

    async def list_for_user(self, user_id: str, limit: int) -> list[HistoryEntry]:
        stmt = (
            self._hydrated()
            .where(ListeningEventModel.user_id == user_id)
            .order_by(desc(ListeningEventModel.occurred_at))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._to_entry(row) for row in result.all()]

    async def list_for_users(
        self, user_ids: list[str], per_user: int
    ) -> list[HistoryEntry]:
        entries: list[HistoryEntry] = []
        for user_id in user_ids:
            entries.extend(await self.list_for_user(user_id, per_user))
        return entries

    async def list_listeners_of_track(
        self, track_id: str, limit: int
    ) -> list[tuple[UserSummary, datetime]]:
        last_listen = func.max(ListeningEventModel.occurred_at).label("last_listen")
        stmt = (
            select(UserModel, last_listen)
            .join(ListeningEventModel, ListeningEventModel.user_id == UserModel.id)
            .where(ListeningEventModel.track_id == track_id)
            .group_by(UserModel.id)
            .order_by(desc(last_listen))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [(_to_summary(m), ensure_utc_aware(ts)) for m, ts in result.all()]

    @staticmethod
    def _to_entry(row: Any) -> HistoryEntry:
        (
            event,
            title,
            artist_name,
            album_title,
            cover,
            duration_ms,
            preview_url,
            username,
            display_name,
            picture,
        ) = row
        return HistoryEntry(
            event_id=event.id,
            user_id=event.user_id,
            track_id=event.track_id,
            occurred_at=ensure_utc_aware(event.occurred_at),
            platform=Platform(event.platform),
            title=title or UNKNOWN_SONG,
            artist_name=artist_name or UNKNOWN_ARTIST,
            album_title=album_title or UNKNOWN_ALBUM,
            album_cover=cover,
            username=username,
            display_name=display_name,
            profile_picture_url=picture,
            duration_ms=duration_ms,
            preview_url=preview_url,
        )


class FollowRepository:
    """Repository for the directed follow graph."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def exists(self, follower_id: str, following_id: str) -> bool:
        stmt = select(FollowEdgeModel.id).where(
            FollowEdgeModel.follower_id == follower_id,
            FollowEdgeModel.following_id == following_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def add(self, follower_id: str, following_id: str) -> None:
        self.session.add(
            FollowEdgeModel(id=new_id(), follower_id=follower_id, following_id=following_id)
        )
        await self.session.flush()

    async def remove(self, follower_id: str, following_id: str) -> bool:
        stmt = delete(FollowEdgeModel).where(
            FollowEdgeModel.follower_id == follower_id,
            FollowEdgeModel.following_id == following_id,
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def following_ids(self, user_id: str) -> list[str]:
        stmt = (
            select(FollowEdgeModel.following_id)
            .where(FollowEdgeModel.follower_id == user_id)
            .order_by(FollowEdgeModel.created_at)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def follower_ids(self, user_id: str) -> list[str]:
        stmt = (
            select(FollowEdgeModel.follower_id)
            .where(FollowEdgeModel.following_id == user_id)
            .order_by(FollowEdgeModel.created_at)
        )
        return list((await self.session.execute(stmt)).scalars().all())
