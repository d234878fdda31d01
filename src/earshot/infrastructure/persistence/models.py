"""SQLAlchemy ORM models for earshot."""

import uuid
from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Hey future me, utc_now() ensures ALL timestamps are UTC! Never use datetime.now() without
# timezone - that's a "naive" datetime and breaks comparisons once servers sit in different
# timezones.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# Hey future me - SQLite doesn't preserve timezone info! UTC datetimes come back naive.
# ALWAYS run DB datetimes through this before comparing with datetime.now(UTC), otherwise
# you get "can't compare offset-naive and offset-aware" TypeError.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models.

    All models inherit from this to use the same metadata registry.
    """

    pass


# Listen up, users are mirrored from the identity provider (external_id is its subject).
# current_track_id + last_activity_at are the denormalized "what is X playing" pointer,
# written ONLY by the listening state store. ondelete=SET NULL so purging a track never
# breaks a user row.
class UserModel(Base):
    """SQLAlchemy model for a user."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    external_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    profile_picture_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    current_track_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="SET NULL"), nullable=True
    )
    last_activity_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (Index("ix_users_username_lower", func.lower(username)),)


class PlatformAccountModel(Base):
    """Linked streaming platform account with sealed OAuth tokens.

    The is_valid flag flips to False when the provider rejects the refresh grant.
    Rows are never deleted by the token manager, re-linking flips the flag back.
    """

    __tablename__ = "platform_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    # 'spotify' | 'apple_music' (plain string, not enum - SQLite compatibility)
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    platform_user_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Sealed by CredentialVault - base64(nonce || ciphertext || tag)
    access_token_cipher: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token_cipher: Mapped[str] = mapped_column(Text, nullable=False)
    # Epoch milliseconds
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_valid: Mapped[bool] = mapped_column(default=True, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    last_refreshed_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_platform_accounts_user_platform"),
        Index("ix_platform_accounts_platform_valid", "platform", "is_valid"),
    )


# Hey future me - catalog rows are keyed by the provider ids (spotify_id / apple_music_id),
# both unique and nullable. The metadata resolver upserts with INSERT ... ON CONFLICT on
# spotify_id so two users starting the same song at once can't create twin rows.
class ArtistModel(Base):
    """SQLAlchemy model for an artist."""

    __tablename__ = "artists"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    spotify_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    apple_music_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True
    )
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (Index("ix_artists_name_lower", func.lower(name)),)


class AlbumModel(Base):
    """SQLAlchemy model for an album."""

    __tablename__ = "albums"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    artist_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("artists.id", ondelete="SET NULL"), nullable=True
    )
    spotify_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    apple_music_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True
    )
    # Provider format, "2019", "2019-05" or "2019-05-17"
    release_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    cover_image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class TrackModel(Base):
    """SQLAlchemy model for a track."""

    __tablename__ = "tracks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    artist_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("artists.id", ondelete="SET NULL"), nullable=True
    )
    album_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("albums.id", ondelete="SET NULL"), nullable=True
    )
    spotify_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    apple_music_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True
    )
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preview_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (Index("ix_tracks_title_lower", func.lower(title)),)


# Yo, append-only! The (user_id, occurred_at) index serves "latest event for user" (the
# coalescing check) AND the history pages. track_id index is for the "who listened to this"
# page. Never UPDATE rows here, the coalescing rule decides whether to INSERT at all.
class ListeningEventModel(Base):
    """One entry of a user's listening history."""

    __tablename__ = "listening_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    track_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[str] = mapped_column(String(20), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    listened_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_listening_events_user_occurred", "user_id", "occurred_at"),
        Index("ix_listening_events_track", "track_id"),
    )


class FollowEdgeModel(Base):
    """Directed follow relation between two users."""

    __tablename__ = "follow_edges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    follower_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    following_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("follower_id", "following_id", name="uq_follow_edges_pair"),
        CheckConstraint("follower_id <> following_id", name="ck_follow_edges_no_self"),
        Index("ix_follow_edges_following", "following_id"),
    )
