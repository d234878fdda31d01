"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 12:00:00.000000

Hey future me - creation order matters because of the foreign keys:
artists -> albums -> tracks -> users (current_track_id) -> everything keyed by users.
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(server_default: bool = False) -> list[sa.Column]:
    default = sa.func.now() if server_default else None
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=default),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=default),
    ]


def upgrade() -> None:
    op.create_table(
        "artists",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("spotify_id", sa.String(64), nullable=True, unique=True),
        sa.Column("apple_music_id", sa.String(64), nullable=True, unique=True),
        sa.Column("image_url", sa.String(1024), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_artists_name_lower", "artists", [sa.text("lower(name)")])

    op.create_table(
        "albums",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column(
            "artist_id",
            sa.String(36),
            sa.ForeignKey("artists.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("spotify_id", sa.String(64), nullable=True, unique=True),
        sa.Column("apple_music_id", sa.String(64), nullable=True, unique=True),
        sa.Column("release_date", sa.String(10), nullable=True),
        sa.Column("cover_image_url", sa.String(1024), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "tracks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column(
            "artist_id",
            sa.String(36),
            sa.ForeignKey("artists.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "album_id",
            sa.String(36),
            sa.ForeignKey("albums.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("spotify_id", sa.String(64), nullable=True, unique=True),
        sa.Column("apple_music_id", sa.String(64), nullable=True, unique=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("preview_url", sa.String(1024), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_tracks_title_lower", "tracks", [sa.text("lower(title)")])

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("username", sa.String(64), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("profile_picture_url", sa.String(1024), nullable=True),
        sa.Column(
            "current_track_id",
            sa.String(36),
            sa.ForeignKey("tracks.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_external_id", "users", ["external_id"], unique=True)
    op.create_index("ix_users_username_lower", "users", [sa.text("lower(username)")])

    op.create_table(
        "platform_accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("platform_user_id", sa.String(255), nullable=False),
        sa.Column("access_token_cipher", sa.Text(), nullable=False),
        sa.Column("refresh_token_cipher", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.BigInteger(), nullable=False),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_refreshed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(server_default=True),
        sa.UniqueConstraint("user_id", "platform", name="uq_platform_accounts_user_platform"),
    )
    op.create_index(
        "ix_platform_accounts_platform_valid", "platform_accounts", ["platform", "is_valid"]
    )

    op.create_table(
        "listening_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "track_id",
            sa.String(36),
            sa.ForeignKey("tracks.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("listened_duration_ms", sa.Integer(), nullable=True),
    )
    op.create_index(
        "ix_listening_events_user_occurred", "listening_events", ["user_id", "occurred_at"]
    )
    op.create_index("ix_listening_events_track", "listening_events", ["track_id"])

    op.create_table(
        "follow_edges",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "follower_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "following_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("follower_id", "following_id", name="uq_follow_edges_pair"),
        sa.CheckConstraint("follower_id <> following_id", name="ck_follow_edges_no_self"),
    )
    op.create_index("ix_follow_edges_following", "follow_edges", ["following_id"])


def downgrade() -> None:
    op.drop_table("follow_edges")
    op.drop_table("listening_events")
    op.drop_table("platform_accounts")
    op.drop_table("users")
    op.drop_table("tracks")
    op.drop_table("albums")
    op.drop_table("artists")
