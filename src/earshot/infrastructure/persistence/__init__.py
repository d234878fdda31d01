"""Infrastructure persistence layer."""

from .database import Database
from .models import (
    AlbumModel,
    ArtistModel,
    Base,
    FollowEdgeModel,
    ListeningEventModel,
    PlatformAccountModel,
    TrackModel,
    UserModel,
)
from .repositories import (
    CatalogRepository,
    FollowRepository,
    ListeningEventRepository,
    PlatformAccountRepository,
    UserRepository,
)
from .retry import is_lock_error, with_db_retry

__all__ = [
    "AlbumModel",
    "ArtistModel",
    "Base",
    "CatalogRepository",
    "Database",
    "FollowEdgeModel",
    "FollowRepository",
    "ListeningEventModel",
    "ListeningEventRepository",
    "PlatformAccountModel",
    "PlatformAccountRepository",
    "TrackModel",
    "UserModel",
    "UserRepository",
    "is_lock_error",
    "with_db_retry",
]
