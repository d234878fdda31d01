"""Application services."""

from .credential_vault import CredentialVault
from .listening_state import ListeningStateStore
from .metadata_resolver import MetadataResolver
from .now_playing_service import NowPlayingService, PollOutcome
from .search_service import SearchService
from .social_service import SocialService
from .token_manager import AppTokenCache, TokenLifecycleManager

__all__ = [
    "AppTokenCache",
    "CredentialVault",
    "ListeningStateStore",
    "MetadataResolver",
    "NowPlayingService",
    "PollOutcome",
    "SearchService",
    "SocialService",
    "TokenLifecycleManager",
]
