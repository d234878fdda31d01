"""Substring search over users and the local music catalog."""

from earshot.application.services.token_manager import SessionScope
from earshot.domain.entities import MusicSearchResult, UserSummary
from earshot.infrastructure.persistence.repositories import CatalogRepository, UserRepository

MIN_QUERY_LENGTH = 3
RESULT_LIMIT = 10


class SearchService:
    """Case-insensitive substring search. No ranking, results ordered alphabetically."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    @staticmethod
    def _normalize(query: str) -> str | None:
        query = query.strip()
        return query if len(query) >= MIN_QUERY_LENGTH else None

    async def search_users(self, query: str) -> list[UserSummary]:
        needle = self._normalize(query)
        if needle is None:
            return []
        async with self._session_scope() as session:
            return await UserRepository(session).search(needle, RESULT_LIMIT)

    async def search_music(self, query: str) -> MusicSearchResult:
        needle = self._normalize(query)
        if needle is None:
            return MusicSearchResult()
        async with self._session_scope() as session:
            catalog = CatalogRepository(session)
            return MusicSearchResult(
                tracks=await catalog.search_tracks(needle, RESULT_LIMIT),
                artists=await catalog.search_artists(needle, RESULT_LIMIT),
            )
