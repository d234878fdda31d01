"""Denormalized listening state: the now-playing pointer and the listening history.

Hey future me - this module is the ONLY writer of users.current_track_id and the only
inserter into listening_events. Keep it that way, the moment a second code path starts
touching the pointer you get "stuck" now-playing badges nobody can explain.

The coalescing rule decides whether a poll that sees a track playing is a NEW listen:

    append when there is no previous event
             or the previous event is a different track
             or it is the same track but older than the coalesce window (10 min)

So a user on repeat for an hour logs the song ~6 times, not 60 times (one per poll).
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from earshot.application.services.token_manager import SessionScope, keyed_lock
from earshot.domain.entities import HistoryEntry, ListeningEvent, Platform
from earshot.domain.exceptions import AuthError, NotFoundError
from earshot.infrastructure.persistence.models import utc_now
from earshot.infrastructure.persistence.repositories import (
    ListeningEventRepository,
    UserRepository,
)
from earshot.infrastructure.persistence.retry import with_db_retry

logger = logging.getLogger(__name__)

DEFAULT_COALESCE_WINDOW = timedelta(minutes=10)
HISTORY_LIMIT = 50
RECENT_LIMIT = 10


def should_append(
    previous: ListeningEvent | None,
    track_id: str,
    now: datetime,
    window: timedelta,
) -> bool:
    """Coalescing rule for history appends."""
    if previous is None:
        return True
    if previous.track_id != track_id:
        return True
    return now - previous.occurred_at > window


class ListeningStateStore:
    """Owns the now-playing pointer and appends coalesced history events."""

    def __init__(
        self,
        session_scope: SessionScope,
        coalesce_window: timedelta = DEFAULT_COALESCE_WINDOW,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_scope = session_scope
        self._coalesce_window = coalesce_window
        self._clock = clock
        # Serializes check-then-insert per user inside this process (on-demand request
        # and scheduled poll for the same user can land in the same second).
        self._user_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @with_db_retry()
    async def _set_pointer(
        self, user_id: str, track_id: str | None, touched_at: datetime | None
    ) -> None:
        async with self._session_scope() as session:
            updated = await UserRepository(session).set_current_track(
                user_id, track_id, touched_at
            )
        if not updated:
            raise NotFoundError("User", user_id)

    @with_db_retry()
    async def _append_if_new(
        self,
        user_id: str,
        track_id: str,
        platform: Platform,
        now: datetime,
        listened_duration_ms: int | None,
    ) -> bool:
        async with self._session_scope() as session:
            events = ListeningEventRepository(session)
            previous = await events.get_latest_for_user(user_id)
            if not should_append(previous, track_id, now, self._coalesce_window):
                return False
            await events.append(
                user_id=user_id,
                track_id=track_id,
                platform=platform,
                occurred_at=now,
                listened_duration_ms=listened_duration_ms,
            )
            return True

    async def apply_playback_transition(
        self,
        user_id: str,
        track_id: str | None,
        platform: Platform,
        is_playing: bool,
        listened_duration_ms: int | None = None,
    ) -> bool:
        """Record what the user is doing right now.

        Playing: pointer -> track, activity touched, history appended per coalescing rule.
        Paused (or no track): pointer cleared, activity touched, history untouched.

        The pointer commits first. The history append is best-effort: a failing insert
        is logged and leaves the pointer as written.

        Returns:
            True if a history event was appended
        """
        now = self._clock()
        if not is_playing or track_id is None:
            await self._set_pointer(user_id, None, touched_at=now)
            return False

        lock = keyed_lock(self._user_locks, user_id)
        async with lock:
            await self._set_pointer(user_id, track_id, touched_at=now)
            try:
                appended = await self._append_if_new(
                    user_id, track_id, platform, now, listened_duration_ms
                )
            except SQLAlchemyError:
                logger.exception(
                    "history.append_failed",
                    extra={"user_id": user_id, "track_id": track_id},
                )
                return False

        if appended:
            logger.debug("history.appended", extra={"user_id": user_id, "track_id": track_id})
        return appended

    async def clear_current_track(self, user_id: str) -> None:
        """Clear the pointer without touching last activity."""
        await self._set_pointer(user_id, None, touched_at=None)

    async def get_listening_history(
        self, requester_id: str, user_id: str, limit: int = HISTORY_LIMIT
    ) -> list[HistoryEntry]:
        """Full history, only for its owner.

        Raises:
            AuthError: requester is not the owner
        """
        if requester_id != user_id:
            raise AuthError("Listening history is only visible to its owner")
        async with self._session_scope() as session:
            return await ListeningEventRepository(session).list_for_user(user_id, limit)

    async def get_recently_listened(
        self, user_id: str, limit: int = RECENT_LIMIT
    ) -> list[HistoryEntry]:
        """Public short list of a user's latest listens."""
        async with self._session_scope() as session:
            return await ListeningEventRepository(session).list_for_user(user_id, limit)
