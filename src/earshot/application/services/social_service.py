"""Follow graph and friend activity feeds."""

import logging
from dataclasses import dataclass
from datetime import datetime

from earshot.application.services.token_manager import SessionScope
from earshot.domain.entities import FriendStatus, HistoryEntry, UserSummary
from earshot.domain.exceptions import AuthError, BusinessRuleViolation, NotFoundError
from earshot.infrastructure.persistence.repositories import (
    FollowRepository,
    ListeningEventRepository,
    UserRepository,
)
from earshot.infrastructure.persistence.retry import with_db_retry

logger = logging.getLogger(__name__)

FEED_PER_FRIEND = 20
FEED_LIMIT = 50
LISTENERS_LIMIT = 50


@dataclass(frozen=True)
class TrackListener:
    user: UserSummary
    last_listened_at: datetime


class SocialService:
    """Follow/unfollow and the feeds built on top of the follow graph."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    @with_db_retry()
    async def follow(self, follower_id: str, following_id: str) -> None:
        """Follow another user.

        Raises:
            BusinessRuleViolation: self-follow or already following
            NotFoundError: target user doesn't exist
        """
        if follower_id == following_id:
            raise BusinessRuleViolation("Cannot follow yourself")

        async with self._session_scope() as session:
            if await UserRepository(session).get_by_id(following_id) is None:
                raise NotFoundError("User", following_id)
            follows = FollowRepository(session)
            if await follows.exists(follower_id, following_id):
                raise BusinessRuleViolation("Already following this user")
            await follows.add(follower_id, following_id)

        logger.info(
            "social.followed",
            extra={"follower_id": follower_id, "following_id": following_id},
        )

    @with_db_retry()
    async def unfollow(self, follower_id: str, following_id: str) -> None:
        async with self._session_scope() as session:
            removed = await FollowRepository(session).remove(follower_id, following_id)
        if not removed:
            raise BusinessRuleViolation("Not following this user")

    # Hey future me - follower/following LISTS are private to their owner. Anyone can ask
    # "do I follow X / does X follow me" through get_friend_status() though.
    async def get_following(self, requester_id: str, user_id: str) -> list[UserSummary]:
        if requester_id != user_id:
            raise AuthError("Following list is only visible to its owner")
        async with self._session_scope() as session:
            ids = await FollowRepository(session).following_ids(user_id)
            return await UserRepository(session).get_summaries(ids)

    async def get_followers(self, requester_id: str, user_id: str) -> list[UserSummary]:
        if requester_id != user_id:
            raise AuthError("Followers list is only visible to its owner")
        async with self._session_scope() as session:
            ids = await FollowRepository(session).follower_ids(user_id)
            return await UserRepository(session).get_summaries(ids)

    async def get_friend_status(self, user_id: str, target_id: str) -> FriendStatus:
        async with self._session_scope() as session:
            follows = FollowRepository(session)
            return FriendStatus(
                is_following=await follows.exists(user_id, target_id),
                is_followed_by=await follows.exists(target_id, user_id),
            )

    async def get_friend_feed(
        self, requester_id: str, user_id: str, limit: int = FEED_LIMIT
    ) -> list[HistoryEntry]:
        """Latest listens of everyone the user follows, newest first.

        Takes the last FEED_PER_FRIEND events per followed user and merges them, so one
        heavy listener can't push everyone else out of the feed.
        """
        if requester_id != user_id:
            raise AuthError("Friend feed is only visible to its owner")
        async with self._session_scope() as session:
            ids = await FollowRepository(session).following_ids(user_id)
            entries = await ListeningEventRepository(session).list_for_users(
                ids, FEED_PER_FRIEND
            )
        entries.sort(key=lambda entry: entry.occurred_at, reverse=True)
        return entries[:limit]

    async def get_track_listeners(
        self, track_id: str, limit: int = LISTENERS_LIMIT
    ) -> list[TrackListener]:
        """Users who logged this track, most recent listener first."""
        async with self._session_scope() as session:
            rows = await ListeningEventRepository(session).list_listeners_of_track(
                track_id, limit
            )
        return [TrackListener(user=user, last_listened_at=ts) for user, ts in rows]
