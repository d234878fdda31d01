"""Now-playing orchestration: one user on demand, every linked user on a schedule.

Per user the cycle is always the same:

1. resolve the platform account (none -> pointer cleared, done)
2. get a valid access token (refresh if needed)
3. ask the provider what is playing
4. playing -> make sure the track exists locally (metadata resolver)
5. hand the transition to the listening state store

The two entry points differ ONLY in how they treat failures:

| failure                         | on-demand                 | scheduled           |
|---------------------------------|---------------------------|---------------------|
| no account / unknown user       | clear, None               | clear, skipped      |
| RefreshTokenInvalid             | clear, None               | skipped (logged)    |
| ProviderUnreachable at step 2   | clear, None               | skipped (logged)    |
| 401 at step 3                   | clear, None               | clear, skipped      |
| other provider error at step 3  | clear, raise              | failed (logged)     |
| MetadataFetchError              | snapshot, no state write  | no state write      |
| DecryptionError                 | raise                     | failed (logged)     |
| pointer/history write fails     | logged, result unchanged  | failed (logged)     |
"""

import asyncio
import logging
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from earshot.application.services.listening_state import ListeningStateStore
from earshot.application.services.metadata_resolver import MetadataResolver
from earshot.application.services.token_manager import TokenLifecycleManager
from earshot.config.settings import PollingSettings
from earshot.domain.dtos import NowPlayingDTO
from earshot.domain.entities import Platform, PlaybackSnapshot, PollSummary
from earshot.domain.exceptions import (
    AccessTokenRejected,
    ConfigurationError,
    MetadataFetchError,
    NotFoundError,
    ProviderUnreachable,
    RefreshTokenInvalid,
)
from earshot.domain.ports import IStreamingProvider
from earshot.infrastructure.observability.logging import set_correlation_id

logger = logging.getLogger(__name__)


class PollOutcome(str, Enum):
    """Result of one scheduled user cycle."""

    UPDATED = "updated"  # playing, state written
    IDLE = "idle"  # nothing playing or paused, pointer cleared
    SKIPPED = "skipped"  # no usable token this cycle
    FAILED = "failed"  # unexpected error, logged


def to_snapshot(now_playing: NowPlayingDTO) -> PlaybackSnapshot:
    return PlaybackSnapshot(
        title=now_playing.title,
        artist_name=now_playing.artist_name,
        album_cover=now_playing.album_cover_url,
        is_playing=now_playing.is_playing,
        progress_ms=now_playing.progress_ms,
        duration_ms=now_playing.duration_ms,
    )


class NowPlayingService:
    """Polling orchestrator for the now-playing pipeline."""

    def __init__(
        self,
        token_manager: TokenLifecycleManager,
        listening_state: ListeningStateStore,
        metadata_resolver: MetadataResolver,
        providers: dict[Platform, IStreamingProvider],
        settings: PollingSettings | None = None,
    ) -> None:
        self._tokens = token_manager
        self._state = listening_state
        self._resolver = metadata_resolver
        self._providers = providers
        self._settings = settings or PollingSettings()

    def _provider(self, platform: Platform) -> IStreamingProvider:
        provider = self._providers.get(platform)
        if provider is None:
            raise ConfigurationError(f"No provider configured for platform {platform.value}")
        return provider

    # Listen up, pointer and history are derived state. A failed write (unknown user,
    # locked or broken database) is logged here and never reaches the caller, the
    # next cycle simply writes again.
    async def _clear(self, user_id: str) -> bool:
        try:
            await self._state.clear_current_track(user_id)
        except (NotFoundError, SQLAlchemyError) as e:
            logger.warning(
                "now_playing.clear_failed",
                extra={"user_id": user_id, "error_type": type(e).__name__},
            )
            return False
        return True

    async def _transition(
        self,
        user_id: str,
        track_id: str | None,
        platform: Platform,
        now_playing: NowPlayingDTO,
    ) -> bool:
        try:
            await self._state.apply_playback_transition(
                user_id,
                track_id,
                platform,
                is_playing=now_playing.is_playing,
                listened_duration_ms=now_playing.progress_ms if track_id else None,
            )
        except (NotFoundError, SQLAlchemyError) as e:
            logger.warning(
                "now_playing.state_write_failed",
                extra={"user_id": user_id, "error_type": type(e).__name__},
                exc_info=True,
            )
            return False
        return True

    async def _record(
        self, user_id: str, platform: Platform, now_playing: NowPlayingDTO
    ) -> bool:
        """Steps 4 and 5. Returns False when metadata resolution or the state write failed."""
        if not now_playing.is_playing:
            # Paused: no catalog lookup, pointer cleared, history untouched
            return await self._transition(user_id, None, platform, now_playing)

        try:
            track = await self._resolver.ensure_track(now_playing.track_external_id)
        except MetadataFetchError as e:
            logger.warning(
                "now_playing.metadata_failed",
                extra={"user_id": user_id, "error": e.message},
            )
            return False

        return await self._transition(user_id, track.id, platform, now_playing)

    async def get_current_playing(
        self, user_id: str, platform: Platform = Platform.SPOTIFY
    ) -> PlaybackSnapshot | None:
        """On-demand refresh of a user's now-playing state.

        Returns None when nothing (usable) is playing, also for unknown users. Unexpected
        provider errors are raised after the pointer was cleared, DecryptionError is
        always raised. State write failures are logged and don't change the result.
        """
        provider = self._provider(platform)
        account = await self._tokens.get_account_for(user_id, platform)
        if account is None:
            await self._clear(user_id)
            return None

        try:
            access_token = await self._tokens.get_valid_access_token(account.id)
        except (RefreshTokenInvalid, ProviderUnreachable) as e:
            logger.info(
                "now_playing.token_unavailable",
                extra={"user_id": user_id, "error_type": type(e).__name__},
            )
            await self._clear(user_id)
            return None

        try:
            now_playing = await provider.get_now_playing(access_token)
        except AccessTokenRejected:
            # Token looked fine locally but Spotify said 401. No retry in this cycle.
            logger.warning("now_playing.access_token_rejected", extra={"user_id": user_id})
            await self._clear(user_id)
            return None
        except ProviderUnreachable:
            await self._clear(user_id)
            raise

        if now_playing is None:
            await self._clear(user_id)
            return None

        await self._record(user_id, platform, now_playing)
        return to_snapshot(now_playing)

    # Hey future me - poll_user must NEVER raise (except cancellation from wait_for). One
    # broken user must not take the gather() of 500 others down with it. The broad except
    # at the end is the boundary, everything below it propagates normally.
    async def poll_user(
        self, user_id: str, platform: Platform = Platform.SPOTIFY
    ) -> PollOutcome:
        """Scheduled cycle for one user."""
        try:
            provider = self._provider(platform)
            account = await self._tokens.get_account_for(user_id, platform)
            if account is None:
                await self._clear(user_id)
                return PollOutcome.SKIPPED

            try:
                access_token = await self._tokens.get_valid_access_token(account.id)
            except (RefreshTokenInvalid, ProviderUnreachable) as e:
                logger.info(
                    "poll.user_skipped",
                    extra={"user_id": user_id, "reason": type(e).__name__},
                )
                return PollOutcome.SKIPPED

            try:
                now_playing = await provider.get_now_playing(access_token)
            except AccessTokenRejected:
                logger.warning("poll.access_token_rejected", extra={"user_id": user_id})
                await self._clear(user_id)
                return PollOutcome.SKIPPED

            if now_playing is None:
                return PollOutcome.IDLE if await self._clear(user_id) else PollOutcome.FAILED

            if not await self._record(user_id, platform, now_playing):
                return PollOutcome.FAILED
            return PollOutcome.UPDATED if now_playing.is_playing else PollOutcome.IDLE

        except Exception as e:
            logger.error(
                "poll.user_failed",
                extra={"user_id": user_id, "error_type": type(e).__name__},
                exc_info=True,
            )
            return PollOutcome.FAILED

    async def poll_all(self, platform: Platform = Platform.SPOTIFY) -> PollSummary:
        """Poll every valid account of a platform with bounded concurrency.

        Each user gets its own timeout. A timeout or failure is counted and never
        cancels the other users.
        """
        accounts = await self._tokens.list_pollable_accounts(platform)
        summary = PollSummary(users_total=len(accounts))
        if not accounts:
            return summary

        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        timeout = self._settings.user_timeout_seconds

        async def run(user_id: str) -> PollOutcome:
            set_correlation_id(f"poll-{user_id}")
            async with semaphore:
                return await asyncio.wait_for(self.poll_user(user_id, platform), timeout)

        results = await asyncio.gather(
            *(run(account.user_id) for account in accounts), return_exceptions=True
        )

        for account, result in zip(accounts, results, strict=True):
            if isinstance(result, TimeoutError):
                summary.timed_out += 1
                logger.warning(
                    "poll.user_timeout",
                    extra={"user_id": account.user_id, "timeout_seconds": timeout},
                )
            elif isinstance(result, BaseException):
                summary.failed += 1
                logger.error(
                    "poll.user_crashed",
                    extra={"user_id": account.user_id},
                    exc_info=result,
                )
            elif result is PollOutcome.UPDATED:
                summary.updated += 1
            elif result is PollOutcome.IDLE:
                summary.idle += 1
            elif result is PollOutcome.SKIPPED:
                summary.skipped += 1
            else:
                summary.failed += 1

        return summary
