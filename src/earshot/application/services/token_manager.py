"""Token lifecycle: linking accounts and keeping access tokens fresh.

Hey future me - this is the ONLY place that writes platform_accounts and the only place
that sees plaintext tokens (for the few microseconds between unseal() and the provider
call). State machine per (user, platform):

    Unlinked --link_account()--> Linked
    Linked --refresh when expires_at < now + skew--> Linked
    Linked --provider rejects refresh grant--> Invalid (is_valid=False, row kept)
    Invalid --link_account()--> Linked

An Invalid account raises RefreshTokenInvalid WITHOUT calling Spotify again, so a dead
grant costs us exactly one failed refresh, not one per poll cycle.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from earshot.application.services.credential_vault import CredentialVault
from earshot.domain.entities import AccountStatus, Platform, PlatformAccount
from earshot.domain.exceptions import (
    AccessTokenRejected,
    AccountNotFound,
    AuthenticationError,
    ConfigurationError,
    NotFoundError,
    ProviderUnreachable,
    RefreshTokenInvalid,
)
from earshot.domain.ports import IStreamingProvider
from earshot.infrastructure.persistence.models import utc_now
from earshot.infrastructure.persistence.repositories import (
    PlatformAccountRepository,
    UserRepository,
)
from earshot.infrastructure.persistence.retry import with_db_retry

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]
Clock = Callable[[], datetime]

DEFAULT_REFRESH_SKEW = timedelta(minutes=5)


def keyed_lock(locks: weakref.WeakValueDictionary[str, asyncio.Lock], key: str) -> asyncio.Lock:
    """Return the lock for key, creating it on first use.

    Weak values: once no coroutine holds or waits on a lock its entry disappears.
    """
    lock = locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        locks[key] = lock
    return lock


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class TokenLifecycleManager:
    """Links platform accounts and hands out valid access tokens."""

    def __init__(
        self,
        session_scope: SessionScope,
        vault: CredentialVault,
        providers: dict[Platform, IStreamingProvider],
        refresh_skew: timedelta = DEFAULT_REFRESH_SKEW,
        clock: Clock = utc_now,
    ) -> None:
        self._session_scope = session_scope
        self._vault = vault
        self._providers = providers
        self._skew_ms = int(refresh_skew.total_seconds() * 1000)
        self._clock = clock
        # One lock per account so the on-demand path and the poller don't refresh the
        # same grant twice in parallel (Spotify may rotate the refresh token on each).
        self._refresh_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _provider(self, platform: Platform) -> IStreamingProvider:
        provider = self._providers.get(platform)
        if provider is None:
            raise ConfigurationError(f"No provider configured for platform {platform.value}")
        return provider

    def _now_ms(self) -> int:
        return to_epoch_ms(self._clock())

    async def link_account(
        self,
        user_id: str,
        platform: Platform,
        auth_code: str,
        redirect_uri: str,
    ) -> PlatformAccount:
        """Exchange an auth code and store both tokens sealed.

        Re-linking an existing (possibly invalid) account overwrites it in place.

        Raises:
            NotFoundError: unknown user
            AuthenticationError: provider rejected the code
            ProviderUnreachable: provider down
        """
        provider = self._provider(platform)
        grant = await provider.exchange_auth_code(auth_code, redirect_uri)

        platform_user_id: str | None = None
        try:
            platform_user_id = await provider.get_current_user_id(grant.access_token)
        except (AccessTokenRejected, ProviderUnreachable) as e:
            # The profile id is informational only, the link itself already succeeded.
            logger.warning(
                "account.profile_lookup_failed",
                extra={"user_id": user_id, "platform": platform.value, "error": e.message},
            )

        if grant.refresh_token is None:
            raise AuthenticationError("Spotify did not return a refresh token for this code")
        account = await self._store_link(
            user_id=user_id,
            platform=platform,
            platform_user_id=platform_user_id,
            access_token_cipher=self._vault.seal(grant.access_token),
            refresh_token_cipher=self._vault.seal(grant.refresh_token),
            expires_at=self._now_ms() + grant.expires_in * 1000,
            scope=grant.scope,
        )
        logger.info(
            "account.linked",
            extra={"user_id": user_id, "platform": platform.value, "account_id": account.id},
        )
        return account

    @with_db_retry()
    async def _store_link(
        self,
        user_id: str,
        platform: Platform,
        platform_user_id: str | None,
        access_token_cipher: str,
        refresh_token_cipher: str,
        expires_at: int,
        scope: str | None,
    ) -> PlatformAccount:
        async with self._session_scope() as session:
            if await UserRepository(session).get_by_id(user_id) is None:
                raise NotFoundError("User", user_id)
            return await PlatformAccountRepository(session).upsert_linked(
                user_id=user_id,
                platform=platform,
                platform_user_id=platform_user_id,
                access_token_cipher=access_token_cipher,
                refresh_token_cipher=refresh_token_cipher,
                expires_at=expires_at,
                scope=scope,
            )

    async def _load(self, account_id: str) -> PlatformAccount:
        async with self._session_scope() as session:
            account = await PlatformAccountRepository(session).get_by_id(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    # Hey future me - THE method everyone calls before a user-scoped provider request.
    # Fast path: token still valid beyond the skew, just unseal and return. Slow path:
    # take the per-account lock, re-read (someone else may have refreshed meanwhile),
    # then refresh. No DB transaction is open while we talk to Spotify.
    async def get_valid_access_token(self, platform_account_id: str) -> str:
        """Return a plaintext access token valid for at least the refresh skew.

        Raises:
            AccountNotFound: no such account
            RefreshTokenInvalid: grant rejected now or earlier, re-link required
            ProviderUnreachable: refresh failed transiently (account stays valid)
            DecryptionError: stored ciphertext can't be opened
        """
        account = await self._load(platform_account_id)
        self._ensure_valid(account)
        if not account.needs_refresh(self._now_ms(), self._skew_ms):
            return self._vault.unseal(account.access_token_cipher)

        lock = keyed_lock(self._refresh_locks, platform_account_id)
        async with lock:
            account = await self._load(platform_account_id)
            self._ensure_valid(account)
            if not account.needs_refresh(self._now_ms(), self._skew_ms):
                return self._vault.unseal(account.access_token_cipher)
            return await self._refresh(account)

    @staticmethod
    def _ensure_valid(account: PlatformAccount) -> None:
        if not account.is_valid:
            raise RefreshTokenInvalid(
                message=f"Account needs to be linked again: {account.last_error or 'invalid'}",
                error_code="relink_required",
            )

    async def _refresh(self, account: PlatformAccount) -> str:
        provider = self._provider(account.platform)
        refresh_token = self._vault.unseal(account.refresh_token_cipher)

        try:
            grant = await provider.exchange_refresh_token(refresh_token)
        except RefreshTokenInvalid as e:
            await self._mark_invalid(account.id, e.message)
            logger.warning(
                "token.refresh_rejected",
                extra={
                    "account_id": account.id,
                    "user_id": account.user_id,
                    "error_code": e.error_code,
                },
            )
            raise

        # Spotify only sometimes rotates the refresh token. None keeps the stored cipher
        # byte-for-byte, re-sealing the old value would churn the row for nothing.
        new_refresh_cipher = (
            self._vault.seal(grant.refresh_token) if grant.refresh_token else None
        )
        await self._store_refresh(
            account.id,
            access_token_cipher=self._vault.seal(grant.access_token),
            expires_at=self._now_ms() + grant.expires_in * 1000,
            refresh_token_cipher=new_refresh_cipher,
        )
        logger.debug(
            "token.refreshed",
            extra={"account_id": account.id, "rotated": new_refresh_cipher is not None},
        )
        return grant.access_token

    @with_db_retry()
    async def _store_refresh(
        self,
        account_id: str,
        access_token_cipher: str,
        expires_at: int,
        refresh_token_cipher: str | None,
    ) -> None:
        async with self._session_scope() as session:
            await PlatformAccountRepository(session).update_after_refresh(
                account_id,
                access_token_cipher=access_token_cipher,
                expires_at=expires_at,
                refresh_token_cipher=refresh_token_cipher,
            )

    @with_db_retry()
    async def _mark_invalid(self, account_id: str, error_message: str) -> None:
        async with self._session_scope() as session:
            await PlatformAccountRepository(session).mark_invalid(account_id, error_message)

    async def get_account_for(
        self, user_id: str, platform: Platform
    ) -> PlatformAccount | None:
        async with self._session_scope() as session:
            return await PlatformAccountRepository(session).get_for_user(user_id, platform)

    async def get_platform_account_status(
        self, user_id: str, platform: Platform
    ) -> AccountStatus:
        account = await self.get_account_for(user_id, platform)
        if account is None:
            return AccountStatus(linked=False)
        return AccountStatus(
            linked=True,
            expires_at=account.expires_at,
            needs_relink=not account.is_valid,
        )

    async def list_pollable_accounts(self, platform: Platform) -> list[PlatformAccount]:
        async with self._session_scope() as session:
            return await PlatformAccountRepository(session).list_pollable(platform)


@dataclass(frozen=True)
class _CachedAppToken:
    access_token: str
    expires_at: int


# Yo, the app-level token is for catalog lookups (tracks/artists/albums), it belongs to no
# user. The cached value is an immutable record swapped in one assignment. Two coroutines
# missing the cache at the same time both fetch, the last one wins, both tokens are valid.
# No lock needed.
class AppTokenCache:
    """Caches the client-credentials token until it is about to expire."""

    def __init__(
        self,
        provider: IStreamingProvider,
        refresh_skew: timedelta = DEFAULT_REFRESH_SKEW,
        clock: Clock = utc_now,
    ) -> None:
        self._provider = provider
        self._skew_ms = int(refresh_skew.total_seconds() * 1000)
        self._clock = clock
        self._cached: _CachedAppToken | None = None

    async def get_app_access_token(self) -> str:
        now_ms = to_epoch_ms(self._clock())
        cached = self._cached
        if cached is not None and cached.expires_at >= now_ms + self._skew_ms:
            return cached.access_token

        grant = await self._provider.client_credentials_token()
        self._cached = _CachedAppToken(
            access_token=grant.access_token,
            expires_at=now_ms + grant.expires_in * 1000,
        )
        return grant.access_token

    def invalidate(self) -> None:
        self._cached = None
