"""Repository tests against a real SQLite file.

Hey future me - the services cover most repository paths already. These tests pin the
parts the services rely on silently: identity sync not clobbering handles, the pointer
update reporting missing users, foreign keys actually being enforced on SQLite.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from earshot.domain.entities import Platform, User
from earshot.infrastructure.persistence.database import Database
from earshot.infrastructure.persistence.models import utc_now
from earshot.infrastructure.persistence.repositories import (
    FollowRepository,
    ListeningEventRepository,
    PlatformAccountRepository,
    UserRepository,
)


class TestUserRepository:
    async def test_identity_sync_keeps_existing_username(
        self, db: Database, make_user
    ) -> None:
        first = await make_user("alice", "idp|1")

        async with db.session_scope() as session:
            synced = await UserRepository(session).upsert_from_identity(
                external_id="idp|1",
                username="renamed",
                email="alice@example.com",
                display_name="Alice L.",
            )

        assert synced.id == first.id
        assert synced.username == "alice"
        assert synced.email == "alice@example.com"
        assert synced.display_name == "Alice L."

    async def test_get_by_external_id(self, db: Database, alice: User) -> None:
        async with db.session_scope() as session:
            found = await UserRepository(session).get_by_external_id("idp|alice")
            missing = await UserRepository(session).get_by_external_id("idp|nobody")

        assert found is not None
        assert found.id == alice.id
        assert missing is None

    async def test_set_current_track_on_unknown_user(self, db: Database) -> None:
        async with db.session_scope() as session:
            assert await UserRepository(session).set_current_track("ghost", None, None) is False

    async def test_summaries_keep_requested_order(
        self, db: Database, alice: User, bob: User
    ) -> None:
        async with db.session_scope() as session:
            summaries = await UserRepository(session).get_summaries([bob.id, "ghost", alice.id])

        assert [s.username for s in summaries] == ["bob", "alice"]


class TestPlatformAccountRepository:
    async def _link(self, db: Database, user: User) -> str:
        async with db.session_scope() as session:
            account = await PlatformAccountRepository(session).upsert_linked(
                user.id, Platform.SPOTIFY, "sp-1", "cipher-a", "cipher-r", 1_000, "scope"
            )
        return account.id

    async def test_refresh_without_rotation_keeps_refresh_cipher(
        self, db: Database, alice: User
    ) -> None:
        account_id = await self._link(db, alice)

        async with db.session_scope() as session:
            repo = PlatformAccountRepository(session)
            assert await repo.update_after_refresh(account_id, "cipher-a2", 2_000)
        async with db.session_scope() as session:
            account = await PlatformAccountRepository(session).get_by_id(account_id)

        assert account is not None
        assert account.access_token_cipher == "cipher-a2"
        assert account.refresh_token_cipher == "cipher-r"
        assert account.expires_at == 2_000

    async def test_invalid_accounts_are_not_pollable(
        self, db: Database, alice: User, bob: User
    ) -> None:
        alice_account = await self._link(db, alice)
        await self._link(db, bob)

        async with db.session_scope() as session:
            assert await PlatformAccountRepository(session).mark_invalid(
                alice_account, "invalid_grant"
            )
        async with db.session_scope() as session:
            pollable = await PlatformAccountRepository(session).list_pollable(Platform.SPOTIFY)
            flagged = await PlatformAccountRepository(session).get_by_id(alice_account)

        assert [a.user_id for a in pollable] == [bob.id]
        assert flagged is not None
        assert flagged.is_valid is False
        assert flagged.last_error == "invalid_grant"

    async def test_unknown_account_updates_report_false(self, db: Database) -> None:
        async with db.session_scope() as session:
            repo = PlatformAccountRepository(session)
            assert await repo.update_after_refresh("nope", "c", 1) is False
            assert await repo.mark_invalid("nope", "x") is False

    async def test_one_account_per_user_and_platform(self, db: Database, alice: User) -> None:
        first = await self._link(db, alice)
        second = await self._link(db, alice)

        assert first == second


class TestConstraints:
    async def test_foreign_keys_are_enforced(self, db: Database, alice: User) -> None:
        with pytest.raises(IntegrityError):
            async with db.session_scope() as session:
                await ListeningEventRepository(session).append(
                    alice.id, "no-such-track", Platform.SPOTIFY, utc_now()
                )

    async def test_duplicate_follow_edge_is_rejected(
        self, db: Database, alice: User, bob: User
    ) -> None:
        async with db.session_scope() as session:
            await FollowRepository(session).add(alice.id, bob.id)

        with pytest.raises(IntegrityError):
            async with db.session_scope() as session:
                await FollowRepository(session).add(alice.id, bob.id)
