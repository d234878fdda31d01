"""Tests for the now-playing and history endpoints (/api/listening)."""

import httpx
from fastapi import FastAPI

from earshot.domain.entities import Platform, User
from earshot.domain.exceptions import DecryptionError, ProviderUnreachable


async def _link(app: FastAPI, user: User) -> None:
    await app.state.token_manager.link_account(
        user.id, Platform.SPOTIFY, "auth-code", "http://cb"
    )


class TestCurrent:
    async def test_playing(
        self, client: httpx.AsyncClient, app: FastAPI, provider, alice: User, auth
    ) -> None:
        await _link(app, alice)
        provider.add_track("t1", title="Freddie Freeloader", artist_name="Miles Davis")
        provider.play("t1", progress_ms=5000)

        response = await client.get("/api/listening/current", headers=auth(alice))

        assert response.status_code == 200
        assert response.json() == {
            "title": "Freddie Freeloader",
            "artist_name": "Miles Davis",
            "album_cover": "https://img/cover.jpg",
            "is_playing": True,
            "progress_ms": 5000,
            "duration_ms": 200_000,
        }

    async def test_nothing_playing_is_null(
        self, client: httpx.AsyncClient, app: FastAPI, alice: User, auth
    ) -> None:
        await _link(app, alice)

        response = await client.get("/api/listening/current", headers=auth(alice))

        assert response.status_code == 200
        assert response.json() is None

    async def test_unlinked_is_null(self, client: httpx.AsyncClient, alice: User, auth) -> None:
        response = await client.get("/api/listening/current", headers=auth(alice))

        assert response.status_code == 200
        assert response.json() is None

    async def test_provider_outage_is_503(
        self, client: httpx.AsyncClient, app: FastAPI, provider, alice: User, auth
    ) -> None:
        await _link(app, alice)
        provider.now_playing_error = ProviderUnreachable("Spotify 502", http_status=502)

        response = await client.get("/api/listening/current", headers=auth(alice))

        assert response.status_code == 503
        assert response.headers["retry-after"] == "30"

    async def test_decryption_error_is_generic_500(
        self, client: httpx.AsyncClient, app: FastAPI, alice: User, auth, mocker
    ) -> None:
        await _link(app, alice)
        mocker.patch.object(
            app.state.token_manager,
            "get_valid_access_token",
            side_effect=DecryptionError("InvalidTag while unsealing account 42"),
        )

        response = await client.get("/api/listening/current", headers=auth(alice))

        assert response.status_code == 500
        assert response.json() == {"detail": "Stored credentials could not be read"}

    async def test_unconfigured_platform_is_503(
        self, client: httpx.AsyncClient, alice: User, auth
    ) -> None:
        response = await client.get(
            "/api/listening/current", params={"platform": "apple_music"}, headers=auth(alice)
        )

        assert response.status_code == 503


class TestHistory:
    async def test_history_after_play(
        self, client: httpx.AsyncClient, app: FastAPI, provider, alice: User, auth
    ) -> None:
        await _link(app, alice)
        provider.add_track("t1", title="So What", album_title="Kind of Blue")
        provider.play("t1")
        await client.get("/api/listening/current", headers=auth(alice))

        response = await client.get("/api/listening/history", headers=auth(alice))

        assert response.status_code == 200
        [entry] = response.json()
        assert entry["title"] == "So What"
        assert entry["album_title"] == "Kind of Blue"
        assert entry["platform"] == "spotify"
        assert entry["username"] == "alice"

    async def test_history_limit_is_validated(
        self, client: httpx.AsyncClient, alice: User, auth
    ) -> None:
        response = await client.get(
            "/api/listening/history", params={"limit": 0}, headers=auth(alice)
        )

        assert response.status_code == 422

    async def test_recent_of_another_user(
        self, client: httpx.AsyncClient, app: FastAPI, provider, alice: User, bob: User, auth
    ) -> None:
        await _link(app, alice)
        provider.add_track("t1", title="So What")
        provider.play("t1")
        await client.get("/api/listening/current", headers=auth(alice))

        response = await client.get(f"/api/listening/users/{alice.id}/recent", headers=auth(bob))

        assert response.status_code == 200
        assert [e["title"] for e in response.json()] == ["So What"]

    async def test_someone_elses_full_history_is_forbidden(
        self, client: httpx.AsyncClient, app: FastAPI, alice: User, bob: User, auth
    ) -> None:
        # The route always asks for the caller's own history; the service guard is what
        # maps to 403 if another entry point ever passes a different owner.
        @app.get("/api/test/history/{user_id}")
        async def other_history(user_id: str) -> list:
            return await app.state.listening_state.get_listening_history(bob.id, user_id)

        response = await client.get(f"/api/test/history/{alice.id}")

        assert response.status_code == 403
