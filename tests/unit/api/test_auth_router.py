"""Tests for the account linking endpoints (/api/auth)."""

from urllib.parse import parse_qs, urlparse

import httpx

from earshot.api.routers.auth import STATE_COOKIE
from earshot.domain.entities import User
from earshot.domain.exceptions import AuthenticationError, ProviderUnreachable


def _redirect_params(response: httpx.Response) -> dict[str, str]:
    location = urlparse(response.headers["location"])
    return {key: values[0] for key, values in parse_qs(location.query).items()}


class TestIdentity:
    async def test_missing_identity_header(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/auth/spotify/status")

        assert response.status_code == 401
        assert response.json()["detail"] == "Missing X-User-Id header"

    async def test_unknown_identity(self, client: httpx.AsyncClient) -> None:
        response = await client.get(
            "/api/auth/spotify/status", headers={"X-User-Id": "idp|stranger"}
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Unknown user"


class TestAuthorize:
    async def test_redirects_to_consent_with_state_cookie(
        self, client: httpx.AsyncClient, alice: User, auth
    ) -> None:
        response = await client.get("/api/auth/spotify/authorize", headers=auth(alice))

        assert response.status_code == 302
        location = response.headers["location"]
        assert location.startswith("https://accounts.example/authorize")
        state = parse_qs(urlparse(location).query)["state"][0]
        set_cookie = response.headers["set-cookie"]
        assert f"{STATE_COOKIE}={state}" in set_cookie
        assert "HttpOnly" in set_cookie

    async def test_state_is_fresh_per_request(
        self, client: httpx.AsyncClient, alice: User, auth
    ) -> None:
        first = await client.get("/api/auth/spotify/authorize", headers=auth(alice))
        second = await client.get("/api/auth/spotify/authorize", headers=auth(alice))

        assert first.headers["location"] != second.headers["location"]


class TestCallback:
    async def _callback(
        self, client: httpx.AsyncClient, headers: dict[str, str], **params: str
    ) -> httpx.Response:
        client.cookies.set(STATE_COOKIE, "state-123")
        return await client.get("/api/auth/spotify/callback", params=params, headers=headers)

    async def test_successful_link(
        self, client: httpx.AsyncClient, provider, alice: User, auth
    ) -> None:
        response = await self._callback(client, auth(alice), code="code-1", state="state-123")

        assert response.status_code == 302
        assert response.headers["location"].startswith("/?")
        assert _redirect_params(response) == {"status": "spotify_connected"}
        assert ("exchange_auth_code", "code-1") in provider.calls
        assert f'{STATE_COOKIE}=""' in response.headers["set-cookie"]

        status = await client.get("/api/auth/spotify/status", headers=auth(alice))
        assert status.json()["linked"] is True
        assert status.json()["needs_relink"] is False

    async def test_state_mismatch_is_rejected(
        self, client: httpx.AsyncClient, provider, alice: User, auth
    ) -> None:
        response = await self._callback(client, auth(alice), code="code-1", state="forged")

        assert _redirect_params(response) == {
            "status": "spotify_failed",
            "error": "state_mismatch",
        }
        assert provider.count("exchange_auth_code") == 0

    async def test_missing_state_cookie_is_rejected(
        self, client: httpx.AsyncClient, provider, alice: User, auth
    ) -> None:
        response = await client.get(
            "/api/auth/spotify/callback",
            params={"code": "code-1", "state": "state-123"},
            headers=auth(alice),
        )

        assert _redirect_params(response)["error"] == "state_mismatch"
        assert provider.count("exchange_auth_code") == 0

    async def test_consent_denied(self, client: httpx.AsyncClient, alice: User, auth) -> None:
        response = await self._callback(
            client, auth(alice), error="access_denied", state="state-123"
        )

        assert _redirect_params(response) == {
            "status": "spotify_failed",
            "error": "access_denied",
        }

    async def test_missing_code(self, client: httpx.AsyncClient, alice: User, auth) -> None:
        response = await self._callback(client, auth(alice), state="state-123")

        assert _redirect_params(response)["error"] == "missing_code"

    async def test_rejected_code_redirects_with_error(
        self, client: httpx.AsyncClient, provider, alice: User, auth
    ) -> None:
        provider.auth_error = AuthenticationError("Spotify rejected the authorization code")

        response = await self._callback(client, auth(alice), code="stale", state="state-123")

        params = _redirect_params(response)
        assert params["status"] == "spotify_failed"
        assert params["error"] == "Spotify rejected the authorization code"

    async def test_provider_outage_redirects_with_error(
        self, client: httpx.AsyncClient, provider, alice: User, auth
    ) -> None:
        provider.auth_error = ProviderUnreachable("Spotify token endpoint error 503")

        response = await self._callback(client, auth(alice), code="code", state="state-123")

        assert response.status_code == 302
        assert _redirect_params(response)["status"] == "spotify_failed"


class TestStatus:
    async def test_unlinked(self, client: httpx.AsyncClient, alice: User, auth) -> None:
        response = await client.get("/api/auth/spotify/status", headers=auth(alice))

        assert response.status_code == 200
        assert response.json() == {
            "platform": "spotify",
            "linked": False,
            "expires_at": None,
            "needs_relink": False,
        }

    async def test_other_platform(self, client: httpx.AsyncClient, alice: User, auth) -> None:
        response = await client.get("/api/auth/apple_music/status", headers=auth(alice))

        assert response.json()["platform"] == "apple_music"
        assert response.json()["linked"] is False

    async def test_unknown_platform(self, client: httpx.AsyncClient, alice: User, auth) -> None:
        response = await client.get("/api/auth/tidal/status", headers=auth(alice))

        assert response.status_code == 422
