"""Tests for the liveness and readiness probes (/health)."""

import httpx
from fastapi import FastAPI
from sqlalchemy.exc import OperationalError

from earshot import __version__
from earshot.application.workers.now_playing_worker import NowPlayingWorker


class TestLiveness:
    async def test_alive(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"
        assert response.json()["version"] == __version__

    async def test_no_identity_needed(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health/live", headers={})

        assert response.status_code == 200


class TestReadiness:
    async def test_ready_with_polling_disabled(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["database"] is True
        assert body["poller"] is True
        assert body["poller_status"] is None

    async def test_database_down(
        self, client: httpx.AsyncClient, app: FastAPI, mocker
    ) -> None:
        mocker.patch.object(
            app.state.db,
            "ping",
            side_effect=OperationalError("SELECT 1", {}, Exception("unable to open database")),
        )

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["database"] is False

    async def test_polling_enabled_but_worker_missing(
        self, client: httpx.AsyncClient, app: FastAPI
    ) -> None:
        app.state.settings = app.state.settings.model_copy(
            update={"polling": app.state.settings.polling.model_copy(update={"enabled": True})}
        )

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["poller"] is False

    async def test_running_worker_reports_status(
        self, client: httpx.AsyncClient, app: FastAPI
    ) -> None:
        worker = NowPlayingWorker(app.state.now_playing_service, interval_seconds=3600)
        await worker.start()
        app.state.now_playing_worker = worker
        try:
            response = await client.get("/health/ready")
        finally:
            await worker.stop()

        assert response.status_code == 200
        assert response.json()["poller_status"]["running"] is True

    async def test_stopped_worker_is_not_ready(
        self, client: httpx.AsyncClient, app: FastAPI
    ) -> None:
        app.state.now_playing_worker = NowPlayingWorker(app.state.now_playing_service)

        response = await client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
