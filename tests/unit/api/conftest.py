"""API test fixtures: the real app factory wired to the fake provider.

Hey future me - httpx.ASGITransport does NOT run the lifespan. That's on purpose: the
lifespan would build the real Spotify client and start the poller. We call
build_services() by hand with the FakeProvider instead, same wiring, no network.
"""

from collections.abc import AsyncGenerator

import httpx
import pytest
from fastapi import FastAPI

from earshot.config import Settings
from earshot.domain.entities import User
from earshot.infrastructure.lifecycle import build_services
from earshot.infrastructure.persistence.database import Database
from earshot.main import create_app


@pytest.fixture
def app(settings: Settings, db: Database, provider) -> FastAPI:  # type: ignore[no-untyped-def]
    application = create_app(settings)
    build_services(application, settings, db, spotify=provider)
    return application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.fixture
def auth():  # type: ignore[no-untyped-def]
    """Identity header as the upstream gateway would set it."""

    def _headers(user: User) -> dict[str, str]:
        return {"X-User-Id": user.external_id}

    return _headers
