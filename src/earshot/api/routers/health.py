# Hey future me - these are the Docker/Kubernetes probes, mounted at /health (NOT under /api).
#
# - /health/live   → process is up, no dependency checks
# - /health/ready  → DB answers and the now-playing poller runs (when polling is enabled)
#
# RequestLoggingMiddleware skips /health paths, probes every few seconds would drown the log.
"""Health check endpoints for Docker/Kubernetes probes."""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from earshot import __version__

logger = logging.getLogger(__name__)

router = APIRouter()


class LivenessStatus(BaseModel):
    """Simple liveness probe response."""

    status: str = Field(description="alive")
    timestamp: str = Field(description="ISO timestamp")
    version: str = Field(default=__version__, description="Application version")


class ReadinessStatus(BaseModel):
    """Readiness probe response."""

    status: str = Field(description="ready or not_ready")
    timestamp: str = Field(description="ISO timestamp")
    database: bool = Field(description="Database connection OK")
    poller: bool = Field(description="Now-playing poller running or disabled")
    poller_status: dict[str, Any] | None = Field(default=None)


@router.get("/live", response_model=LivenessStatus)
async def liveness_probe() -> LivenessStatus:
    """Returns 200 as long as the process serves requests."""
    return LivenessStatus(status="alive", timestamp=datetime.now(UTC).isoformat())


@router.get("/ready", response_model=ReadinessStatus)
async def readiness_probe(request: Request) -> JSONResponse:
    """Returns 200 when ready to take traffic, 503 otherwise."""
    db_ok = False
    db = getattr(request.app.state, "db", None)
    if db is not None:
        try:
            db_ok = await db.ping()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("health.database_unreachable", extra={"error": str(e)})

    settings = getattr(request.app.state, "settings", None)
    worker = getattr(request.app.state, "now_playing_worker", None)
    polling_enabled = settings is not None and settings.polling.enabled
    poller_ok = worker.is_running if worker is not None else not polling_enabled

    is_ready = db_ok and poller_ok
    response = ReadinessStatus(
        status="ready" if is_ready else "not_ready",
        timestamp=datetime.now(UTC).isoformat(),
        database=db_ok,
        poller=poller_ok,
        poller_status=worker.get_status() if worker is not None else None,
    )
    status_code = status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(content=response.model_dump(), status_code=status_code)
