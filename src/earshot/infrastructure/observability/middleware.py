"""Middleware for observability: request/response logging."""

import logging
import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from earshot.infrastructure.observability.logging import (
    get_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger(__name__)


# Hey future me, this runs BEFORE the route handlers. It takes X-Correlation-ID from the
# caller (or makes one up), so every log line of the request carries it, and echoes it in
# the response for support tickets. Health probes are not logged, the orchestrator hits
# them every few seconds.
class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log HTTP requests and responses with duration."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        set_correlation_id(request.headers.get("X-Correlation-ID"))

        method = request.method
        path = request.url.path
        quiet = path.startswith("/health")

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                f"Request failed: {method} {path}",
                extra={
                    "method": method,
                    "path": path,
                    "duration_ms": int((time.time() - start_time) * 1000),
                    "error_type": type(e).__name__,
                },
            )
            raise

        duration_ms = int((time.time() - start_time) * 1000)
        if not quiet:
            status_marker = "✓" if response.status_code < 400 else "✗"
            logger.info(
                f"{status_marker} {method} {path} → {response.status_code} ({duration_ms}ms)",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )

        response.headers["X-Correlation-ID"] = get_correlation_id()
        return response
