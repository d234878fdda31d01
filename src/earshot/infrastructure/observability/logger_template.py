"""Shared logging helpers.

USAGE:
    from earshot.infrastructure.observability import log_worker_health

    log_worker_health(logger, "now_playing", cycles_completed=10, errors_total=2,
                      uptime_seconds=3600)
"""

import logging
from typing import Any


# Hey future me, workers call this every N cycles so "is the poller still alive?" is a
# single grep for worker.health. Keep the field names stable, dashboards filter on them.
def log_worker_health(
    logger: logging.Logger,
    worker_name: str,
    cycles_completed: int,
    errors_total: int,
    uptime_seconds: float,
    extra_stats: dict[str, Any] | None = None,
) -> None:
    """Log worker health status in consistent format."""
    log_data: dict[str, Any] = {
        "worker": worker_name,
        "cycles_completed": cycles_completed,
        "errors_total": errors_total,
        "uptime_seconds": int(uptime_seconds),
    }
    if extra_stats:
        log_data.update(extra_stats)

    logger.info("worker.health", extra=log_data)
