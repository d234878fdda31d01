"""Observability infrastructure for structured logging."""

from earshot.infrastructure.observability.logger_template import log_worker_health
from earshot.infrastructure.observability.logging import (
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)

__all__ = [
    "configure_logging",
    "get_correlation_id",
    "log_worker_health",
    "set_correlation_id",
]
