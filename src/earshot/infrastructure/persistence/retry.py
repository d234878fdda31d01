# Hey future me - this is the fix for "database is locked" errors!
#
# SQLite allows ONE writer at a time. The poller fans out over many users and every user
# cycle writes (pointer, history, catalog rows), so two cycles colliding on the write lock
# is normal. Locks are temporary: waiting and retrying almost always works.
#
# IMPORTANT: decorate the function that OWNS the transaction (the one that opens
# session_scope()), never a repository method inside one. Retrying a statement inside a
# transaction SQLite already aborted just fails again.
"""Database retry utilities for handling SQLite lock errors."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def is_lock_error(exception: BaseException) -> bool:
    """Check if an exception is a retryable database lock error."""
    if not isinstance(exception, OperationalError):
        return False
    error_msg = str(exception).lower()
    return "locked" in error_msg or "busy" in error_msg


def with_db_retry(
    max_attempts: int = 3,
    initial_delay: float = 0.2,
    max_delay: float = 2.0,
    backoff_factor: float = 2.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator retrying an async transaction on lock errors.

    The backoff is exponential (0.2s, 0.4s, 0.8s ... capped at max_delay).
    Other OperationalErrors are raised immediately.

    Example:
        @with_db_retry(max_attempts=3)
        async def set_pointer(self, user_id: str, track_id: str) -> None:
            async with self._session_scope() as session:
                ...
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            delay = initial_delay
            start_time = time.monotonic()

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except OperationalError as e:
                    if not is_lock_error(e):
                        raise
                    if attempt == max_attempts:
                        logger.error(
                            "Database locked after %d attempts (%.0fms total), giving up: %s",
                            max_attempts,
                            (time.monotonic() - start_time) * 1000,
                            func.__qualname__,
                        )
                        raise
                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.1fs: %s",
                        attempt,
                        max_attempts,
                        delay,
                        func.__qualname__,
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)

            raise RuntimeError("Unexpected state in retry decorator")

        return wrapper

    return decorator
