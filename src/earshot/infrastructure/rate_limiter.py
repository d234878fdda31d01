"""
Rate limiter for streaming provider calls.

Hey future me - the poller fans out over every linked account each minute, so without a
shared limiter a few hundred users means a few hundred Spotify calls in the same second
and a wall of 429s. Token bucket with adaptive backoff:

- The bucket holds max_tokens, refilled at refill_rate per second
- Every request takes one token, an empty bucket means waiting
- A 429 waits Retry-After (or an exponential backoff) and drains the bucket
- A successful request resets the backoff

USAGE:
    limiter = get_spotify_limiter()

    async with limiter:
        response = await client.get(url)

    # On 429:
    await limiter.handle_rate_limit_response(retry_after)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for rate limiter.

    The defaults stay under Spotify's rolling limit (roughly 180 requests/minute).
    max_backoff_seconds caps how long ONE 429 can stall a caller, a Retry-After longer
    than that makes the caller give up instead (the next poll cycle tries again).
    """

    max_tokens: int = 10  # Burst capacity
    refill_rate: float = 2.0  # Tokens per second
    max_backoff_seconds: float = 30.0
    initial_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0


@dataclass
class RateLimiter:
    """Token bucket rate limiter with adaptive backoff, used as an async context manager."""

    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    name: str = "default"

    _tokens: float = field(default=0.0, init=False)
    _last_refill: float = field(default_factory=time.monotonic, init=False)
    _current_backoff: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.config.max_tokens)
        self._current_backoff = self.config.initial_backoff_seconds

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(
            float(self.config.max_tokens), self._tokens + elapsed * self.config.refill_rate
        )
        self._last_refill = now

    async def acquire(self) -> None:
        """Take one token, waiting until one is available."""
        while True:
            async with self._lock:
                self._refill_tokens()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_time = (1.0 - self._tokens) / self.config.refill_rate

            logger.debug("RateLimiter[%s]: bucket empty, waiting %.2fs", self.name, wait_time)
            await asyncio.sleep(wait_time)

    def backoff_for(self, retry_after: float | None) -> float:
        """How long a 429 with this Retry-After would make us wait."""
        wait_time = retry_after if retry_after is not None else self._current_backoff
        return min(float(wait_time), self.config.max_backoff_seconds)

    async def handle_rate_limit_response(self, retry_after: float | None = None) -> float:
        """Wait after a 429 and grow the backoff for the next one.

        Returns:
            The wait time used
        """
        async with self._lock:
            wait_time = self.backoff_for(retry_after)
            logger.warning(
                "RateLimiter[%s]: 429 rate limited, waiting %.1fs (backoff level %.1fs)",
                self.name,
                wait_time,
                self._current_backoff,
            )
            self._current_backoff = min(
                self._current_backoff * self.config.backoff_multiplier,
                self.config.max_backoff_seconds,
            )
            self._tokens = 0.0

        await asyncio.sleep(wait_time)
        return wait_time

    def reset_backoff(self) -> None:
        self._current_backoff = self.config.initial_backoff_seconds

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object
    ) -> None:
        if exc_type is None:
            self.reset_backoff()

    @property
    def available_tokens(self) -> float:
        self._refill_tokens()
        return self._tokens


# One limiter per provider, shared by every client instance in the process.
_spotify_limiter: RateLimiter | None = None


def get_spotify_limiter() -> RateLimiter:
    """Get the process-wide Spotify rate limiter."""
    global _spotify_limiter
    if _spotify_limiter is None:
        _spotify_limiter = RateLimiter(name="spotify")
    return _spotify_limiter


__all__ = ["RateLimiter", "RateLimiterConfig", "get_spotify_limiter"]
