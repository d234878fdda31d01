# Hey future me - this worker drives the scheduled half of the now-playing pipeline!
#
# Every interval_seconds it asks NowPlayingService.poll_all() to walk all valid Spotify
# accounts. The service already isolates users from each other (per-user timeout,
# never-raising poll_user), so an exception reaching this loop means something global
# broke (DB down, misconfiguration). We log it and try again next interval, no crash.
#
# The loop sleeps AFTER a cycle, so a slow cycle pushes the next one back instead of
# overlapping it. Two overlapping cycles would double every provider call.
"""Background worker polling now-playing state for all linked users."""

import asyncio
import contextlib
import logging
import time
from typing import Any

from earshot.application.services.now_playing_service import NowPlayingService
from earshot.domain.entities import Platform, PollSummary
from earshot.infrastructure.observability import log_worker_health, set_correlation_id

logger = logging.getLogger(__name__)

WORKER_NAME = "now_playing"


class NowPlayingWorker:
    """Periodically polls the provider for every linked account."""

    def __init__(
        self,
        service: NowPlayingService,
        interval_seconds: int = 60,
        platform: Platform = Platform.SPOTIFY,
    ) -> None:
        self.service = service
        self.interval_seconds = interval_seconds
        self.platform = platform
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._cycles_completed = 0
        self._errors_total = 0
        self._start_time = time.time()
        self._last_summary: PollSummary | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop. Safe to call multiple times."""
        if self._running:
            logger.warning("now_playing.already_running")
            return

        self._running = True
        self._start_time = time.time()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "worker.started",
            extra={"worker": WORKER_NAME, "interval_seconds": self.interval_seconds},
        )

    async def stop(self) -> None:
        """Stop the polling loop and wait for it to finish. Safe to call multiple times."""
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info(
            "worker.stopped",
            extra={
                "worker": WORKER_NAME,
                "cycles_completed": self._cycles_completed,
                "errors_total": self._errors_total,
                "uptime_seconds": int(time.time() - self._start_time),
            },
        )

    async def run_once(self) -> PollSummary:
        """Run a single polling cycle."""
        set_correlation_id()
        started = time.monotonic()
        summary = await self.service.poll_all(self.platform)
        self._last_summary = summary
        logger.info(
            "now_playing.cycle.completed",
            extra={
                **summary.as_dict(),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return summary

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
                self._cycles_completed += 1

                if self._cycles_completed % 10 == 0:
                    log_worker_health(
                        logger,
                        WORKER_NAME,
                        self._cycles_completed,
                        self._errors_total,
                        time.time() - self._start_time,
                        extra_stats=self._last_summary.as_dict() if self._last_summary else None,
                    )

            except Exception as e:
                # Do not crash the loop on errors - log and continue
                self._errors_total += 1
                logger.error(
                    "now_playing.cycle.failed",
                    extra={"error_type": type(e).__name__},
                    exc_info=True,
                )

            await asyncio.sleep(self.interval_seconds)

    def get_status(self) -> dict[str, Any]:
        """Worker state for the health endpoint."""
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "cycles_completed": self._cycles_completed,
            "errors_total": self._errors_total,
            "last_cycle": self._last_summary.as_dict() if self._last_summary else None,
        }
