"""Background workers."""

from .now_playing_worker import NowPlayingWorker

__all__ = ["NowPlayingWorker"]
