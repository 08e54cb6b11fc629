"""Bounded pool of reusable frame compositors."""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from export_engine.config import Settings, get_settings
from export_engine.render.compositor import FrameCompositor

logger = logging.getLogger(__name__)


class RendererPool:
    """At most ``size`` compositors are checked out at once.

    Idle compositors are kept for reuse (fonts stay loaded); one of the
    wrong canvas size is replaced rather than resized. Each compositor owns
    its text renderer since compositors run on different worker threads.
    """

    def __init__(self, size: int | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.size = max(1, size or self.settings.export_renderer_pool_size)
        self._semaphore = asyncio.Semaphore(self.size)
        self._idle: list[FrameCompositor] = []
        self.created = 0

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    def _take(self, width: int, height: int) -> FrameCompositor:
        for index, compositor in enumerate(self._idle):
            if compositor.width == width and compositor.height == height:
                return self._idle.pop(index)
        if len(self._idle) >= self.size:
            self._idle.pop(0)
        self.created += 1
        logger.info(f"[EXPORT] New compositor context {width}x{height} ({self.created} created)")
        return FrameCompositor(width, height, settings=self.settings)

    @asynccontextmanager
    async def checkout(self, width: int, height: int, media_dir: str | Path | None = None):
        """Borrow a compositor bound to ``media_dir``; waits while the pool is exhausted."""
        async with self._semaphore:
            compositor = self._take(width, height)
            compositor.bind_media_dir(media_dir)
            try:
                yield compositor
            finally:
                compositor.reset()
                self._idle.append(compositor)
