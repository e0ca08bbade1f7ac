"""Periodic allow-list refresh."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..storage.allowlist import AllowlistStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 24 * 60 * 60


class AllowlistRefreshScheduler:
    """Refreshes the allow-list once at start and then on a fixed interval."""

    def __init__(self, store: AllowlistStore, interval_seconds: float = DEFAULT_INTERVAL_SECONDS):
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="allowlist-refresh")
        logger.info("Allow-list refresh scheduled every %ss", self.interval_seconds)

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Allow-list refresh stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.store.refresh()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic allow-list update failed: {e}")
            self.runs += 1
            await asyncio.sleep(self.interval_seconds)
