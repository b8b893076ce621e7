"""
Nonce Reaper
Periodically purges expired SIWE nonces from the registry
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from proofquest_auth.core.config import settings
from proofquest_auth.services.siwe_nonce_store import NonceRegistry

logger = logging.getLogger(__name__)


class NonceReaper:
    """Background task owned by the application lifecycle.

    start() is called from the startup hook and stop() from the shutdown
    hook, so no timer outlives the process.
    """

    def __init__(self, registry: NonceRegistry, interval_seconds: Optional[float] = None):
        self.registry = registry
        self.interval = max(
            0.01,
            float(interval_seconds if interval_seconds is not None else settings.nonce_reap_interval_seconds),
        )
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the reaping loop."""
        if not self.running:
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())
            logger.info("Nonce reaper started (interval %.0fs)", self.interval)

    async def stop(self) -> None:
        """Stop the reaping loop and wait for it to finish."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Nonce reaper stopped")

    async def run_once(self) -> int:
        """Run a single reap pass off the event loop."""
        removed = await asyncio.to_thread(self.registry.reap)
        if removed:
            logger.info("Reaped %d expired SIWE nonce(s)", removed)
        else:
            logger.debug("Nonce reap pass found nothing to remove")
        return removed

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if self._stopping.is_set():
                return

            try:
                await self.run_once()
            except Exception as e:
                logger.error("Nonce reap failed: %s", e, exc_info=True)
