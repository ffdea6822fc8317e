"""Background installation poller.

Keeps installation records moving without a client asking: every
``poll_interval`` seconds each installing record is reconciled with its
runner. Callers can still poll on demand; both paths use the same
conditional write, so they never conflict.
"""

import asyncio
import logging
from typing import Optional

from dillinger.install.lifecycle import InstallationLifecycleManager

logger = logging.getLogger(__name__)


class InstallPoller:
    """Background service that reconciles running installations"""

    def __init__(self, lifecycle: InstallationLifecycleManager, poll_interval: float = 3.0, error_backoff: float = 10.0):
        self.lifecycle = lifecycle
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self.running = False
        self.task: Optional[asyncio.Task] = None

    async def start(self):
        """Start background polling"""
        if self.running:
            logger.warning("[Poller] Already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._poll_loop())
        logger.info(f"[Poller] Started, interval {self.poll_interval}s")

    async def stop(self):
        """Stop background polling"""
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("[Poller] Stopped")

    async def _poll_loop(self):
        while self.running:
            try:
                changed = await self.lifecycle.poll_all()
                for game_id, platform_id, record in changed:
                    logger.info(f"[Poller] {game_id}/{platform_id} -> {record.status.value}")
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Poller] Error in poll loop: {e}", exc_info=True)
                await asyncio.sleep(self.error_backoff)
