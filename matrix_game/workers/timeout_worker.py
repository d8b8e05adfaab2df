"""
Timeout Worker

Runs the timeout sweep on a fixed interval in the background. A sweep
that is still running when the next one is due is not overlapped: the
new request is skipped.
"""

import asyncio
from typing import Any, Dict, Optional

from ..game.timeouts import TimeoutProcessor
from ..utils.config import get_settings
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class TimeoutWorker:
    """
    Background loop around a TimeoutProcessor.

    Args:
        processor: Does the actual sweep
        interval_seconds: Pause between sweeps (TIMEOUT_CHECK_INTERVAL_SECONDS by default)
    """

    def __init__(self, processor: TimeoutProcessor, interval_seconds: Optional[float] = None):
        self.processor = processor
        self.interval_seconds = interval_seconds or get_settings().timeout_check_interval_seconds
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop; the first sweep runs immediately."""
        if self.is_running:
            logger.debug("Timeout worker already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Timeout worker started, checking every {self.interval_seconds}s")

    async def stop(self) -> None:
        """Stop the loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Timeout worker stopped")

    async def run_once(self) -> Optional[Dict[str, Any]]:
        """
        Run one sweep unless one is already in progress.

        Returns:
            Optional[dict]: The sweep report, or None if the sweep was skipped or failed
        """
        if self._lock.locked():
            logger.debug("Timeout sweep already in progress, skipping")
            return None

        async with self._lock:
            try:
                return await self.processor.process_all()
            except Exception as e:
                logger.error(f"Timeout sweep failed: {e}")
                return None

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
