"""Periodic gateway refresh for an engine session."""

import asyncio

from delivery_engine.config import get_settings
from delivery_engine.engine.lifecycle import TaskLifecycleEngine
from delivery_engine.utils.logging import get_logger

logger = get_logger(__name__)


class GatewayPoller:
    """
    Refreshes an engine from the gateway on a fixed interval.

    Each tick calls ``engine.refresh()`` while the engine is online and does
    nothing while it is offline. Errors are logged and polling continues;
    call :meth:`stop` to end it.
    """

    def __init__(
        self,
        engine: TaskLifecycleEngine,
        interval_seconds: float | None = None,
    ):
        self.engine = engine
        self.interval_seconds = interval_seconds or get_settings().poll_interval_seconds
        self.ticks = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """Check if the polling task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling in the background."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(
            "poller_started",
            actor_id=self.engine.actor.id,
            interval_seconds=self.interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("poller_stopped", actor_id=self.engine.actor.id, ticks=self.ticks)

    async def _run(self) -> None:
        while True:
            if self.engine.online:
                try:
                    await self.engine.refresh()
                except Exception as e:
                    logger.error("poll_failed", actor_id=self.engine.actor.id, error=str(e))
            self.ticks += 1
            await asyncio.sleep(self.interval_seconds)
