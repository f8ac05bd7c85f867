"""Periodic credential refresh."""

from __future__ import annotations

import asyncio

from clusterkit.observability import get_logger

from .cluster_registry import ClusterRegistry

logger = get_logger(__name__)

DEFAULT_REFRESH_INTERVAL_SECONDS = 30


class RefreshScheduler:
    """Runs ClusterRegistry.refresh_all() on a fixed interval.

    At most one loop task is alive: start() cancels a running one first.
    """

    def __init__(
        self,
        registry: ClusterRegistry,
        interval: float = DEFAULT_REFRESH_INTERVAL_SECONDS,
    ):
        self.registry = registry
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Start the refresh loop, replacing a running one."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self.run(), name="cluster-refresh")
        return self._task

    async def stop(self) -> None:
        """Cancel the refresh loop and wait for it to exit."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        """Refresh, sleep, repeat until cancelled.

        A failing pass is logged and the loop carries on.
        """
        logger.info("Starting periodic credential refresh", interval=self.interval)

        while True:
            try:
                await self.registry.refresh_all()
            except asyncio.CancelledError:
                logger.info("Periodic credential refresh cancelled")
                raise
            except Exception as e:
                logger.error("Error in periodic credential refresh", error=str(e))

            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                logger.info("Periodic credential refresh cancelled")
                raise
