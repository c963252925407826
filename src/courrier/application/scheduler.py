"""Periodic fetch trigger."""

from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from courrier.application.use_cases.fetch_coordinator import FetchCoordinator, RunHandle


class Scheduler:
    """
    Triggers fetch runs on startup and every ``interval_seconds``.

    Ticks that land while a run is active join that run (single-flight).
    Stopping the scheduler leaves an active run alone.
    """

    def __init__(
        self,
        coordinator: FetchCoordinator,
        interval_seconds: Optional[int] = None,
        fetch_on_startup: bool = True,
    ) -> None:
        self.coordinator = coordinator
        self.interval_seconds = interval_seconds
        self.fetch_on_startup = fetch_on_startup
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        if self.interval_seconds:
            logger.info(f"Scheduler started: fetching every {self.interval_seconds}s")
        else:
            logger.info("Scheduler started without a fetch interval")
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="fetch-scheduler")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Scheduler stopped")

    def tick(self) -> RunHandle:
        self.ticks += 1
        return self.coordinator.trigger()

    async def _loop(self) -> None:
        if self.fetch_on_startup:
            logger.info("Running startup fetch")
            self.tick()

        if not self.interval_seconds:
            return

        while True:
            await asyncio.sleep(self.interval_seconds)
            logger.debug("Scheduled fetch tick")
            self.tick()
