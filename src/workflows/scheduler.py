"""
Periodic background work for the Funnel Recovery Engine.

Two loops run side by side inside the API process:

- deadline sweep: JourneyTracker.sweep_deadlines
- delivery dispatch: DeliveryDispatcher.dispatch_due

Each loop runs its job, then waits for the interval or a stop request,
whichever comes first. A job never overlaps itself: run_once holds a lock,
so a manual trigger and the loop cannot run the same job concurrently.
Exceptions are logged and the loop keeps going.

Usage:
    scheduler = EngineScheduler(tracker, dispatcher, settings)
    scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from src.config.settings import EngineSettings
from src.services.dispatcher import DeliveryDispatcher
from src.services.journey_tracker import JourneyTracker

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs an async job every ``interval`` seconds until stopped.

    Args:
        name: Name used in logs
        job: Coroutine function to run
        interval: Seconds between the end of one run and the start of the next
    """

    def __init__(self, name: str, job: Callable[[], Awaitable[Any]], interval: float) -> None:
        self.name = name
        self.interval = interval
        self._job = job
        self._lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        """Run the job now, waiting for a run already in progress to finish first.

        Returns:
            The job's result, or None if it raised
        """
        async with self._lock:
            self.runs += 1
            try:
                return await self._job()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.failures += 1
                logger.exception("Periodic task '%s' failed", self.name)
                return None

    def start(self) -> None:
        """Start the loop on the running event loop. No-op if already running."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("Periodic task '%s' started (every %.0fs)", self.name, self.interval)

    async def stop(self, timeout: float = 10.0) -> None:
        """Ask the loop to stop, letting a run in progress finish.

        Cancels the loop if it does not stop within ``timeout`` seconds.
        """
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except TimeoutError:
            logger.warning("Periodic task '%s' did not stop in %.0fs; cancelling", self.name, timeout)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Periodic task '%s' stopped", self.name)

    async def _loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass


class EngineScheduler:
    """The deadline sweep and delivery dispatch loops."""

    def __init__(
        self,
        tracker: JourneyTracker,
        dispatcher: DeliveryDispatcher,
        settings: EngineSettings | None = None,
    ) -> None:
        settings = settings or EngineSettings()
        self.sweep = PeriodicTask("deadline-sweep", tracker.sweep_deadlines, settings.sweep_interval_seconds)
        self.dispatch = PeriodicTask("delivery-dispatch", dispatcher.dispatch_due, settings.dispatch_interval_seconds)

    @property
    def tasks(self) -> tuple[PeriodicTask, PeriodicTask]:
        return (self.sweep, self.dispatch)

    def start(self) -> None:
        for task in self.tasks:
            task.start()

    async def stop(self) -> None:
        await asyncio.gather(*(task.stop() for task in self.tasks))


__all__ = ["EngineScheduler", "PeriodicTask"]
