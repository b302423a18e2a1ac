"""
Service lifecycle controller for the sweeper.

Models the callbacks an OS service manager expects from a long-running
program: start, stop, and a blocking run loop. The state machine is

    stopped → starting → running → stopping → stopped

start() spins up the cron scheduler and triggers one eager cleanup run;
stop() fires a one-shot shutdown signal; run() blocks until that signal
fires, then halts the scheduler and gives any in-flight cleanup a bounded
amount of time to finish.

Usage:
    service = SweeperService(config)
    loop.add_signal_handler(signal.SIGTERM, service.stop)
    await service.run()  # Returns after stop()
"""

import asyncio
from enum import Enum
from typing import Any, Callable

from loguru import logger

from sweeper.config import SweeperConfig
from sweeper.retention.executor import CleanupExecutor
from sweeper.scheduler.scheduler import CronScheduler


class ServiceState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class ShutdownSignal:
    """One-shot shutdown event. Firing it more than once is a no-op.

    Must be fired from the event loop thread (loop.add_signal_handler
    callbacks satisfy this).
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._fired = False

    def fire(self) -> bool:
        """Fire the signal. Returns False if it had already fired."""
        if self._fired:
            return False
        self._fired = True
        self._event.set()
        return True

    @property
    def fired(self) -> bool:
        return self._fired

    async def wait(self) -> None:
        await self._event.wait()


class SweeperService:
    """Runs the cleanup executor on the configured cron schedule.

    Usage:
        service = SweeperService(config)
        await service.run()
    """

    def __init__(
        self,
        config: SweeperConfig,
        task: Callable[[], Any] | None = None,
    ) -> None:
        self._config = config
        self._task = task if task is not None else CleanupExecutor(config).run
        self._state = ServiceState.STOPPED
        self._shutdown = ShutdownSignal()
        self._scheduler: CronScheduler | None = None

    # ── Public API ──────────────────────────────────────────────────────

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def scheduler(self) -> CronScheduler | None:
        return self._scheduler

    async def start(self) -> None:
        """Start the scheduler and kick off one eager cleanup run.

        Raises:
            CronError: The configured schedule is invalid (fatal).
        """
        if self._state not in (ServiceState.STOPPED, ServiceState.STARTING):
            logger.warning("Service: start ignored, service is {}", self._state.value)
            return

        self._set_state(ServiceState.STARTING)

        try:
            self._scheduler = CronScheduler(self._config.time, self._task, name="cleanup")
        except ValueError:
            self._set_state(ServiceState.STOPPED)
            raise

        self._scheduler.start()
        self._scheduler.run_now()
        self._set_state(ServiceState.RUNNING)
        logger.info("Service started")

    def stop(self) -> None:
        """Ask the run loop to exit. Safe to call any number of times."""
        if not self._shutdown.fire():
            logger.debug("Service: stop already requested")
            return
        logger.info("Service: stop requested")
        if self._state is ServiceState.RUNNING:
            self._set_state(ServiceState.STOPPING)

    async def run(self) -> None:
        """Start, block until stop() is called, then shut down cleanly."""
        await self.start()
        await self._shutdown.wait()
        await self._halt()

    # ── Internals ───────────────────────────────────────────────────────

    async def _halt(self) -> None:
        if self._state not in (ServiceState.RUNNING, ServiceState.STOPPING):
            return
        if self._state is ServiceState.RUNNING:
            self._set_state(ServiceState.STOPPING)
        scheduler = self._scheduler
        if scheduler is not None:
            scheduler.stop()
            idle = await scheduler.wait_idle(timeout=self._config.stop_timeout_seconds)
            if not idle:
                logger.warning(
                    "Service: in-flight cleanup did not finish within {}s",
                    self._config.stop_timeout_seconds,
                )
        self._set_state(ServiceState.STOPPED)
        logger.info("Service stopped")

    def _set_state(self, state: ServiceState) -> None:
        logger.debug("Service: {} → {}", self._state.value, state.value)
        self._state = state
