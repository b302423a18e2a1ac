"""
Async cron scheduler with single-flight execution.

Fires a blocking task on every tick of a cron expression. The task runs in
a worker thread so the event loop stays responsive to shutdown signals.
At most one invocation is ever in flight: a tick (or an eager run_now())
that arrives while the previous invocation is still running is skipped,
not queued.

Usage:
    scheduler = CronScheduler("0 2 * * *", executor.run, name="cleanup")
    scheduler.start()
    scheduler.run_now()          # eager run, same single-flight gate
    ...
    scheduler.stop()
    await scheduler.wait_idle(timeout=30)
"""

import asyncio
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from sweeper.scheduler.cron import CronSchedule


class CronScheduler:
    """Runs ``task`` on a cron schedule, never more than once at a time.

    All public methods must be called from the event loop thread.
    """

    def __init__(
        self,
        expression: str,
        task: Callable[[], Any],
        name: str = "task",
    ) -> None:
        self._schedule = CronSchedule(expression)  # raises CronError
        self._task_fn = task
        self._name = name

        self._running = False
        self._wakeup: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._last_tick: datetime | None = None

        self.executions = 0
        self.skipped = 0

    # ── Public API ──────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_busy(self) -> bool:
        """True while an invocation of the task is in flight."""
        return self._inflight is not None and not self._inflight.done()

    @property
    def expression(self) -> str:
        return self._schedule.expression

    def start(self) -> None:
        """Launch the tick loop as a background asyncio task."""
        if self._running:
            logger.debug("Scheduler[{}]: already started", self._name)
            return
        self._running = True
        self._wakeup = asyncio.Event()
        self._loop_task = asyncio.create_task(self._tick_loop(), name=f"cron-{self._name}")
        logger.info("Scheduler[{}]: started with schedule '{}'", self._name, self.expression)

    def stop(self) -> None:
        """Halt future ticks. Returns immediately; an in-flight run keeps going."""
        if not self._running:
            logger.debug("Scheduler[{}]: stop requested but not running", self._name)
            return
        self._running = False
        if self._wakeup is not None:
            self._wakeup.set()
        logger.info("Scheduler[{}]: stopped", self._name)

    def run_now(self) -> bool:
        """Request an immediate run through the single-flight gate."""
        return self.fire()

    def fire(self) -> bool:
        """Start one invocation unless one is already in flight.

        Returns:
            True if an invocation was started, False if it was skipped.
        """
        if self.is_busy:
            self.skipped += 1
            logger.warning(
                "Scheduler[{}]: previous run still in progress, skipping this trigger",
                self._name,
            )
            return False
        self.executions += 1
        self._inflight = asyncio.create_task(self._invoke(self.executions))
        return True

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait for the in-flight invocation (if any) to finish.

        Args:
            timeout: Max seconds to wait. None = wait indefinitely.

        Returns:
            True if idle on return, False if the timeout expired first.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        def _remaining() -> float | None:
            return None if deadline is None else max(0.0, deadline - loop.time())

        if self._loop_task is not None and not self._running:
            # Let the tick loop observe the stop request before we return
            await asyncio.wait({self._loop_task}, timeout=_remaining())

        inflight = self._inflight
        if inflight is None or inflight.done():
            return True
        done, _ = await asyncio.wait({inflight}, timeout=_remaining())
        if not done:
            logger.warning(
                "Scheduler[{}]: run still in progress after {}s, leaving it to finish",
                self._name,
                timeout,
            )
            return False
        return True

    # ── Internals ───────────────────────────────────────────────────────

    async def _tick_loop(self) -> None:
        """Sleep until each cron tick and fire the task, until stopped."""
        while self._running:
            try:
                now = self._now()
                # A timer that wakes marginally early must not yield the same tick twice
                reference = now if self._last_tick is None else max(now, self._last_tick)
                next_run = self._schedule.next_after(reference)
                delay = max(0.0, (next_run - now).total_seconds())
                logger.debug(
                    "Scheduler[{}]: next run at {}",
                    self._name,
                    next_run.isoformat(timespec="seconds"),
                )
                if await self._sleep(delay):
                    break
                self._last_tick = next_run
                self.fire()
            except Exception as e:
                logger.error("Scheduler[{}]: tick loop error: {}", self._name, e)
                if await self._sleep(1.0):
                    break

    async def _sleep(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds. Returns True if woken by stop()."""
        assert self._wakeup is not None
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return not self._running
        return True

    async def _invoke(self, run_number: int) -> None:
        logger.debug("Scheduler[{}]: run #{} starting", self._name, run_number)
        try:
            await asyncio.to_thread(self._task_fn)
        except Exception as e:
            logger.exception("Scheduler[{}]: run #{} failed: {}", self._name, run_number, e)
        else:
            logger.debug("Scheduler[{}]: run #{} finished", self._name, run_number)

    @staticmethod
    def _now() -> datetime:
        """Current local time (cron expressions are evaluated in local time)."""
        return datetime.now().astimezone()
