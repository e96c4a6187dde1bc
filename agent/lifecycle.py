"""
Agent lifecycle: the sampling and reporting schedules and their shutdown.
"""
import asyncio
import inspect
import signal
import time
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

from loguru import logger

from agent.sampler import RuntimeSampler
from agent.store import MetricStore
from agent.transmitter import MetricTransmitter

DEFAULT_SHUTDOWN_TIMEOUT = 5.0


class LifecycleState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class Clock:
    """Monotonic time source used by the schedules."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


class PeriodicSchedule:
    """Runs an action every ``interval`` seconds until cancelled.

    Deadlines advance in whole intervals from the start time. Deadlines
    missed while a slow action was running are skipped rather than fired
    back to back.
    """

    def __init__(self, name: str, interval: float, action: Callable[[], Any],
                 clock: Optional[Clock] = None):
        if interval <= 0:
            raise ValueError(f"{name} interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.action = action
        self.clock = clock or Clock()
        self.ticks = 0
        self.failed_ticks = 0
        self.skipped_ticks = 0

    async def run(self) -> None:
        next_tick = self.clock.monotonic() + self.interval
        logger.debug(f"{self.name} schedule started (every {self.interval}s)")

        while True:
            await self.clock.sleep(max(0.0, next_tick - self.clock.monotonic()))

            try:
                result = self.action()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.failed_ticks += 1
                logger.exception(f"{self.name} tick failed: {e}")
            self.ticks += 1

            next_tick += self.interval
            now = self.clock.monotonic()
            if next_tick <= now:
                missed = int((now - next_tick) // self.interval) + 1
                next_tick += missed * self.interval
                self.skipped_ticks += missed
                logger.warning(f"{self.name} tick overran, skipping {missed} tick(s)")


class AgentLifecycle:
    """Owns both schedules and stops them on a single cancellation signal.

    States go CREATED -> RUNNING -> SHUTTING_DOWN -> STOPPED. ``run()`` may
    only be called once.
    """

    def __init__(self, store: MetricStore, sampler: RuntimeSampler, transmitter: MetricTransmitter,
                 poll_interval: float, report_interval: float, clock: Optional[Clock] = None,
                 shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT):
        """Initialize the lifecycle controller.

        Args:
            store: Metric store shared by both schedules
            sampler: Runs on every sampling tick
            transmitter: Runs on every reporting tick
            poll_interval: Seconds between sampling ticks
            report_interval: Seconds between reporting ticks, at least poll_interval
            clock: Time source, real time by default
            shutdown_timeout: Grace period for the schedules to stop
        """
        if poll_interval <= 0 or report_interval <= 0:
            raise ValueError("Poll and report intervals must be positive")
        if report_interval < poll_interval:
            raise ValueError(
                f"Report interval ({report_interval}s) must not be shorter "
                f"than poll interval ({poll_interval}s)"
            )

        self.store = store
        self.sampler = sampler
        self.transmitter = transmitter
        self.clock = clock or Clock()
        self.shutdown_timeout = shutdown_timeout
        self.state = LifecycleState.CREATED
        self.stop_reason: Optional[str] = None

        self.sampling = PeriodicSchedule("sampling", poll_interval, self.sampler.sample, self.clock)
        self.reporting = PeriodicSchedule("reporting", report_interval, self._report, self.clock)

        self._stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    async def _report(self):
        return await self.transmitter.report(self.store.snapshot())

    def stop(self, reason: str = "requested") -> None:
        """Request shutdown. Safe to call repeatedly and from signal handlers."""
        if self._stop_event.is_set():
            return
        self.stop_reason = reason
        logger.info(f"Stop requested ({reason})")
        self._stop_event.set()

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None,
                                signals: Optional[Iterable[signal.Signals]] = None) -> None:
        """Stop the agent on SIGINT, SIGTERM and SIGQUIT (where available)."""
        loop = loop or asyncio.get_running_loop()
        if signals is None:
            signals = [getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGQUIT")
                       if hasattr(signal, name)]
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self.stop, sig.name)
            except (NotImplementedError, RuntimeError):
                logger.warning(f"Cannot install handler for {sig.name} on this platform")

    async def run(self) -> None:
        """Run both schedules until stopped.

        Raises:
            RuntimeStatsError: If runtime statistics are unreadable at startup
            RuntimeError: If called more than once
        """
        if self.state is not LifecycleState.CREATED:
            raise RuntimeError(f"Agent lifecycle already {self.state.value}")

        self.sampler.check()
        await self.transmitter.start()

        self.state = LifecycleState.RUNNING
        logger.info(f"Agent running: sampling every {self.sampling.interval}s, "
                    f"reporting every {self.reporting.interval}s")

        self._tasks = [
            asyncio.create_task(self.sampling.run(), name="agent-sampling"),
            asyncio.create_task(self.reporting.run(), name="agent-reporting"),
        ]
        stop_waiter = asyncio.create_task(self._stop_event.wait(), name="agent-stop")

        try:
            done, _ = await asyncio.wait([stop_waiter, *self._tasks],
                                         return_when=asyncio.FIRST_COMPLETED)
            for task in self._tasks:
                if task in done and not task.cancelled() and task.exception() is not None:
                    logger.error(f"{task.get_name()} stopped unexpectedly: {task.exception()}")
                    self.stop_reason = self.stop_reason or "schedule failure"
        finally:
            stop_waiter.cancel()
            await self._shutdown()

    async def _shutdown(self) -> None:
        self.state = LifecycleState.SHUTTING_DOWN
        logger.info("Shutting down agent gracefully")

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=self.shutdown_timeout)
            if pending:
                logger.warning(f"{len(pending)} schedule(s) did not stop within "
                               f"{self.shutdown_timeout}s")

        try:
            await self.transmitter.close()
        finally:
            self.state = LifecycleState.STOPPED
            logger.info(f"Agent stopped after {self.sampling.ticks} samples "
                        f"and {self.reporting.ticks} reports")
