"""Cancellable periodic tasks."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional


logger = logging.getLogger(__name__)


@dataclass
class TaskStats:
    """Run counters for a periodic task."""
    runs: int = 0
    failures: int = 0
    timeouts: int = 0
    last_error: Optional[str] = None
    last_duration: float = 0.0


class PeriodicTask:
    """
    Runs a coroutine function on a fixed period.

    A cycle always finishes (or hits its timeout) before the next cycle of
    the same task starts. Errors are logged and counted; they never stop
    the task.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], Awaitable[None]],
        timeout: Optional[float] = None
    ):
        """
        Initialize periodic task.

        Args:
            name: Task name for logs
            interval: Period in seconds
            func: Coroutine function run each cycle
            timeout: Per-cycle timeout in seconds (None for no limit)
        """
        self.name = name
        self.interval = interval
        self.func = func
        self.timeout = timeout
        self.stats = TaskStats()

        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"periodic-{self.name}")
        logger.debug(f"Periodic task {self.name} started (every {self.interval}s)")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug(f"Periodic task {self.name} stopped")

    async def run_once(self) -> bool:
        """
        Run one cycle.

        Returns:
            True if the cycle completed without error
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        self.stats.runs += 1
        try:
            if self.timeout is not None:
                await asyncio.wait_for(self.func(), timeout=self.timeout)
            else:
                await self.func()
            return True
        except asyncio.TimeoutError:
            self.stats.timeouts += 1
            self.stats.last_error = f"timed out after {self.timeout}s"
            logger.warning(f"Cycle {self.name} timed out after {self.timeout}s")
            return False
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.failures += 1
            self.stats.last_error = str(e)
            logger.error(f"Error in {self.name} cycle: {e}")
            return False
        finally:
            self.stats.last_duration = loop.time() - started

    async def _loop(self):
        loop = asyncio.get_running_loop()
        while self._running:
            started = loop.time()
            await self.run_once()
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self.interval - elapsed))


class Scheduler:
    """A named set of periodic tasks started and stopped together."""

    def __init__(self):
        self.tasks: Dict[str, PeriodicTask] = {}

    def add(
        self,
        name: str,
        interval: float,
        func: Callable[[], Awaitable[None]],
        timeout: Optional[float] = None
    ) -> PeriodicTask:
        if name in self.tasks:
            raise ValueError(f"Task {name} already scheduled")
        task = PeriodicTask(name, interval, func, timeout=timeout)
        self.tasks[name] = task
        return task

    async def start(self):
        for task in self.tasks.values():
            await task.start()
        logger.info(f"Scheduler started {len(self.tasks)} tasks")

    async def stop(self):
        await asyncio.gather(
            *(task.stop() for task in self.tasks.values()),
            return_exceptions=True
        )
        logger.info("Scheduler stopped")

    def get_stats(self) -> dict:
        return {
            name: {
                "interval": task.interval,
                "running": task.is_running,
                "runs": task.stats.runs,
                "failures": task.stats.failures,
                "timeouts": task.stats.timeouts,
                "lastError": task.stats.last_error,
            }
            for name, task in self.tasks.items()
        }
