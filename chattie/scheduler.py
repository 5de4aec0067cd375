"""
Interval pollers

A Scheduler owns a set of periodic tasks running in the event loop. Stopping
a task halts future ticks; a tick already in progress runs to completion.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs an async callable every `interval` seconds until stopped"""

    def __init__(self, name: str, func: Callable[[], Awaitable], interval: float, run_immediately: bool = True):
        self.name = name
        self.func = func
        self.interval = interval
        self.run_immediately = run_immediately
        self.ticks = 0
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=self.name)

    def stop(self):
        self._stop_event.set()

    async def join(self):
        if self._task:
            await self._task

    async def _run(self):
        logger.info(f"Starting {self.name} task (interval: {self.interval}s)")

        if not self.run_immediately and await self._wait():
            return

        while not self._stop_event.is_set():
            try:
                await self.func()
            except Exception as e:
                logger.error(f"Error in {self.name} task: {e}")
            self.ticks += 1

            if await self._wait():
                break

        logger.info(f"{self.name} task stopped")

    async def _wait(self) -> bool:
        """Sleep for one interval; True when stopped meanwhile"""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False


class Scheduler:
    """Lifecycle owner of the process's interval pollers"""

    def __init__(self):
        self.tasks: Dict[str, PeriodicTask] = {}

    def add(self, name: str, func: Callable[[], Awaitable], interval: float, run_immediately: bool = True) -> PeriodicTask:
        """
        Register a periodic task.

        Args:
            name: Unique task name
            func: Async callable run on every tick
            interval: Seconds between ticks
            run_immediately: Run the first tick at start instead of after one interval
        """
        if name in self.tasks:
            raise ValueError(f"Task {name} is already registered")
        task = PeriodicTask(name, func, interval, run_immediately)
        self.tasks[name] = task
        return task

    def start(self, name: Optional[str] = None):
        """Start one task, or all of them"""
        for task in self._select(name):
            task.start()

    def stop(self, name: Optional[str] = None):
        """Stop one task, or all of them"""
        for task in self._select(name):
            task.stop()

    async def join(self):
        """Wait until every started task has exited"""
        for task in self.tasks.values():
            await task.join()

    def _select(self, name: Optional[str]) -> List[PeriodicTask]:
        if name is None:
            return list(self.tasks.values())
        if name not in self.tasks:
            raise KeyError(f"Unknown task {name}")
        return [self.tasks[name]]
