import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger("TaskRegistry")

Runner = Callable[[], Awaitable[None]]


class TaskRegistry:
    """Named long-running coroutines (device pollers, emitter, metrics) started and stopped together."""

    def __init__(self) -> None:
        self.runners: dict[str, Runner] = {}
        self.tasks: dict[str, asyncio.Task] = {}

    def register(self, name: str, runner: Runner) -> None:
        if name in self.runners:
            logger.warning(f"[Task] '{name}' already registered, skip")
            return
        self.runners[name] = runner

    def start_all(self) -> None:
        for name, runner in self.runners.items():
            if name in self.tasks and not self.tasks[name].done():
                logger.warning(f"[Task] {name} is already running, skipping")
                continue

            logger.info(f"[Task] Starting {name}")
            self.tasks[name] = asyncio.create_task(runner(), name=f"task:{name}")

    async def wait_any_or(self, extra: asyncio.Task) -> asyncio.Task:
        """Block until `extra` or any registered task ends; registered tasks are not expected to end."""
        done, _ = await asyncio.wait([extra, *self.tasks.values()], return_when=asyncio.FIRST_COMPLETED)
        if extra in done:
            return extra
        return next(iter(done))

    async def stop(self, name: str) -> None:
        task = self.tasks.get(name)
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info(f"[Task] {name} cancelled")
        self.tasks.pop(name, None)

    async def stop_all(self) -> None:
        logger.info("[Task] Stopping all tasks ...")
        await asyncio.gather(*(self.stop(n) for n in list(self.tasks.keys())))
        logger.info("[Task] All tasks stopped")

    def status(self) -> dict[str, str]:
        status_dict = {}
        for name in self.runners:
            t = self.tasks.get(name)
            if t is None:
                status_dict[name] = "not started"
            elif t.cancelled():
                status_dict[name] = "cancelled"
            elif t.done():
                status_dict[name] = "done" if t.exception() is None else f"error: {t.exception()}"
            else:
                status_dict[name] = "running"
        return status_dict
