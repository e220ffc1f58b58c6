"""Tracking of detached background tasks."""
import asyncio
from typing import Awaitable, Set

from precision_pdf.utils.logger import logger


class BackgroundTaskTracker:
    """
    Owns fire-and-forget tasks.

    Tasks are referenced until they finish so they are not garbage collected
    mid-flight. ``join`` lets callers (tests, shutdown) wait for every task
    that is still outstanding, including tasks spawned while waiting.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable, name: str = None) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background task failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
                extra={"task_name": task.get_name()},
            )

    async def join(self) -> None:
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        # Done callbacks run on the next loop iteration
        await asyncio.sleep(0)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.join()
