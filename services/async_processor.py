# services/async_processor.py
"""Thread pool for blocking engine work and a runner for background batch jobs"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, Callable, Coroutine, Set

from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)


class WorkerPool:
    """
    Bounded ThreadPoolExecutor shared by every orchestrator.
    Engines are synchronous; run() keeps them off the event loop.
    Call shutdown() on app exit.
    """

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="convert")

    @property
    def executor(self) -> ThreadPoolExecutor:
        return self._executor

    async def run(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args, **kwargs))

    def shutdown(self, wait: bool = True) -> None:
        """Wait for running work to complete, then shutdown executor."""
        self._executor.shutdown(wait=wait, cancel_futures=True)


class BackgroundJobRunner:
    """
    Fire-and-forget asyncio tasks for long jobs (batch conversions).
    Keeps a reference to each task until it finishes; at most
    max_concurrent jobs run at once, the rest wait their turn.
    """

    def __init__(self, max_concurrent: int = 2):
        self._tasks: Set[asyncio.Task] = set()
        self._slots = asyncio.Semaphore(max_concurrent)

    def submit(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(self._run(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Coroutine) -> None:
        try:
            async with self._slots:
                await coro
        except asyncio.CancelledError:
            logger.info("[JOB] Background job cancelled")
            coro.close()
            raise
        except Exception as e:
            logger.exception(f"[JOB] Background job failed: {e}")

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel unfinished jobs and wait for them to unwind."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
