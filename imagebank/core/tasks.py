"""
Background task dispatch for best-effort work (bank stores, syncs).
Jobs run one at a time on a worker task; failures are logged, never raised to the submitter.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Tuple

from ..util.logging import logger

Job = Callable[[], Awaitable[object]]


class BackgroundDispatcher:
    """Bounded queue plus a single worker task.

    submit() blocks when the queue is full, which applies backpressure to
    callers instead of letting unawaited work pile up.
    """

    def __init__(self, name: str = "background", max_queue_size: int = 64):
        self.name = name
        self.max_queue_size = max_queue_size
        self.completed = 0
        self.failed = 0
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _ensure_worker(self) -> asyncio.Queue:
        loop = asyncio.get_running_loop()
        if self._loop is not loop or self._worker is None or self._worker.done():
            # A new event loop (or a dead worker) starts a fresh queue
            if self._loop is not loop or self._queue is None:
                self._queue = asyncio.Queue(maxsize=self.max_queue_size)
            self._loop = loop
            self._worker = loop.create_task(self._run(), name=f"{self.name}-worker")
        return self._queue

    async def submit(self, job_name: str, job: Job) -> None:
        """Queue a job; returns once it is enqueued, not when it finishes."""
        queue = self._ensure_worker()
        await queue.put((job_name, job))

    async def _run(self) -> None:
        while True:
            item: Tuple[str, Job] = await self._queue.get()
            job_name, job = item
            try:
                await job()
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.log_task_failure(job_name, e, {"dispatcher": self.name})
            finally:
                self._queue.task_done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def drain(self) -> None:
        """Wait until every queued job has finished."""
        if self._queue is None or self._loop is not asyncio.get_running_loop():
            return
        await self._queue.join()

    async def close(self) -> None:
        """Drain outstanding jobs and stop the worker."""
        await self.drain()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None
