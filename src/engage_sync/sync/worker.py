"""Bounded background worker pool for dispatch batches.

A fixed number of asyncio worker tasks drain a bounded queue of job
factories. Submitting does not wait for the job to run and returns no
handle to it. A job that raises is logged and dropped; the worker moves on
to the next job.

Shutdown is graceful: stop() closes the pool to new work, lets queued and
running jobs finish within an optional timeout, and only then cancels the
workers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

Job = Callable[[], Awaitable[object]]


class PoolClosedError(RuntimeError):
    """Raised by submit() once the pool has begun shutting down."""


class DispatchWorkerPool:
    """Runs submitted jobs on N asyncio worker tasks.

    Args:
        max_workers: Number of concurrent worker tasks.
        max_queue_size: Queue bound; submit() waits while the queue is full.
    """

    def __init__(self, max_workers: int = 2, max_queue_size: int = 1000) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._max_workers = max_workers
        self._max_queue_size = max_queue_size
        self._queue: asyncio.Queue[Job] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._closing = False

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._closing

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from a running event loop."""
        if self._workers:
            return
        self._closing = False
        self._queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"dispatch-worker-{i}")
            for i in range(self._max_workers)
        ]
        logger.info("worker_pool.started", workers=self._max_workers)

    async def submit(self, job: Job) -> None:
        """Enqueue a job factory, starting the pool on first use.

        Raises:
            PoolClosedError: If stop() has been called.
        """
        if self._closing:
            raise PoolClosedError("Dispatch worker pool is shutting down")
        if not self._workers:
            self.start()
        assert self._queue is not None
        await self._queue.put(job)

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, timeout: float | None = None) -> None:
        """Stop accepting work, drain, then cancel the workers.

        Args:
            timeout: Seconds to wait for queued and running jobs. None waits
                until they finish. Jobs still unfinished afterwards are
                cancelled.
        """
        if not self._workers:
            return
        self._closing = True
        try:
            await asyncio.wait_for(self.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "worker_pool.drain_timeout", timeout=timeout, dropped_jobs=self.pending
            )

        dropped = self.pending
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("worker_pool.stopped", dropped_jobs=dropped)

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("worker_pool.job_failed", worker=index)
            finally:
                queue.task_done()
