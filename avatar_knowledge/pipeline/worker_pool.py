"""Bounded worker pool for background ingestion.

An ``asyncio.Queue`` feeds a fixed number of worker tasks.  ``submit``
never blocks the caller on processing: it enqueues and returns, and one of
the workers picks the task up and runs the handler.

# ─── DESIGN ────────────────────────────────────────────────────────────
#
#   ingest() ──submit(task)──→ [ asyncio.Queue ] ──→ worker-0 ──→ handler(task)
#                                                ──→ worker-1 ──→ handler(task)
#
#   - Concurrency is the worker count (``ingest_workers`` setting).
#   - The handler owns error reporting; a handler exception is logged and
#     the worker moves on to the next task.
#   - stop() drains the queue by default, then cancels the workers.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(logger_name=__name__)

T = TypeVar("T")


class IngestionWorkerPool(Generic[T]):
    """Runs *handler* for every submitted task on ``num_workers`` workers.

    Parameters
    ----------
    handler:
        Coroutine function invoked once per task.
    num_workers:
        Number of tasks processed concurrently.
    name:
        Prefix for worker task names (visible in debuggers and logs).
    """

    def __init__(
        self,
        handler: Callable[[T], Awaitable[None]],
        num_workers: int = 2,
        name: str = "ingest-worker",
    ) -> None:
        self._handler = handler
        self._num_workers = max(1, num_workers)
        self._name = name
        self._queue: asyncio.Queue[T] | None = None
        self._workers: list[asyncio.Task[None]] = []

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        """Tasks waiting in the queue (not counting ones being processed)."""
        return self._queue.qsize() if self._queue is not None else 0

    # ─── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        """Create the queue and spawn the workers.  Idempotent."""
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._run(i), name=f"{self._name}-{i}")
            for i in range(self._num_workers)
        ]
        logger.info("worker_pool_started", workers=self._num_workers, name=self._name)

    async def submit(self, task: T) -> None:
        """Enqueue *task* for background processing.

        Raises
        ------
        RuntimeError
            If the pool has not been started.
        """
        if self._queue is None or not self._workers:
            raise RuntimeError("Worker pool is not running; call start() first")
        await self._queue.put(task)
        logger.debug("task_submitted", queued=self._queue.qsize())

    async def join(self) -> None:
        """Wait until every submitted task has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers.

        Parameters
        ----------
        drain:
            When ``True`` wait for queued tasks to finish first.  When
            ``False`` cancel immediately; in-flight handlers see
            ``CancelledError``.
        """
        if not self._workers:
            return
        if drain:
            await self.join()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("worker_pool_stopped", name=self._name, drained=drain)

    # ─── Worker loop ───────────────────────────────────────────────────

    async def _run(self, worker_id: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            task = await queue.get()
            try:
                await self._handler(task)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("worker_task_crashed", worker=worker_id)
            finally:
                queue.task_done()
