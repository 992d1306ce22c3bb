# ABOUTME: Background archive worker fed by a queue of drain requests.
# ABOUTME: Feed refreshes enqueue and return; one task drains the archive queue at a time.

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

import structlog

log = structlog.get_logger()


class ArchiveWorker:
    """Single sequential consumer of archive drain requests.

    ``schedule()`` is fire-and-forget: it enqueues a request and starts the
    consumer task if needed. Requests that pile up while a drain is running
    are coalesced into one follow-up drain.
    """

    def __init__(self, drain: Callable[[], Awaitable[object]]):
        self._drain = drain
        self._queue: asyncio.Queue[None] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> None:
        self._queue.put_nowait(None)
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="archive-worker")
        log.debug("archive_drain_scheduled", pending=self._queue.qsize())

    async def join(self) -> None:
        """Wait until every scheduled drain has finished."""
        await self._queue.join()

    async def close(self) -> None:
        """Cancel the consumer and drop requests it never took, releasing ``join()``."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        if dropped:
            log.info("archive_drains_dropped", count=dropped)

    async def _run(self) -> None:
        while True:
            await self._queue.get()
            taken = 1
            while not self._queue.empty():
                self._queue.get_nowait()
                taken += 1

            try:
                await self._drain()
            except Exception:
                log.exception("archive_drain_error")
            finally:
                for _ in range(taken):
                    self._queue.task_done()
