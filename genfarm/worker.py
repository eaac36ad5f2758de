"""
Background consumer for the task queue.

A single QueueWorker drains the channel one item at a time, so execution
order equals enqueue order. For each item it marks the task In Progress,
runs it with the shutdown event, then marks it Completed or Failed.

Shutdown is cooperative: an idle worker exits as soon as the shutdown
event is set, while a running work item is expected to watch the same event
and return. The worker never interrupts running work, so an item that
never returns stalls everything queued behind it unless ``item_timeout``
is set. Cancelling the worker task itself cancels the running item and ends
the loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from genfarm.models import QueuedWorkItem, TaskStatus
from genfarm.task_queue import TaskQueue

logger = logging.getLogger(__name__)


class QueueWorker:
    def __init__(
        self,
        queue: TaskQueue,
        item_timeout: Optional[float] = None,
        shutdown: Optional[asyncio.Event] = None,
    ) -> None:
        if item_timeout is not None and item_timeout <= 0:
            raise ValueError("item_timeout must be positive")
        self._queue = queue
        self._item_timeout = item_timeout
        self._shutdown = shutdown or asyncio.Event()
        self._runner: Optional[asyncio.Task] = None

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self._shutdown

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> asyncio.Task:
        """Run the loop in the background. Idempotent while running."""
        if not self.running:
            self._runner = asyncio.create_task(self.run(), name="queue-worker")
        return self._runner

    async def stop(self) -> None:
        """Close the queue, signal shutdown and wait for the loop to exit."""
        await self._queue.close()
        self._shutdown.set()
        if self._runner is not None:
            # a loop already cancelled from outside still lets shutdown finish
            await asyncio.gather(self._runner, return_exceptions=True)
            if self._runner.cancelled():
                logger.warning("Queue worker had been cancelled before stop().")
            elif self._runner.exception() is not None:
                logger.error("Queue worker crashed.", exc_info=self._runner.exception())
            self._runner = None

    async def run(self) -> None:
        logger.info("Queue worker is starting.")
        while not self._shutdown.is_set():
            item = await self._next_item()
            if item is None:
                break
            await self._execute(item)
        logger.info("Queue worker is stopping.")

    async def _next_item(self) -> Optional[QueuedWorkItem]:
        """Wait for an item or the shutdown event, whichever comes first."""
        get = asyncio.ensure_future(self._queue.channel.get())
        stop = asyncio.ensure_future(self._shutdown.wait())
        try:
            await asyncio.wait({get, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not get.done():
                get.cancel()
            # let the cancelled waiters unwind before anything else touches the channel
            await asyncio.gather(get, stop, return_exceptions=True)

        if get.cancelled():
            return None
        # An item taken in the same tick as shutdown still runs; the work
        # item sees the event and can return early.
        return get.result()

    async def _execute(self, item: QueuedWorkItem) -> None:
        ledger = self._queue.ledger
        ledger.advance(item.task_id, TaskStatus.IN_PROGRESS)
        logger.info("Task %s started", item.task_id)

        # The item runs in its own task so a CancelledError raised inside it
        # is told apart from cancellation of the worker itself.
        job = asyncio.ensure_future(self._run_item(item))
        try:
            done, _ = await asyncio.wait({job}, timeout=self._item_timeout)
        except asyncio.CancelledError:
            job.cancel()
            await asyncio.gather(job, return_exceptions=True)
            ledger.advance(item.task_id, TaskStatus.FAILED)
            logger.warning("Worker cancelled while running task %s", item.task_id)
            raise

        if not done:
            job.cancel()
            await asyncio.gather(job, return_exceptions=True)
            logger.error("Task %s timed out after %ss.", item.task_id, self._item_timeout)
            ledger.advance(item.task_id, TaskStatus.FAILED)
        elif job.cancelled():
            logger.error("Task %s was cancelled.", item.task_id)
            ledger.advance(item.task_id, TaskStatus.FAILED)
        elif job.exception() is not None:
            logger.error(
                "Error occurred executing task %s.", item.task_id, exc_info=job.exception()
            )
            ledger.advance(item.task_id, TaskStatus.FAILED)
        else:
            ledger.advance(item.task_id, TaskStatus.COMPLETED)
            logger.info("Task %s completed", item.task_id)

    async def _run_item(self, item: QueuedWorkItem) -> None:
        await item.work(self._shutdown)
