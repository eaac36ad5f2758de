"""
Bounded in-process task queue.

Request handlers hand long-running work to the background worker through
this module and poll for the outcome later:

  submit()      registers the id as Queued and pushes the work item into a
                fixed-capacity FIFO channel, suspending while it is full.
  get_status()  reads the status ledger without suspending.

All state lives on one event loop, so the ledger is a plain dict: a read
is a single synchronous lookup and never observes a half-applied write.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from typing import Optional

from genfarm.models import QueuedWorkItem, TaskStatus, WorkItem

logger = logging.getLogger(__name__)


class QueueClosedError(Exception):
    """Raised when work is submitted after shutdown has begun."""


class DuplicateTaskError(ValueError):
    """Raised when a task id is submitted a second time."""


class StatusLedger:
    """
    Maps task id to its current status.

    Entries are kept for the life of the process unless ``ttl`` is given,
    in which case terminal entries older than ``ttl`` seconds are pruned
    on the next write.
    """

    def __init__(self, ttl: Optional[float] = None) -> None:
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive")
        self._ttl = ttl
        self._statuses: dict[uuid.UUID, TaskStatus] = {}
        # task id -> monotonic time the entry became terminal
        self._finished_at: dict[uuid.UUID, float] = {}

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._statuses

    def __len__(self) -> int:
        return len(self._statuses)

    def get(self, task_id: uuid.UUID) -> TaskStatus:
        return self._statuses.get(task_id, TaskStatus.UNKNOWN)

    def register(self, task_id: uuid.UUID) -> None:
        """Create the Queued entry for a new submission."""
        if task_id in self._statuses:
            raise DuplicateTaskError(f"Task {task_id} was already submitted")
        self._prune()
        self._statuses[task_id] = TaskStatus.QUEUED

    def advance(self, task_id: uuid.UUID, status: TaskStatus) -> None:
        """Move an entry forward. Terminal entries never change again."""
        current = self._statuses.get(task_id)
        if current is None:
            raise KeyError(task_id)
        if current.is_terminal or not _is_forward(current, status):
            raise ValueError(
                f"Invalid transition for task {task_id}: "
                f"{current.value} -> {status.value}"
            )
        self._statuses[task_id] = status
        if status.is_terminal:
            self._finished_at[task_id] = time.monotonic()
        self._prune()

    def discard(self, task_id: uuid.UUID) -> None:
        self._statuses.pop(task_id, None)
        self._finished_at.pop(task_id, None)

    def _prune(self) -> None:
        if self._ttl is None or not self._finished_at:
            return
        cutoff = time.monotonic() - self._ttl
        expired = [tid for tid, at in self._finished_at.items() if at <= cutoff]
        for tid in expired:
            self.discard(tid)
        if expired:
            logger.debug("Evicted %d finished task statuses", len(expired))


_ORDER = {
    TaskStatus.QUEUED: 0,
    TaskStatus.IN_PROGRESS: 1,
    TaskStatus.COMPLETED: 2,
    TaskStatus.FAILED: 2,
}


def _is_forward(current: TaskStatus, new: TaskStatus) -> bool:
    return _ORDER.get(new, -1) == _ORDER[current] + 1


class WorkChannel:
    """
    Fixed-capacity FIFO of pending work items.

    ``put`` suspends while the channel is full. Once closed, suspended and
    later producers get QueueClosedError; items already accepted can still
    be taken.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("capacity must be a positive integer")
        self._capacity = capacity
        self._items: deque[QueuedWorkItem] = deque()
        self._cond = asyncio.Condition()
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return len(self._items)

    async def close(self) -> None:
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    async def put(self, item: QueuedWorkItem) -> None:
        async with self._cond:
            while len(self._items) >= self._capacity and not self._closed:
                await self._cond.wait()
            if self._closed:
                raise QueueClosedError("Task queue is closed")
            self._items.append(item)
            self._cond.notify_all()

    async def get(self) -> QueuedWorkItem:
        async with self._cond:
            while not self._items:
                await self._cond.wait()
            item = self._items.popleft()
            self._cond.notify_all()
            return item


class TaskQueue:
    """
    Public entry point: submit work, query status.

    One instance is created at startup and handed to both the request
    handlers and the QueueWorker.
    """

    def __init__(self, capacity: int, status_ttl: Optional[float] = None) -> None:
        self._channel = WorkChannel(capacity)
        self._ledger = StatusLedger(ttl=status_ttl)

    @property
    def channel(self) -> WorkChannel:
        return self._channel

    @property
    def ledger(self) -> StatusLedger:
        return self._ledger

    @property
    def capacity(self) -> int:
        return self._channel.capacity

    @property
    def closed(self) -> bool:
        return self._channel.closed

    @property
    def pending_count(self) -> int:
        return self._channel.qsize()

    async def submit(self, work: WorkItem, task_id: uuid.UUID) -> None:
        """
        Register ``task_id`` as Queued and enqueue ``work``.

        Returns once the item is accepted into the channel, not once it has
        run. Suspends while the channel is full. Raises QueueClosedError if
        the queue has been closed; the id is then left unregistered.
        """
        if work is None:
            raise TypeError("work item must not be None")
        if self.closed:
            raise QueueClosedError("Task queue is closed")

        self._ledger.register(task_id)
        try:
            await self._channel.put(QueuedWorkItem(task_id=task_id, work=work))
        except BaseException:
            self._ledger.discard(task_id)
            raise
        logger.info("Enqueued task %s (%d pending)", task_id, self.pending_count)

    def get_status(self, task_id: uuid.UUID) -> TaskStatus:
        return self._ledger.get(task_id)

    async def close(self) -> None:
        """Refuse new submissions and wake producers blocked on a full channel."""
        if not self.closed:
            logger.info("Closing task queue (%d pending)", self.pending_count)
        await self._channel.close()
