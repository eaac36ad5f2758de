# tests/test_worker.py

from __future__ import annotations

import asyncio
import uuid

import pytest

from genfarm.models import TaskStatus
from genfarm.task_queue import TaskQueue
from genfarm.worker import QueueWorker

from tests.fakes import wait_for_status


def recording(log: list[str], name: str):
    async def work(shutdown: asyncio.Event) -> None:
        log.append(name)

    return work


def gated(gate: asyncio.Event, started: list[str] | None = None, name: str = ""):
    async def work(shutdown: asyncio.Event) -> None:
        if started is not None:
            started.append(name)
        await gate.wait()

    return work


async def boom(shutdown: asyncio.Event) -> None:
    raise RuntimeError("assistant unavailable")


@pytest.mark.asyncio
async def test_execution_order_matches_submission_order() -> None:
    queue = TaskQueue(capacity=8)
    worker = QueueWorker(queue)
    started: list[str] = []
    ids = {name: uuid.uuid4() for name in "ABC"}
    for name, task_id in ids.items():
        await queue.submit(recording(started, name), task_id)

    worker.start()
    try:
        await wait_for_status(queue, ids["C"], TaskStatus.COMPLETED)
    finally:
        await worker.stop()

    assert started == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_one_task_runs_at_a_time() -> None:
    queue = TaskQueue(capacity=4)
    worker = QueueWorker(queue)
    gate = asyncio.Event()
    started: list[str] = []
    first, second = uuid.uuid4(), uuid.uuid4()
    await queue.submit(gated(gate, started, "first"), first)
    await queue.submit(gated(gate, started, "second"), second)

    worker.start()
    try:
        await wait_for_status(queue, first, TaskStatus.IN_PROGRESS)
        await asyncio.sleep(0.02)
        assert started == ["first"]
        assert queue.get_status(second) == TaskStatus.QUEUED

        gate.set()
        await wait_for_status(queue, second, TaskStatus.COMPLETED)
    finally:
        await worker.stop()


@pytest.mark.asyncio
async def test_failed_task_does_not_stop_the_loop(caplog: pytest.LogCaptureFixture) -> None:
    queue = TaskQueue(capacity=4)
    worker = QueueWorker(queue)
    bad, good = uuid.uuid4(), uuid.uuid4()
    log: list[str] = []
    await queue.submit(boom, bad)
    await queue.submit(recording(log, "good"), good)

    worker.start()
    try:
        await wait_for_status(queue, good, TaskStatus.COMPLETED)
    finally:
        await worker.stop()

    assert queue.get_status(bad) == TaskStatus.FAILED
    assert log == ["good"]
    assert "assistant unavailable" in caplog.text


@pytest.mark.asyncio
async def test_status_progression_is_queued_in_progress_completed() -> None:
    queue = TaskQueue(capacity=1)
    worker = QueueWorker(queue)
    task_id = uuid.uuid4()

    async def short_job(shutdown: asyncio.Event) -> None:
        await asyncio.sleep(0.05)

    await queue.submit(short_job, task_id)
    seen: list[TaskStatus] = [queue.get_status(task_id)]

    worker.start()
    try:
        await wait_for_status(queue, task_id, TaskStatus.COMPLETED, seen=seen)
    finally:
        await worker.stop()

    assert seen[0] == TaskStatus.QUEUED
    assert seen[-1] == TaskStatus.COMPLETED
    assert set(seen) <= {TaskStatus.QUEUED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED}
    assert TaskStatus.IN_PROGRESS in seen


@pytest.mark.asyncio
async def test_blocked_producer_resumes_when_worker_dequeues() -> None:
    queue = TaskQueue(capacity=2)
    worker = QueueWorker(queue)
    gate = asyncio.Event()
    a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    await queue.submit(gated(gate), a)
    await queue.submit(gated(gate), b)
    blocked = asyncio.create_task(queue.submit(gated(gate), c))
    await asyncio.sleep(0.02)
    assert not blocked.done()

    worker.start()
    try:
        await asyncio.wait_for(blocked, 1.0)
        await wait_for_status(queue, a, TaskStatus.IN_PROGRESS)
        assert queue.get_status(c) == TaskStatus.QUEUED
        gate.set()
        await wait_for_status(queue, c, TaskStatus.COMPLETED)
    finally:
        await worker.stop()


@pytest.mark.asyncio
async def test_idle_worker_stops_on_shutdown() -> None:
    queue = TaskQueue(capacity=1)
    worker = QueueWorker(queue)
    worker.start()
    await asyncio.sleep(0.01)
    assert worker.running

    await asyncio.wait_for(worker.stop(), 1.0)

    assert not worker.running
    assert queue.closed


@pytest.mark.asyncio
async def test_running_item_observes_shutdown_cooperatively() -> None:
    queue = TaskQueue(capacity=2)
    worker = QueueWorker(queue)
    long_job, leftover = uuid.uuid4(), uuid.uuid4()
    saw_shutdown: list[bool] = []

    async def wait_for_shutdown(shutdown: asyncio.Event) -> None:
        await shutdown.wait()
        saw_shutdown.append(True)

    await queue.submit(wait_for_shutdown, long_job)
    await queue.submit(boom, leftover)

    worker.start()
    await wait_for_status(queue, long_job, TaskStatus.IN_PROGRESS)
    await asyncio.wait_for(worker.stop(), 1.0)

    assert saw_shutdown == [True]
    assert queue.get_status(long_job) == TaskStatus.COMPLETED
    # the loop exits after the running item; nothing else is started
    assert queue.get_status(leftover) == TaskStatus.QUEUED


@pytest.mark.asyncio
async def test_item_timeout_marks_task_failed() -> None:
    queue = TaskQueue(capacity=2)
    worker = QueueWorker(queue, item_timeout=0.05)
    stuck, after = uuid.uuid4(), uuid.uuid4()

    async def hang(shutdown: asyncio.Event) -> None:
        await asyncio.sleep(10)

    await queue.submit(hang, stuck)
    await queue.submit(recording([], "after"), after)

    worker.start()
    try:
        await wait_for_status(queue, after, TaskStatus.COMPLETED)
    finally:
        await worker.stop()

    assert queue.get_status(stuck) == TaskStatus.FAILED


def test_item_timeout_must_be_positive() -> None:
    with pytest.raises(ValueError):
        QueueWorker(TaskQueue(capacity=1), item_timeout=0)


@pytest.mark.asyncio
async def test_start_is_idempotent() -> None:
    worker = QueueWorker(TaskQueue(capacity=1))
    first = worker.start()
    assert worker.start() is first
    await worker.stop()


@pytest.mark.asyncio
async def test_item_cancelled_from_inside_does_not_end_the_loop() -> None:
    queue = TaskQueue(capacity=4)
    worker = QueueWorker(queue)
    bad, good = uuid.uuid4(), uuid.uuid4()
    log: list[str] = []

    async def awaits_cancelled_call(shutdown: asyncio.Event) -> None:
        call = asyncio.ensure_future(asyncio.sleep(10))
        await asyncio.sleep(0)
        call.cancel()
        await call

    await queue.submit(awaits_cancelled_call, bad)
    await queue.submit(recording(log, "good"), good)

    worker.start()
    try:
        await wait_for_status(queue, good, TaskStatus.COMPLETED)
        assert worker.running
    finally:
        await worker.stop()

    assert queue.get_status(bad) == TaskStatus.FAILED
    assert log == ["good"]


@pytest.mark.asyncio
async def test_item_raising_cancelled_error_is_marked_failed() -> None:
    queue = TaskQueue(capacity=4)
    worker = QueueWorker(queue)
    bad, good = uuid.uuid4(), uuid.uuid4()

    async def raises_cancelled(shutdown: asyncio.Event) -> None:
        raise asyncio.CancelledError()

    await queue.submit(raises_cancelled, bad)
    await queue.submit(recording([], "good"), good)

    worker.start()
    try:
        await wait_for_status(queue, good, TaskStatus.COMPLETED)
    finally:
        await worker.stop()

    assert queue.get_status(bad) == TaskStatus.FAILED


@pytest.mark.asyncio
async def test_cancelling_the_worker_fails_the_running_item() -> None:
    queue = TaskQueue(capacity=4)
    worker = QueueWorker(queue)
    running, leftover = uuid.uuid4(), uuid.uuid4()
    interrupted: list[bool] = []

    async def long_job(shutdown: asyncio.Event) -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            interrupted.append(True)
            raise

    await queue.submit(long_job, running)
    await queue.submit(recording([], "leftover"), leftover)

    runner = worker.start()
    await wait_for_status(queue, running, TaskStatus.IN_PROGRESS)
    runner.cancel()
    with pytest.raises(asyncio.CancelledError):
        await runner

    assert interrupted == [True]
    assert queue.get_status(running) == TaskStatus.FAILED
    assert queue.get_status(leftover) == TaskStatus.QUEUED
    assert not worker.running

    # shutdown after an outside cancel still completes
    await asyncio.wait_for(worker.stop(), 1.0)
    assert queue.closed


@pytest.mark.asyncio
async def test_work_item_failing_before_it_awaits_is_marked_failed() -> None:
    queue = TaskQueue(capacity=4)
    worker = QueueWorker(queue)
    bad, good = uuid.uuid4(), uuid.uuid4()

    def not_a_coroutine(shutdown: asyncio.Event):
        raise ValueError("bad work item")

    await queue.submit(not_a_coroutine, bad)
    await queue.submit(recording([], "good"), good)

    worker.start()
    try:
        await wait_for_status(queue, good, TaskStatus.COMPLETED)
    finally:
        await worker.stop()

    assert queue.get_status(bad) == TaskStatus.FAILED
