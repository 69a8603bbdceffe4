"""Tests for the supervised background task manager."""
import asyncio
import logging

import pytest

from folio.services.task_manager import TaskAlreadyRunning, TaskManager


@pytest.mark.asyncio
async def test_submit_is_exclusive_per_key():
    manager = TaskManager(max_concurrent=2)
    gate = asyncio.Event()

    async def work():
        await gate.wait()
        return "done"

    task = manager.submit("doc-1", work())
    assert manager.is_running("doc-1")

    second = work()
    with pytest.raises(TaskAlreadyRunning):
        manager.submit("doc-1", second)
    # rejected coroutine was closed, so it can never run
    assert second.cr_frame is None

    # other keys are independent
    other = manager.submit("doc-2", work())

    gate.set()
    assert await task == "done"
    await other
    await manager.drain()
    assert not manager.is_running("doc-1")
    assert manager.get("doc-1") is None


@pytest.mark.asyncio
async def test_key_can_be_reused_after_completion():
    manager = TaskManager()

    async def work(value):
        return value

    assert await manager.submit("doc", work(1)) == 1
    await manager.drain()
    assert await manager.submit("doc", work(2)) == 2


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    manager = TaskManager(max_concurrent=2)
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    for i in range(6):
        manager.spawn(work(), label=f"job-{i}")
    await manager.drain()

    assert peak == 2
    assert manager.active_count == 0


@pytest.mark.asyncio
async def test_crash_is_logged_not_raised_by_drain(caplog):
    manager = TaskManager()

    async def explode():
        raise RuntimeError("kaboom")

    with caplog.at_level(logging.ERROR, logger="folio.services.task_manager"):
        manager.spawn(explode(), label="exploder")
        await manager.drain()

    assert any("exploder crashed" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_drain_waits_for_tasks_spawned_meanwhile():
    manager = TaskManager()
    finished = []

    async def child():
        await asyncio.sleep(0.01)
        finished.append("child")

    async def parent():
        manager.spawn(child(), label="child")
        finished.append("parent")

    manager.submit("parent", parent())
    await manager.drain()
    assert finished == ["parent", "child"]


@pytest.mark.asyncio
async def test_shutdown_cancels_stragglers_and_rejects_new_work():
    manager = TaskManager()

    async def forever():
        await asyncio.Event().wait()

    task = manager.spawn(forever(), label="forever")
    await manager.shutdown(timeout=0.05)
    assert task.cancelled()

    coro = forever()
    with pytest.raises(RuntimeError):
        manager.submit("late", coro)
    assert coro.cr_frame is None


@pytest.mark.asyncio
async def test_spawned_work_does_not_hold_keyed_slots():
    manager = TaskManager(max_concurrent=1, max_background=1)
    gate = asyncio.Event()

    async def slow():
        await gate.wait()

    async def quick():
        return "extracted"

    background = manager.spawn(slow(), label="slow")
    await asyncio.sleep(0)
    assert await asyncio.wait_for(manager.submit("doc", quick()), timeout=1.0) == "extracted"
    assert not background.done()

    gate.set()
    await manager.drain()


@pytest.mark.asyncio
async def test_background_pool_is_bounded_separately():
    manager = TaskManager(max_concurrent=4, max_background=1)
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    for i in range(3):
        manager.spawn(work(), label=f"job-{i}")
    await manager.drain()
    assert peak == 1


@pytest.mark.asyncio
async def test_closed_flag_follows_shutdown():
    manager = TaskManager()
    assert not manager.closed
    await manager.shutdown(timeout=0.05)
    assert manager.closed
