"""
Tests for the background task supervisor.
"""

import asyncio

import pytest

from postcraft.services.task_supervisor import TaskSupervisor


async def test_success_and_failure_are_recorded():
    supervisor = TaskSupervisor()

    async def ok():
        return 1

    async def broken():
        raise RuntimeError("Bearer abc.def-123 rejected")

    good = supervisor.spawn("ok", ok())
    bad = supervisor.spawn("broken", broken())
    await supervisor.wait_idle(timeout=5)

    assert good.status == "succeeded"
    assert bad.status == "failed"
    assert bad.error == "Bearer *** rejected"
    assert bad.finished_at is not None
    assert supervisor.active == []
    assert [h.name for h in supervisor.failures()] == ["broken"]
    assert [h.name for h in supervisor.history()] == ["ok", "broken"]


async def test_wait_idle_includes_tasks_spawned_while_waiting():
    supervisor = TaskSupervisor()
    finished = []

    async def child():
        await asyncio.sleep(0.01)
        finished.append("child")

    async def parent():
        await asyncio.sleep(0)
        supervisor.spawn("child", child())
        finished.append("parent")

    supervisor.spawn("parent", parent())
    await supervisor.wait_idle(timeout=5)

    assert finished == ["parent", "child"]


async def test_shutdown_cancels_stragglers():
    supervisor = TaskSupervisor()
    handle = supervisor.spawn("sleeper", asyncio.sleep(60))

    await supervisor.shutdown(timeout=0.05)

    assert handle.status == "failed"
    assert handle.error == "cancelled"
    assert supervisor.active == []


async def test_history_is_bounded():
    supervisor = TaskSupervisor(history_size=2)
    for i in range(4):
        supervisor.spawn(f"t{i}", asyncio.sleep(0))
    await supervisor.wait_idle(timeout=5)

    assert [h.name for h in supervisor.history()] == ["t2", "t3"]
    assert supervisor.history()[0].to_dict()["status"] == "succeeded"


async def test_wait_idle_times_out():
    supervisor = TaskSupervisor()
    supervisor.spawn("sleeper", asyncio.sleep(60))
    with pytest.raises(asyncio.TimeoutError):
        await supervisor.wait_idle(timeout=0.01)
    await supervisor.shutdown(timeout=0.01)
