from __future__ import annotations

import asyncio

import pytest

from agentsmith.pipeline.stream import EventStreamWriter, parse_events
from agentsmith.tasks import BUILD_TASK, NEGOTIATE_TASK, get_task_runner
from agentsmith.tasks.runner import TaskRunner


async def _collect(writer: EventStreamWriter) -> list[str]:
    return [line async for line in writer.lines()]


def test_send_task_unknown_returns_false() -> None:
    runner = TaskRunner(max_concurrent=1)
    assert runner.send_task("unknown.task", kwargs={}) is False


def test_send_task_outside_event_loop_returns_false() -> None:
    runner = TaskRunner(max_concurrent=1)
    runner.register("demo.task", lambda: None)
    assert runner.send_task("demo.task") is False


def test_pipeline_tasks_are_registered() -> None:
    assert get_task_runner().registered() == sorted([BUILD_TASK, NEGOTIATE_TASK])


@pytest.mark.asyncio
async def test_send_task_dispatches_registered_sync_task() -> None:
    runner = TaskRunner(max_concurrent=1)
    done = asyncio.Event()

    def _task(value: str) -> None:
        if value == "ok":
            done.set()

    runner.register("demo.task", _task)
    assert runner.send_task("demo.task", kwargs={"value": "ok"}) is True
    await asyncio.wait_for(done.wait(), timeout=1.0)
    await runner.shutdown(timeout_s=1)


@pytest.mark.asyncio
async def test_async_task_feeds_a_stream_drained_on_the_same_loop() -> None:
    runner = TaskRunner(max_concurrent=2)
    writer = EventStreamWriter()

    async def _task(writer: EventStreamWriter) -> None:
        writer.build_stage("Intent analysed", "done")
        await asyncio.sleep(0)
        writer.complete("agt_1", "ready")
        writer.close()

    runner.register("demo.stream", _task)
    assert runner.send_task("demo.stream", kwargs={"writer": writer}) is True
    lines = await asyncio.wait_for(_collect(writer), timeout=1.0)
    events = parse_events(lines)
    assert [event["type"] for event in events] == ["build_stage", "build_complete"]
    await runner.shutdown(timeout_s=1)


@pytest.mark.asyncio
async def test_shutdown_drains_inflight_tasks_and_rejects_new_ones() -> None:
    runner = TaskRunner(max_concurrent=1)
    completed = asyncio.Event()

    async def _task() -> None:
        await asyncio.sleep(0.05)
        completed.set()

    runner.register("demo.async", _task)
    assert runner.send_task("demo.async", kwargs={}) is True
    await runner.shutdown(timeout_s=1)
    assert completed.is_set()
    assert runner.send_task("demo.async", kwargs={}) is False


@pytest.mark.asyncio
async def test_failing_task_is_logged_not_raised() -> None:
    runner = TaskRunner(max_concurrent=1)

    async def _task() -> None:
        raise RuntimeError("boom")

    runner.register("demo.fail", _task)
    assert runner.send_task("demo.fail") is True
    await asyncio.sleep(0.01)
    assert runner.in_flight == 0
    await runner.shutdown(timeout_s=1)
