"""Task registration and singleton accessor."""

from __future__ import annotations

from agentsmith.config import get_settings
from agentsmith.tasks.runner import TaskRunner

NEGOTIATE_TASK = "pipeline.negotiate"
BUILD_TASK = "pipeline.build"

_task_runner: TaskRunner | None = None


def _register_tasks(runner: TaskRunner) -> None:
    from agentsmith.tasks import pipeline

    runner.register(NEGOTIATE_TASK, pipeline.negotiate)
    runner.register(BUILD_TASK, pipeline.build)


def get_task_runner() -> TaskRunner:
    global _task_runner
    if _task_runner is None or _task_runner.is_shutting_down:
        settings = get_settings()
        _task_runner = TaskRunner(max_concurrent=int(settings.task_runner_max_concurrent))
        _register_tasks(_task_runner)
    return _task_runner
