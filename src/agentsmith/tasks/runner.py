"""In-process async task runner for the streaming pipeline tasks."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from agentsmith.config import get_settings

logger = logging.getLogger(__name__)


class TaskRunner:
    """Fire-and-forget dispatcher: the caller returns while the task keeps running.

    Tasks run on the caller's event loop so they can feed an
    ``EventStreamWriter`` that the same loop is draining into a response.
    """

    def __init__(self, max_concurrent: int | None = None) -> None:
        settings = get_settings()
        self._registry: dict[str, Callable[..., Any]] = {}
        limit = max_concurrent or int(settings.task_runner_max_concurrent)
        self._max_concurrent = max(1, limit)
        self._semaphore = asyncio.Semaphore(self._max_concurrent)
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._shutdown = asyncio.Event()

    @property
    def in_flight(self) -> int:
        return len(self._background_tasks)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def is_shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def register(self, name: str, func: Callable[..., Any]) -> None:
        self._registry[name] = func

    def registered(self) -> list[str]:
        return sorted(self._registry)

    def send_task(self, name: str, kwargs: dict[str, Any] | None = None) -> bool:
        if self._shutdown.is_set():
            logger.warning("Task runner is shutting down; skipping task %s", name)
            return False
        func = self._registry.get(name)
        if func is None:
            logger.error("Unknown task: %s", name)
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Task %s sent outside an event loop", name)
            return False
        task = loop.create_task(self._execute(name, func, kwargs or {}))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return True

    async def shutdown(self, timeout_s: float) -> None:
        self._shutdown.set()
        if not self._background_tasks:
            return
        try:
            await asyncio.wait_for(
                asyncio.gather(*list(self._background_tasks), return_exceptions=True),
                timeout=max(1.0, float(timeout_s)),
            )
        except TimeoutError:
            logger.warning(
                "Task runner shutdown timed out; cancelling %d tasks",
                len(self._background_tasks),
            )
            for task in list(self._background_tasks):
                task.cancel()

    async def _execute(self, name: str, func: Callable[..., Any], payload: dict[str, Any]) -> None:
        async with self._semaphore:
            try:
                if inspect.iscoroutinefunction(func):
                    await func(**payload)
                    return
                result = await asyncio.to_thread(func, **payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Task failed: %s", name)
