"""Async facade over the sqlite agent queries.

Each call runs on a worker thread with its own connection, so the build
orchestrator suspends on every store operation instead of blocking the loop.
"""

import asyncio
import sqlite3
from collections.abc import Callable
from typing import Any, TypeVar

from agentsmith.db import queries
from agentsmith.db.connection import get_conn
from agentsmith.errors import StoreError

T = TypeVar("T")


class AgentStore:
    async def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        def _run() -> T:
            with get_conn() as conn:
                return fn(conn, *args, **kwargs)

        try:
            return await asyncio.to_thread(_run)
        except sqlite3.Error as exc:
            raise StoreError(f"{fn.__name__} failed: {exc}") from exc

    async def create_agent(self, **fields: Any) -> dict[str, Any]:
        return await self._call(queries.insert_agent, **fields)

    async def get_agent(self, agent_id: str, user_id: str) -> dict[str, Any] | None:
        return await self._call(queries.get_agent, agent_id, user_id)

    async def list_agents(self, user_id: str) -> list[dict[str, Any]]:
        return await self._call(queries.list_agents, user_id)

    async def set_status(self, agent_id: str, user_id: str, status: str) -> None:
        updated = await self._call(queries.set_agent_status, agent_id, user_id, status)
        if not updated:
            raise StoreError(f"agent {agent_id} not found")

    async def update_agent(self, agent_id: str, user_id: str, fields: dict[str, Any]) -> None:
        updated = await self._call(queries.update_agent, agent_id, user_id, fields)
        if not updated:
            raise StoreError(f"agent {agent_id} not updated")

    async def delete_agent(self, agent_id: str, user_id: str) -> None:
        deleted = await self._call(queries.delete_agent, agent_id, user_id)
        if not deleted:
            raise StoreError(f"agent {agent_id} not found")

    async def add_behaviour(self, **fields: Any) -> dict[str, Any]:
        return await self._call(queries.insert_behaviour, **fields)

    async def list_behaviours(self, agent_id: str) -> list[dict[str, Any]]:
        return await self._call(queries.list_behaviours, agent_id)

    async def set_behaviours_enabled(self, agent_id: str, enabled: bool) -> int:
        return await self._call(queries.set_behaviours_enabled, agent_id, enabled)

    async def add_memory(
        self,
        agent_id: str,
        user_id: str,
        content: str,
        *,
        kind: str = "instruction",
        weight: int = 7,
        source: str = "user",
    ) -> str:
        return await self._call(
            queries.insert_memory,
            agent_id=agent_id,
            user_id=user_id,
            content=content,
            kind=kind,
            weight=weight,
            source=source,
        )

    async def list_memories(
        self, agent_id: str, user_id: str, limit: int = 50
    ) -> list[dict[str, Any]]:
        return await self._call(queries.list_memories, agent_id, user_id, limit)

    async def upsert_poll_trigger(self, **fields: Any) -> tuple[str, bool]:
        return await self._call(queries.upsert_poll_trigger, **fields)

    async def set_poll_trigger_enabled(self, behaviour_id: str, enabled: bool) -> bool:
        return await self._call(queries.set_poll_trigger_enabled, behaviour_id, enabled)

    async def list_poll_triggers(self, agent_id: str) -> list[dict[str, Any]]:
        return await self._call(queries.list_poll_triggers, agent_id)

    async def upsert_schedule(self, **fields: Any) -> tuple[str, bool]:
        return await self._call(queries.upsert_schedule, **fields)

    async def set_schedule_enabled(self, behaviour_id: str, enabled: bool) -> bool:
        return await self._call(queries.set_schedule_enabled, behaviour_id, enabled)

    async def list_schedules(self, agent_id: str) -> list[dict[str, Any]]:
        return await self._call(queries.list_schedules, agent_id)
