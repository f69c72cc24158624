"""Pause, resume, archive and delete deployed agents.

Every transition flips the behaviour rows and then runs the trigger dispatcher
(or its inverse) over each behaviour, so poll descriptors and schedules follow
the agent's status without being registered twice.
"""

import logging
from typing import Any

from agentsmith.agents.store import AgentStore
from agentsmith.db.queries import AGENT_PATCHABLE_COLUMNS
from agentsmith.errors import AgentNotFoundError, AgentSmithError, LifecycleError
from agentsmith.pipeline.dispatcher import TriggerDispatcher

logger = logging.getLogger(__name__)


class AgentLifecycle:
    def __init__(self, store: AgentStore, dispatcher: TriggerDispatcher) -> None:
        self.store = store
        self.dispatcher = dispatcher

    async def _load(self, agent_id: str, user_id: str) -> dict[str, Any]:
        agent = await self.store.get_agent(agent_id, user_id)
        if agent is None:
            raise AgentNotFoundError(f"agent {agent_id} not found")
        return agent

    async def _deactivate_all(self, agent_id: str) -> None:
        await self.store.set_behaviours_enabled(agent_id, False)
        for behaviour in await self.store.list_behaviours(agent_id):
            await self.dispatcher.deactivate(behaviour)

    async def pause(self, agent_id: str, user_id: str) -> dict[str, Any]:
        agent = await self._load(agent_id, user_id)
        if agent["status"] != "active":
            raise LifecycleError(f"cannot pause an agent that is {agent['status']}")
        await self._deactivate_all(agent_id)
        await self.store.set_status(agent_id, user_id, "paused")
        logger.info("agent paused agent_id=%s", agent_id)
        return await self._load(agent_id, user_id)

    async def resume(self, agent_id: str, user_id: str) -> dict[str, Any]:
        agent = await self._load(agent_id, user_id)
        if agent["status"] != "paused":
            raise LifecycleError(f"cannot resume an agent that is {agent['status']}")
        try:
            await self.store.set_behaviours_enabled(agent_id, True)
            for behaviour in await self.store.list_behaviours(agent_id):
                await self.dispatcher.dispatch(behaviour)
            await self.store.set_status(agent_id, user_id, "active")
        except AgentSmithError:
            logger.exception("resume failed agent_id=%s, disabling triggers again", agent_id)
            await self._deactivate_all(agent_id)
            raise
        logger.info("agent resumed agent_id=%s", agent_id)
        return await self._load(agent_id, user_id)

    async def archive(self, agent_id: str, user_id: str) -> dict[str, Any]:
        agent = await self._load(agent_id, user_id)
        if agent["status"] == "archived":
            return agent
        await self._deactivate_all(agent_id)
        await self.store.set_status(agent_id, user_id, "archived")
        logger.info("agent archived agent_id=%s previous_status=%s", agent_id, agent["status"])
        return await self._load(agent_id, user_id)

    async def update(
        self, agent_id: str, user_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        await self._load(agent_id, user_id)
        unknown = sorted(set(fields) - set(AGENT_PATCHABLE_COLUMNS))
        if unknown:
            raise LifecycleError(f"fields cannot be updated: {', '.join(unknown)}")
        if not fields:
            raise LifecycleError("no patchable fields provided")
        await self.store.update_agent(agent_id, user_id, fields)
        logger.info("agent updated agent_id=%s fields=%s", agent_id, ",".join(sorted(fields)))
        return await self._load(agent_id, user_id)

    async def delete(self, agent_id: str, user_id: str) -> None:
        """Disable every trigger, then remove the agent and everything it owns."""
        await self._load(agent_id, user_id)
        await self._deactivate_all(agent_id)
        await self.store.delete_agent(agent_id, user_id)
        logger.info("agent deleted agent_id=%s", agent_id)
