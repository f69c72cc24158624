"""Staged build of a confirmed plan into a deployed agent.

Stages run strictly in ``STAGES`` order. "Execution logic generated",
"Integrations validated" and "Agent deployed" are critical: a failure emits
an ``error`` event and stops the build with the agent left in ``deploying``.
Seed memory writes fail one item at a time without stopping anything.
"""

import asyncio
import logging

from agentsmith.agents.store import AgentStore
from agentsmith.errors import BuildStageError
from agentsmith.logging import bind_context
from agentsmith.pipeline.dispatcher import TriggerDispatcher
from agentsmith.pipeline.state_machine import GENERIC_ERROR_TEXT
from agentsmith.pipeline.stream import EventStreamWriter
from agentsmith.pipeline.types import BuildResult, Plan

logger = logging.getLogger(__name__)

STAGE_INTENT = "Intent analysed"
STAGE_AGENT_RECORD = "Execution logic generated"
STAGE_BEHAVIOURS = "Integrations validated"
STAGE_MEMORY = "Memory seeded"
STAGE_SAFEGUARDS = "Safeguards applied"
STAGE_DEPLOY = "Agent deployed"

STAGES: tuple[str, ...] = (
    STAGE_INTENT,
    STAGE_AGENT_RECORD,
    STAGE_BEHAVIOURS,
    STAGE_MEMORY,
    STAGE_SAFEGUARDS,
    STAGE_DEPLOY,
)

SEED_MEMORY_KIND = "instruction"
SEED_MEMORY_WEIGHT = 7
SEED_MEMORY_SOURCE = "user"


def build_summary(plan: Plan) -> str:
    return f"{plan.name} is live and watching. {len(plan.behaviours)} behaviour(s) active."


class BuildOrchestrator:
    def __init__(
        self,
        store: AgentStore,
        dispatcher: TriggerDispatcher,
        *,
        model: str = "gpt-4o",
        max_steps: int = 10,
        pacing_seconds: float = 0.4,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.model = model
        self.max_steps = max_steps
        self.pacing_seconds = pacing_seconds

    async def build(
        self, plan: Plan, description: str, principal_id: str, writer: EventStreamWriter
    ) -> BuildResult:
        result = BuildResult(agent_id=None, succeeded=False)
        try:
            writer.build_stage(STAGE_INTENT, "done")

            writer.build_stage(STAGE_AGENT_RECORD, "running")
            agent_id = await self._create_agent(plan, description, principal_id)
            result.agent_id = agent_id
            bind_context(agent_id=agent_id)
            writer.build_stage(STAGE_AGENT_RECORD, "done")

            writer.build_stage(STAGE_BEHAVIOURS, "running")
            result.dispatch_warnings = await self._materialise_behaviours(
                plan, agent_id, principal_id
            )
            writer.build_stage(STAGE_BEHAVIOURS, "done")

            writer.build_stage(STAGE_MEMORY, "running")
            written, failed = await self._seed_memories(plan, agent_id, principal_id)
            result.memories_written = written
            result.memories_failed = failed
            writer.build_stage(STAGE_MEMORY, "done")

            writer.build_stage(STAGE_SAFEGUARDS, "running")
            await asyncio.sleep(self.pacing_seconds)
            writer.build_stage(STAGE_SAFEGUARDS, "done")

            writer.build_stage(STAGE_DEPLOY, "running")
            await self._activate(agent_id, principal_id)
            writer.build_stage(STAGE_DEPLOY, "done")
        except BuildStageError as exc:
            logger.error("build failed stage=%s agent_id=%s", exc.stage, result.agent_id)
            writer.build_stage(exc.stage, "error")
            writer.error(str(exc))
            result.failed_stage = exc.stage
            result.error = str(exc)
            return result

        result.succeeded = True
        result.summary = build_summary(plan)
        writer.complete(agent_id, result.summary)
        logger.info(
            "agent deployed agent_id=%s behaviours=%d memories=%d",
            agent_id,
            len(plan.behaviours),
            written,
        )
        return result

    async def _create_agent(self, plan: Plan, description: str, principal_id: str) -> str:
        try:
            agent = await self.store.create_agent(
                user_id=principal_id,
                name=plan.name,
                description=description.strip(),
                persona=plan.persona or None,
                instructions=plan.instructions,
                avatar_emoji=plan.avatar_emoji or "\U0001F916",
                model=self.model,
                max_steps=self.max_steps,
            )
        except Exception as exc:
            logger.exception("agent record insert failed")
            raise BuildStageError(STAGE_AGENT_RECORD, f"Failed to create agent: {exc}") from exc
        return str(agent["id"])

    async def _materialise_behaviours(
        self, plan: Plan, agent_id: str, principal_id: str
    ) -> list[str]:
        warnings: list[str] = []
        try:
            for behaviour in plan.behaviours:
                row = await self.store.add_behaviour(
                    agent_id=agent_id,
                    user_id=principal_id,
                    behaviour_type=behaviour.behaviour_type,
                    trigger_type=behaviour.trigger_type,
                    schedule_cron=behaviour.schedule_cron,
                    description=behaviour.description,
                    config=behaviour.config,
                )
                dispatched = await self.dispatcher.dispatch(row)
                if dispatched.warning:
                    warnings.append(f"{row['id']}: {dispatched.warning}")
        except Exception as exc:
            logger.exception("behaviour materialisation failed agent_id=%s", agent_id)
            raise BuildStageError(
                STAGE_BEHAVIOURS, f"Failed to set up behaviours: {exc}"
            ) from exc
        return warnings

    async def _seed_memories(
        self, plan: Plan, agent_id: str, principal_id: str
    ) -> tuple[int, int]:
        written = 0
        failed = 0
        for content in plan.initial_memories:
            content = content.strip()
            if not content:
                continue
            try:
                await self.store.add_memory(
                    agent_id,
                    principal_id,
                    content,
                    kind=SEED_MEMORY_KIND,
                    weight=SEED_MEMORY_WEIGHT,
                    source=SEED_MEMORY_SOURCE,
                )
            except Exception as exc:
                failed += 1
                logger.warning("seed memory skipped agent_id=%s: %s", agent_id, exc)
                continue
            written += 1
        return written, failed

    async def _activate(self, agent_id: str, principal_id: str) -> None:
        try:
            await self.store.set_status(agent_id, principal_id, "active")
        except Exception as exc:
            logger.exception("agent activation failed agent_id=%s", agent_id)
            raise BuildStageError(STAGE_DEPLOY, f"Failed to activate agent: {exc}") from exc

    async def run(
        self, plan: Plan, description: str, principal_id: str, writer: EventStreamWriter
    ) -> BuildResult | None:
        try:
            return await self.build(plan, description, principal_id, writer)
        except Exception:
            logger.exception("build crashed stream_id=%s", writer.stream_id)
            writer.error(GENERIC_ERROR_TEXT)
            return None
        finally:
            writer.close()
