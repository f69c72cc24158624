"""Background tasks that run one negotiate or build request against its stream."""

import logging

from agentsmith.agents.store import AgentStore
from agentsmith.config import get_settings
from agentsmith.errors import ConfigError
from agentsmith.logging import stream_context
from agentsmith.pipeline.builder import BuildOrchestrator
from agentsmith.pipeline.capabilities import CapabilityRegistry, SqliteCapabilityRegistry
from agentsmith.pipeline.clarification import (
    ClarificationAnalyzer,
    LLMClarificationAnalyzer,
    NoClarificationAnalyzer,
)
from agentsmith.pipeline.dispatcher import TriggerDispatcher
from agentsmith.pipeline.planner import LLMPlanProvider, PlanProvider
from agentsmith.pipeline.state_machine import ConversationPipeline
from agentsmith.pipeline.stream import EventStreamWriter
from agentsmith.pipeline.types import BuildRequest, NegotiateRequest

logger = logging.getLogger(__name__)


def make_plan_provider() -> PlanProvider:
    return LLMPlanProvider()


def make_clarifier() -> ClarificationAnalyzer:
    if not get_settings().clarifier_model.strip():
        return NoClarificationAnalyzer()
    return LLMClarificationAnalyzer()


def make_capability_registry() -> CapabilityRegistry:
    return SqliteCapabilityRegistry()


def make_dispatcher(store: AgentStore | None = None) -> TriggerDispatcher:
    return TriggerDispatcher.from_settings(store or AgentStore(), get_settings())


def make_conversation_pipeline() -> ConversationPipeline:
    vocabulary = get_settings().capability_names()
    if not vocabulary:
        raise ConfigError("CAPABILITY_VOCABULARY is empty")
    return ConversationPipeline(
        planner=make_plan_provider(),
        registry=make_capability_registry(),
        analyzer=make_clarifier(),
        capability_vocabulary=vocabulary,
    )


def make_orchestrator() -> BuildOrchestrator:
    settings = get_settings()
    store = AgentStore()
    return BuildOrchestrator(
        store,
        make_dispatcher(store),
        model=settings.agent_default_model,
        max_steps=settings.agent_default_max_steps,
        pacing_seconds=settings.build_pacing_seconds,
    )


async def negotiate(
    request: NegotiateRequest, principal_id: str, writer: EventStreamWriter
) -> None:
    with stream_context(principal_id=principal_id, stream_id=writer.stream_id):
        try:
            pipeline = make_conversation_pipeline()
        except Exception:
            logger.exception("negotiation setup failed")
            writer.error("The agent planner is not available right now.")
            writer.close()
            return
        outcome = await pipeline.run(request, principal_id, writer)
        if outcome is not None:
            logger.info("negotiation finished phase=%s", outcome.phase)


async def build(request: BuildRequest, principal_id: str, writer: EventStreamWriter) -> None:
    with stream_context(principal_id=principal_id, stream_id=writer.stream_id):
        try:
            orchestrator = make_orchestrator()
        except Exception:
            logger.exception("build setup failed")
            writer.error("The agent builder is not available right now.")
            writer.close()
            return
        result = await orchestrator.run(request.plan, request.description, principal_id, writer)
        if result is not None and not result.succeeded:
            logger.warning("build did not complete failed_stage=%s", result.failed_stage)
