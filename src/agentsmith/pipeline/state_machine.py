"""Negotiation phase: decides what one chat request does next.

Nothing is kept between requests. The phase is derived from the resent
transcript plus the optional ``pendingPlan``/``answers``/``integrationsConnected``
fields, evaluated in this order:

1. ``pendingPlan`` present: adjust it with the latest user turn, emit plan + confirmation.
2. Build a working description (answers folded into all user turns, or the latest turn).
3. Propose a plan against the full capability vocabulary.
4. Required capabilities missing and not asserted connected: emit ``integration_check``.
5. Description ambiguous and no answers yet: emit ``questionnaire``.
6. Otherwise emit plan + confirmation.
"""

import logging
from collections.abc import Sequence

from agentsmith.errors import AgentSmithError
from agentsmith.pipeline.capabilities import (
    CapabilityRegistry,
    build_capability_checks,
    missing_capabilities,
)
from agentsmith.pipeline.clarification import ClarificationAnalyzer, build_enriched_prompt
from agentsmith.pipeline.planner import PlanProvider
from agentsmith.pipeline.stream import EventStreamWriter
from agentsmith.pipeline.types import NegotiateRequest, NegotiationOutcome

logger = logging.getLogger(__name__)

ADJUSTING_TEXT = "Updating your plan…"
ANALYSING_TEXT = "Let me analyse that…"
MISSING_CAPABILITIES_TEXT = "You'll need to connect these first:"
QUESTIONNAIRE_FALLBACK_TEXT = "A few quick questions:"
GENERIC_ERROR_TEXT = "Something went wrong. Please try again."


def plan_intro(name: str) -> str:
    return f"Here's what I'm planning for {name}:"


def working_description(request: NegotiateRequest) -> str:
    if request.answers:
        return build_enriched_prompt("\n\n".join(request.user_turns()), request.answers)
    return request.latest_user_content()


def error_message(exc: BaseException) -> str:
    if isinstance(exc, AgentSmithError) and str(exc):
        return str(exc)
    return GENERIC_ERROR_TEXT


class ConversationPipeline:
    def __init__(
        self,
        planner: PlanProvider,
        registry: CapabilityRegistry,
        analyzer: ClarificationAnalyzer,
        capability_vocabulary: Sequence[str],
    ) -> None:
        self.planner = planner
        self.registry = registry
        self.analyzer = analyzer
        self.capability_vocabulary = list(capability_vocabulary)

    async def resolve(
        self, request: NegotiateRequest, principal_id: str, writer: EventStreamWriter
    ) -> NegotiationOutcome:
        """Emit the events for this turn and return the phase it lands in.

        Collaborator errors propagate; ``run`` turns them into an ``error`` event.
        """
        connected = await self.registry.connected(principal_id)
        feedback = request.latest_user_content()

        if request.pending_plan is not None:
            writer.say(ADJUSTING_TEXT)
            plan = await self.planner.adjust(request.pending_plan, feedback, connected)
            writer.card("plan", plan=plan.to_wire())
            writer.card("confirmation")
            logger.info("plan adjusted phase=awaiting_confirmation name=%s", plan.name)
            return NegotiationOutcome(phase="awaiting_confirmation", plan=plan)

        description = working_description(request)
        writer.say(ANALYSING_TEXT)
        plan = await self.planner.propose(description, self.capability_vocabulary)

        checks = build_capability_checks(plan, connected)
        missing = missing_capabilities(checks)
        if missing and not request.integrations_connected:
            writer.say(MISSING_CAPABILITIES_TEXT)
            writer.card("integration_check", integrations=[entry.to_wire() for entry in checks])
            logger.info(
                "capabilities missing phase=awaiting_integrations missing=%s",
                ",".join(entry.name for entry in missing),
            )
            return NegotiationOutcome(
                phase="awaiting_integrations", plan=plan, capability_checks=checks
            )

        if not request.answers:
            history = [
                {"role": turn.role, "content": turn.content}
                for turn in request.messages
                if turn.role in ("user", "assistant")
            ]
            analysis = await self.analyzer.analyze(description, history)
            if analysis.needs_clarification and analysis.questions:
                writer.say(analysis.summary or QUESTIONNAIRE_FALLBACK_TEXT)
                writer.card(
                    "questionnaire",
                    questions=[question.to_wire() for question in analysis.questions],
                )
                logger.info(
                    "clarification needed phase=awaiting_questionnaire questions=%d",
                    len(analysis.questions),
                )
                return NegotiationOutcome(
                    phase="awaiting_questionnaire",
                    plan=plan,
                    capability_checks=checks,
                    questions=analysis.questions,
                )

        writer.say(plan_intro(plan.name))
        writer.card("plan", plan=plan.to_wire())
        writer.card("confirmation")
        logger.info("plan proposed phase=awaiting_confirmation name=%s", plan.name)
        return NegotiationOutcome(
            phase="awaiting_confirmation", plan=plan, capability_checks=checks
        )

    async def run(
        self, request: NegotiateRequest, principal_id: str, writer: EventStreamWriter
    ) -> NegotiationOutcome | None:
        try:
            return await self.resolve(request, principal_id, writer)
        except Exception as exc:
            logger.exception("negotiation failed stream_id=%s", writer.stream_id)
            writer.error(error_message(exc))
            return None
        finally:
            writer.close()
