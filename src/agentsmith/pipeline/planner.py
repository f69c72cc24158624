"""Plan provider: turns a description into a structured agent plan."""

import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from agentsmith.config import get_settings
from agentsmith.pipeline.llm import ChatJSONClient
from agentsmith.pipeline.types import BEHAVIOUR_TRIGGER_KINDS, BehaviourPlan, Plan

logger = logging.getLogger(__name__)

DEFAULT_AGENT_NAME = "My Agent"
DEFAULT_PERSONA = "Professional, helpful, and concise."
DEFAULT_INSTRUCTIONS = "Follow the user's requests and take helpful actions on their behalf."
DEFAULT_AVATAR = "\U0001F916"
DEFAULT_HEARTBEAT_CRON = "0 * * * *"
DEFAULT_HEARTBEAT_DESCRIPTION = (
    "Hourly check-in to review instructions and take any needed actions"
)
MAX_NAME_LENGTH = 80
MAX_INITIAL_MEMORIES = 10


@dataclass(frozen=True, slots=True)
class TriggerDefinition:
    trigger_type: str
    label: str
    capability: str


TRIGGER_CATALOGUE: tuple[TriggerDefinition, ...] = (
    TriggerDefinition("new-email-received", "Watch Gmail inbox for new emails", "google-gmail"),
    TriggerDefinition("new-message-in-slack", "Watch a Slack channel for new messages", "slack"),
    TriggerDefinition(
        "new-discord-message", "Watch a Discord channel for new messages", "discord"
    ),
    TriggerDefinition(
        "new-row-in-google-sheet", "Watch a Google Sheet for new rows", "google-sheets"
    ),
    TriggerDefinition("new-github-issue", "Watch a GitHub repo for new issues", "github"),
    TriggerDefinition("file-uploaded", "Watch Google Drive for new file uploads", "google-drive"),
    TriggerDefinition(
        "new-form-submission", "Watch Google Forms for new submissions", "google-forms"
    ),
)

KNOWN_TRIGGER_TYPES = frozenset(item.trigger_type for item in TRIGGER_CATALOGUE)


class PlanProvider(Protocol):
    async def propose(self, description: str, available_capabilities: Sequence[str]) -> Plan: ...

    async def adjust(
        self, plan: Plan, feedback: str, available_capabilities: Sequence[str]
    ) -> Plan: ...


def available_triggers(capabilities: Iterable[str]) -> list[TriggerDefinition]:
    names = list(capabilities)
    result: list[TriggerDefinition] = []
    for trigger in TRIGGER_CATALOGUE:
        google = trigger.capability.startswith("google-")
        if any(name == trigger.capability or (google and name == "google") for name in names):
            result.append(trigger)
    return result


def _triggers_text(triggers: Sequence[TriggerDefinition]) -> str:
    if not triggers:
        return "- None (no integrations connected, use heartbeat only)"
    return "\n".join(
        f"- {item.trigger_type} (requires: {item.capability}): {item.label}" for item in triggers
    )


_OUTPUT_FORMAT = """{
  "name": "short memorable agent name",
  "persona": "2-3 sentences on personality and tone",
  "instructions": "detailed operating instructions",
  "avatarEmoji": "one emoji",
  "behaviours": [
    {
      "behaviourType": "polling | schedule | heartbeat | webhook",
      "triggerType": "an available trigger type (polling only)",
      "scheduleCron": "cron expression (schedule/heartbeat only)",
      "config": {},
      "description": "what this behaviour does"
    }
  ],
  "initialMemories": ["facts the agent should know from day one"]
}"""


def build_propose_prompt(triggers: Sequence[TriggerDefinition]) -> str:
    return (
        "You design personal AI agents. A user described what their agent should do; "
        "produce a complete deployment plan.\n\n"
        f"AVAILABLE TRIGGER TYPES (only use these):\n{_triggers_text(triggers)}\n\n"
        "OTHER BEHAVIOUR TYPES:\n"
        "- heartbeat: proactive scheduled check-in, needs scheduleCron.\n"
        "- schedule: fixed cron schedule for a precise recurring action.\n"
        "- webhook: runs when an inbound HTTP call arrives, no cron or trigger type.\n\n"
        f"OUTPUT FORMAT (strict JSON, no markdown):\n{_OUTPUT_FORMAT}\n\n"
        "RULES:\n"
        "1. Never invent trigger types.\n"
        "2. When a polling source is not available, use heartbeat instead.\n"
        "3. Instructions must be thorough, at least 3 sentences.\n"
        "4. Include 2-5 initialMemories.\n"
        "5. Daily or morning requests get a heartbeat with a matching cron."
    )


def build_adjust_prompt(plan: Plan, feedback: str, triggers: Sequence[TriggerDefinition]) -> str:
    return (
        "You design personal AI agents. The user wants to change this plan.\n\n"
        f"CURRENT PLAN:\n{json.dumps(plan.to_wire(), indent=2, ensure_ascii=False)}\n\n"
        f'REQUESTED CHANGE:\n"{feedback}"\n\n'
        f"AVAILABLE TRIGGER TYPES (only use these):\n{_triggers_text(triggers)}\n\n"
        f"Return the full updated plan as strict JSON:\n{_OUTPUT_FORMAT}\n\n"
        "Keep every part of the plan the user did not ask to change."
    )


def _clean_str(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def _normalise_behaviour(raw: object, allowed_triggers: set[str]) -> BehaviourPlan | None:
    if not isinstance(raw, dict):
        return None
    behaviour_type = raw.get("behaviourType")
    if behaviour_type not in BEHAVIOUR_TRIGGER_KINDS:
        return None
    trigger_type = raw.get("triggerType")
    if behaviour_type == "polling":
        if trigger_type not in KNOWN_TRIGGER_TYPES or trigger_type not in allowed_triggers:
            return None
    cron = raw.get("scheduleCron")
    config = raw.get("config")
    description = raw.get("description")
    return BehaviourPlan(
        behaviour_type=str(behaviour_type),
        trigger_type=trigger_type if isinstance(trigger_type, str) and trigger_type else None,
        schedule_cron=cron.strip() if isinstance(cron, str) and cron.strip() else None,
        config=config if isinstance(config, dict) else {},
        description=(
            description.strip() if isinstance(description, str) else str(behaviour_type)
        ),
    )


def normalise_plan(raw: dict[str, Any], triggers: Sequence[TriggerDefinition]) -> Plan:
    """Coerce planner output into a valid plan, filling defaults for anything missing."""
    allowed = {item.trigger_type for item in triggers}

    name = _clean_str(raw.get("name"))[:MAX_NAME_LENGTH] or DEFAULT_AGENT_NAME
    persona = raw.get("persona")
    instructions = _clean_str(raw.get("instructions")) or DEFAULT_INSTRUCTIONS
    avatar = _clean_str(raw.get("avatarEmoji"))[:4] or DEFAULT_AVATAR

    raw_behaviours = raw.get("behaviours")
    behaviours = [
        behaviour
        for behaviour in (
            _normalise_behaviour(item, allowed)
            for item in (raw_behaviours if isinstance(raw_behaviours, list) else [])
        )
        if behaviour is not None
    ]
    if not behaviours:
        behaviours.append(
            BehaviourPlan(
                behaviour_type="heartbeat",
                schedule_cron=DEFAULT_HEARTBEAT_CRON,
                description=DEFAULT_HEARTBEAT_DESCRIPTION,
            )
        )

    raw_memories = raw.get("initialMemories")
    memories = [
        item.strip()
        for item in (raw_memories if isinstance(raw_memories, list) else [])
        if isinstance(item, str) and item.strip()
    ][:MAX_INITIAL_MEMORIES]

    return Plan(
        name=name,
        persona=persona.strip() if isinstance(persona, str) else DEFAULT_PERSONA,
        instructions=instructions,
        avatar_emoji=avatar,
        behaviours=behaviours,
        initial_memories=memories,
    )


class LLMPlanProvider:
    """Plan provider backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        model: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = ChatJSONClient(model or get_settings().planner_model, transport=transport)

    async def propose(self, description: str, available_capabilities: Sequence[str]) -> Plan:
        triggers = available_triggers(available_capabilities)
        raw = await self._client.complete_json(
            [
                {"role": "system", "content": build_propose_prompt(triggers)},
                {"role": "user", "content": f'USER\'S AGENT DESCRIPTION:\n"{description}"'},
            ],
            temperature=0.7,
        )
        plan = normalise_plan(raw, triggers)
        logger.info("plan proposed name=%s behaviours=%d", plan.name, len(plan.behaviours))
        return plan

    async def adjust(
        self, plan: Plan, feedback: str, available_capabilities: Sequence[str]
    ) -> Plan:
        triggers = available_triggers(available_capabilities)
        raw = await self._client.complete_json(
            [
                {"role": "system", "content": build_adjust_prompt(plan, feedback, triggers)},
                {"role": "user", "content": f'Update the plan based on: "{feedback}"'},
            ],
            temperature=0.5,
        )
        adjusted = normalise_plan(raw, triggers)
        logger.info("plan adjusted name=%s behaviours=%d", adjusted.name, len(adjusted.behaviours))
        return adjusted
