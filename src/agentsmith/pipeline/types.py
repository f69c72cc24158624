"""Wire models and internal records shared by the negotiation and build phases.

Wire models (plans, turns, answers) are pydantic models with the camelCase
aliases the client speaks; everything internal is a plain dataclass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

PipelinePhase = Literal[
    "initial",
    "awaiting_integrations",
    "awaiting_questionnaire",
    "awaiting_confirmation",
    "building",
    "complete",
]
TriggerKind = Literal["time-based", "inbound-event", "periodic-poll"]
BuildStageStatus = Literal["pending", "running", "done", "error"]
TurnRole = Literal["user", "assistant", "card"]
CardType = Literal[
    "welcome",
    "integration_check",
    "questionnaire",
    "plan",
    "confirmation",
    "build_progress",
    "completion",
    "error_retry",
]
QuestionType = Literal["single_choice", "multiple_choice", "text"]

BUILD_STAGE_STATUSES: tuple[str, ...] = ("pending", "running", "done", "error")

# Plan vocabulary -> dispatcher kind. Anything missing here is "unrecognized".
BEHAVIOUR_TRIGGER_KINDS: dict[str, TriggerKind] = {
    "schedule": "time-based",
    "heartbeat": "time-based",
    "webhook": "inbound-event",
    "polling": "periodic-poll",
}


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class BehaviourPlan(_WireModel):
    # Kept as a free string so unknown kinds reach the dispatcher and get reported.
    behaviour_type: str = Field(alias="behaviourType")
    trigger_type: str | None = Field(default=None, alias="triggerType")
    schedule_cron: str | None = Field(default=None, alias="scheduleCron")
    config: dict[str, Any] = Field(default_factory=dict)
    description: str = ""

    @property
    def trigger_kind(self) -> TriggerKind | None:
        return BEHAVIOUR_TRIGGER_KINDS.get(self.behaviour_type)


class Plan(_WireModel):
    name: str
    persona: str = ""
    instructions: str = ""
    avatar_emoji: str = Field(default="\U0001F916", alias="avatarEmoji")
    behaviours: list[BehaviourPlan]
    initial_memories: list[str] = Field(default_factory=list, alias="initialMemories")


class ConversationTurn(_WireModel):
    role: TurnRole
    content: str = ""
    card_type: CardType | None = Field(default=None, alias="cardType")
    data: Any = None


class QuestionnaireAnswer(_WireModel):
    question_id: str = Field(alias="questionId")
    question: str = ""
    answer: str | list[str]

    def answer_text(self) -> str:
        if isinstance(self.answer, list):
            return ", ".join(str(item) for item in self.answer)
        return self.answer


class ClarificationQuestion(_WireModel):
    id: str
    question: str
    type: QuestionType
    options: list[str] = Field(default_factory=list)
    placeholder: str | None = None


class NegotiateRequest(_WireModel):
    messages: list[ConversationTurn]
    answers: list[QuestionnaireAnswer] | None = None
    pending_plan: Plan | None = Field(default=None, alias="pendingPlan")
    integrations_connected: bool = Field(default=False, alias="integrationsConnected")

    def user_turns(self) -> list[str]:
        return [turn.content for turn in self.messages if turn.role == "user"]

    def latest_user_content(self) -> str:
        turns = self.user_turns()
        return turns[-1].strip() if turns else ""


class BuildRequest(_WireModel):
    description: str
    plan: Plan


@dataclass(frozen=True, slots=True)
class CapabilityCheckEntry:
    name: str
    label: str
    icon: str
    required: bool
    connected: bool
    connect_url: str
    connection_method: str

    def to_wire(self) -> dict[str, Any]:
        return {
            "service": self.name,
            "name": self.name,
            "label": self.label,
            "icon": self.icon,
            "required": self.required,
            "connected": self.connected,
            "connectUrl": self.connect_url,
            "connectionMethod": self.connection_method,
        }


@dataclass(slots=True)
class ClarificationAnalysis:
    needs_clarification: bool
    confidence: float
    summary: str
    questions: list[ClarificationQuestion] = field(default_factory=list)


@dataclass(slots=True)
class BuildStage:
    label: str
    status: BuildStageStatus


@dataclass(slots=True)
class NegotiationOutcome:
    """What one negotiate call decided; the events themselves went to the stream."""

    phase: PipelinePhase
    plan: Plan | None = None
    capability_checks: list[CapabilityCheckEntry] = field(default_factory=list)
    questions: list[ClarificationQuestion] = field(default_factory=list)


@dataclass(slots=True)
class BuildResult:
    agent_id: str | None
    succeeded: bool
    summary: str = ""
    error: str = ""
    failed_stage: str | None = None
    memories_written: int = 0
    memories_failed: int = 0
    dispatch_warnings: list[str] = field(default_factory=list)
