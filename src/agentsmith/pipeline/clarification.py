"""Clarification analyzer: decides whether a description needs a questionnaire first."""

import logging
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from agentsmith.config import get_settings
from agentsmith.errors import PlannerError
from agentsmith.pipeline.llm import ChatJSONClient
from agentsmith.pipeline.types import (
    ClarificationAnalysis,
    ClarificationQuestion,
    QuestionnaireAnswer,
)

logger = logging.getLogger(__name__)

MAX_QUESTIONS = 4
HISTORY_TURNS = 6
CONFIDENT_ENOUGH = 0.9
DEFAULT_CONFIDENCE = 0.5

SYSTEM_PROMPT = """You are a requirements analyst for an AI agent builder. Decide whether \
the user's request needs more information before an agent can be planned.

Check: is it clear what starts the agent, what it does, when it runs, who or where the \
output goes, and which tools are involved (does "notify me" mean email, Slack or SMS?).

Rules:
- Only ask questions that materially change how the agent is built.
- Keep questions short, friendly and non-technical. At most 4 questions.
- Prefer single_choice with 2-6 options; use text only for free-form values.
- Never ask about credentials or API keys.

Confidence: 0.9-1.0 crystal clear, 0.6-0.8 one or two gaps, below 0.5 vague.

Output strict JSON:
{"needsClarification": bool, "confidence": number, "summary": "one sentence", \
"questions": [{"id": "q1", "question": "...", "type": "single_choice|multiple_choice|text", \
"options": ["..."], "placeholder": "..."}]}"""


class ClarificationAnalyzer(Protocol):
    async def analyze(
        self, description: str, history: Sequence[dict[str, str]] = ()
    ) -> ClarificationAnalysis: ...


def _parse_questions(raw: object) -> list[ClarificationQuestion]:
    questions: list[ClarificationQuestion] = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        try:
            questions.append(ClarificationQuestion.model_validate(item))
        except ValidationError:
            logger.debug("dropping malformed clarification question: %r", item)
    return questions[:MAX_QUESTIONS]


def parse_analysis(raw: dict[str, Any]) -> ClarificationAnalysis:
    needs = raw.get("needsClarification")
    confidence = raw.get("confidence")
    summary = raw.get("summary")
    analysis = ClarificationAnalysis(
        needs_clarification=needs if isinstance(needs, bool) else True,
        confidence=(
            float(confidence)
            if isinstance(confidence, (int, float)) and not isinstance(confidence, bool)
            else DEFAULT_CONFIDENCE
        ),
        summary=summary.strip() if isinstance(summary, str) and summary.strip() else (
            "I understand you want to create an agent."
        ),
        questions=_parse_questions(raw.get("questions")),
    )
    if analysis.confidence >= CONFIDENT_ENOUGH:
        analysis.needs_clarification = False
        analysis.questions = []
    if analysis.needs_clarification and not analysis.questions:
        analysis.needs_clarification = False
    return analysis


def no_clarification() -> ClarificationAnalysis:
    return ClarificationAnalysis(
        needs_clarification=False,
        confidence=DEFAULT_CONFIDENCE,
        summary="I understand your request.",
    )


class LLMClarificationAnalyzer:
    def __init__(
        self,
        model: str | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = ChatJSONClient(
            model or get_settings().clarifier_model, transport=transport
        )

    async def analyze(
        self, description: str, history: Sequence[dict[str, str]] = ()
    ) -> ClarificationAnalysis:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(
            {"role": turn["role"], "content": turn["content"]}
            for turn in list(history)[-HISTORY_TURNS:]
        )
        messages.append(
            {
                "role": "user",
                "content": (
                    "Analyze this agent request and decide if clarification is needed:"
                    f'\n\n"{description}"'
                ),
            }
        )
        try:
            raw = await self._client.complete_json(messages, temperature=0.3, max_tokens=800)
        except PlannerError as exc:
            logger.warning("clarification analysis failed, skipping questionnaire: %s", exc)
            return no_clarification()
        return parse_analysis(raw)


class NoClarificationAnalyzer:
    """Never asks questions; used when no clarifier model is configured."""

    async def analyze(
        self, description: str, history: Sequence[dict[str, str]] = ()
    ) -> ClarificationAnalysis:
        return no_clarification()


def build_enriched_prompt(original: str, answers: Sequence[QuestionnaireAnswer]) -> str:
    if not answers:
        return original
    lines = [
        f"- {answer.question or answer.question_id} --> {answer.answer_text()}"
        for answer in answers
    ]
    return f"{original}\n\nAdditional details provided by the user:\n" + "\n".join(lines)
