"""OpenAI-compatible chat completions client returning JSON objects."""

import json
import logging
from typing import Any

import httpx

from agentsmith.config import get_settings
from agentsmith.errors import PlannerError

logger = logging.getLogger(__name__)


class ChatJSONClient:
    def __init__(
        self,
        model: str,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.model = model
        self.base_url = (base_url or settings.planner_base_url).rstrip("/")
        self.api_key = settings.planner_api_key if api_key is None else api_key
        self.timeout_seconds = (
            settings.planner_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._transport = transport

    @staticmethod
    def _parse_content(payload: dict[str, Any]) -> str:
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise PlannerError("planner response missing choices")
        first = choices[0]
        if not isinstance(first, dict):
            raise PlannerError("planner response choice malformed")
        message = first.get("message")
        if not isinstance(message, dict):
            raise PlannerError("planner response message missing")
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise PlannerError("planner returned empty content")
        return content

    async def complete_json(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions", json=body, headers=headers
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as exc:
            raise PlannerError(f"planner request failed: {exc}") from exc
        except ValueError as exc:
            raise PlannerError("planner response was not JSON") from exc

        if not isinstance(payload, dict):
            raise PlannerError("planner response was not an object")
        content = self._parse_content(payload)
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            logger.warning("planner content not JSON model=%s", self.model)
            raise PlannerError("planner returned invalid JSON") from exc
        if not isinstance(parsed, dict):
            raise PlannerError("planner returned a non-object JSON value")
        return parsed
