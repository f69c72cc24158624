from __future__ import annotations

import json
from collections.abc import Iterator, Sequence
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from agentsmith.db.connection import get_conn
from agentsmith.db.queries import connect_service
from agentsmith.main import app
from agentsmith.pipeline.types import BehaviourPlan, ClarificationAnalysis, Plan

PLAN = Plan(
    name="Inbox Digest",
    persona="Calm and brief.",
    instructions="Summarize new mail once a day.",
    behaviours=[
        BehaviourPlan(
            behaviour_type="polling",
            trigger_type="new-email-received",
            description="Watch Gmail inbox for new emails",
        ),
        BehaviourPlan(
            behaviour_type="heartbeat", schedule_cron="0 9 * * *", description="Daily summary"
        ),
    ],
    initial_memories=["User likes short summaries", "Skip newsletters"],
)


class _StubPlanner:
    async def propose(self, description: str, available_capabilities: Sequence[str]) -> Plan:
        return PLAN

    async def adjust(
        self, plan: Plan, feedback: str, available_capabilities: Sequence[str]
    ) -> Plan:
        return plan.model_copy(update={"name": "Inbox Digest Weekly"})


class _ClearAnalyzer:
    async def analyze(self, description: str, history: Sequence[dict[str, str]] = ()):
        return ClarificationAnalysis(needs_clarification=False, confidence=0.95, summary="ok")


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setattr("agentsmith.tasks.pipeline.make_plan_provider", _StubPlanner)
    monkeypatch.setattr("agentsmith.tasks.pipeline.make_clarifier", _ClearAnalyzer)
    with TestClient(app) as test_client:
        yield test_client


def _login(client: TestClient, external_id: str = "web_admin") -> tuple[dict[str, str], str]:
    response = client.post(
        "/api/v1/auth/login", json={"password": "secret", "external_id": external_id}
    )
    assert response.status_code == 200
    payload = response.json()
    return {"Authorization": f"Bearer {payload['token']}"}, str(payload["user_id"])


def _events(body: str) -> list[dict[str, object]]:
    return [json.loads(line) for line in body.splitlines() if line.strip()]


def _chat(text: str, **extra: object) -> dict[str, object]:
    return {"messages": [{"role": "user", "content": text}], **extra}


def test_chat_requires_auth(client: TestClient) -> None:
    response = client.post("/api/v1/agents/chat", json=_chat("hi"))
    assert response.status_code == 401


@pytest.mark.parametrize(
    ("payload", "detail"),
    [
        ({}, "messages array is required"),
        ({"messages": []}, "messages array is required"),
        ({"messages": [{"role": "user", "content": "   "}]}, "Latest user message is required"),
        (
            {"messages": [{"role": "assistant", "content": "hello"}]},
            "Latest user message is required",
        ),
    ],
)
def test_chat_rejects_invalid_requests(
    client: TestClient, payload: dict[str, object], detail: str
) -> None:
    headers, _ = _login(client)
    response = client.post("/api/v1/agents/chat", json=payload, headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == detail


def test_chat_streams_integration_check_when_gmail_missing(client: TestClient) -> None:
    headers, _ = _login(client)
    response = client.post(
        "/api/v1/agents/chat",
        json=_chat("watch my inbox and summarize it daily"),
        headers=headers,
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    assert response.headers["cache-control"] == "no-cache"
    events = _events(response.text)
    assert events[-1]["type"] == "integration_check"
    gmail = next(e for e in events[-1]["integrations"] if e["name"] == "google-gmail")
    assert gmail == {**gmail, "required": True, "connected": False}


def test_chat_streams_plan_and_confirmation_once_connected(client: TestClient) -> None:
    headers, user_id = _login(client)
    with get_conn() as conn:
        connect_service(conn, user_id, "google-gmail")

    response = client.post(
        "/api/v1/agents/chat",
        json=_chat("watch my inbox and summarize it daily", integrationsConnected=True),
        headers=headers,
    )

    events = _events(response.text)
    assert [e["type"] for e in events][-2:] == ["plan", "confirmation"]
    assert events[-2]["plan"]["name"] == "Inbox Digest"
    assert any(e["type"] == "text_delta" for e in events)


def test_chat_with_pending_plan_streams_adjusted_plan(client: TestClient) -> None:
    headers, _ = _login(client)
    response = client.post(
        "/api/v1/agents/chat",
        json=_chat("make it weekly", pendingPlan=PLAN.to_wire()),
        headers=headers,
    )
    events = _events(response.text)
    assert events[-2]["plan"]["name"] == "Inbox Digest Weekly"
    assert events[-1]["type"] == "confirmation"


@pytest.mark.parametrize(
    ("payload", "detail"),
    [
        ({"plan": PLAN.to_wire()}, "description is required"),
        ({"description": "  ", "plan": PLAN.to_wire()}, "description is required"),
        ({"description": "x"}, "plan is required"),
        ({"description": "x", "plan": {"name": "No behaviours"}}, "plan is required"),
        ({"description": "x", "plan": {"behaviours": []}}, "plan is required"),
    ],
)
def test_build_rejects_invalid_requests(
    client: TestClient, payload: dict[str, object], detail: str
) -> None:
    headers, _ = _login(client)
    response = client.post("/api/v1/agents/build", json=payload, headers=headers)
    assert response.status_code == 400
    assert response.json()["detail"] == detail


def test_build_streams_stages_and_deploys_agent(client: TestClient) -> None:
    headers, _ = _login(client)
    response = client.post(
        "/api/v1/agents/build",
        json={"description": "watch my inbox and summarize it daily", "plan": PLAN.to_wire()},
        headers=headers,
    )

    assert response.status_code == 200
    events = _events(response.text)
    stages = [e["stage"] for e in events if e["type"] == "build_stage" and e["status"] == "done"]
    assert stages == [
        "Intent analysed",
        "Execution logic generated",
        "Integrations validated",
        "Memory seeded",
        "Safeguards applied",
        "Agent deployed",
    ]
    complete = events[-1]
    assert complete["type"] == "build_complete"
    agent_id = str(complete["agentId"])

    detail = client.get(f"/api/v1/agents/{agent_id}", headers=headers).json()
    assert detail["agent"]["status"] == "active"
    assert len(detail["behaviours"]) == 2
    assert len(detail["poll_triggers"]) == 1
    assert len(detail["schedules"]) == 1

    memory = client.get(f"/api/v1/agents/{agent_id}/memory", headers=headers).json()
    assert {item["content"] for item in memory["items"]} == {
        "User likes short summaries",
        "Skip newsletters",
    }


def test_chat_streams_error_when_vocabulary_is_empty(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        "agentsmith.tasks.pipeline.get_settings",
        lambda: SimpleNamespace(capability_names=lambda: []),
    )
    headers, _ = _login(client)
    response = client.post("/api/v1/agents/chat", json=_chat("anything"), headers=headers)

    assert response.status_code == 200
    assert _events(response.text) == [
        {"type": "error", "message": "The agent planner is not available right now."}
    ]
