from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from agentsmith.agents.store import AgentStore
from agentsmith.db.connection import get_conn
from agentsmith.db.queries import insert_agent, insert_behaviour, set_agent_status
from agentsmith.errors import DispatchError
from agentsmith.main import app
from agentsmith.pipeline.dispatcher import DispatchResult, TriggerDispatcher
from agentsmith.tasks.pipeline import make_dispatcher


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _login(client: TestClient, external_id: str) -> tuple[dict[str, str], str]:
    response = client.post(
        "/api/v1/auth/login", json={"password": "secret", "external_id": external_id}
    )
    assert response.status_code == 200
    payload = response.json()
    return {"Authorization": f"Bearer {payload['token']}"}, str(payload["user_id"])


def _active_agent(user_id: str) -> str:
    with get_conn() as conn:
        agent = insert_agent(
            conn,
            user_id=user_id,
            name="Scout",
            description="watch github",
            persona=None,
            instructions="Triage issues.",
            avatar_emoji="\U0001F419",
            model="gpt-4o",
            max_steps=10,
        )
        insert_behaviour(
            conn,
            agent_id=agent["id"],
            user_id=user_id,
            behaviour_type="polling",
            trigger_type="new-github-issue",
            schedule_cron=None,
            description="watch issues",
            config={"repo": "acme/app"},
        )
        set_agent_status(conn, agent["id"], user_id, "active")
    return str(agent["id"])


def test_agents_are_private_to_their_owner(client: TestClient) -> None:
    owner_headers, owner_id = _login(client, "web:owner")
    other_headers, _ = _login(client, "web:other")
    agent_id = _active_agent(owner_id)

    listed = client.get("/api/v1/agents", headers=owner_headers).json()["items"]
    assert [item["id"] for item in listed] == [agent_id]
    assert client.get("/api/v1/agents", headers=other_headers).json()["items"] == []
    assert client.get(f"/api/v1/agents/{agent_id}", headers=other_headers).status_code == 404
    assert client.get(f"/api/v1/agents/{agent_id}/memory", headers=other_headers).status_code == 404
    assert client.post(f"/api/v1/agents/{agent_id}/pause", headers=other_headers).status_code == 404


def test_pause_resume_archive_flow(client: TestClient) -> None:
    headers, user_id = _login(client, "web:lifecycle")
    agent_id = _active_agent(user_id)

    paused = client.post(f"/api/v1/agents/{agent_id}/pause", headers=headers)
    assert paused.status_code == 200
    assert paused.json()["agent"]["status"] == "paused"
    assert client.post(f"/api/v1/agents/{agent_id}/pause", headers=headers).status_code == 400

    resumed = client.post(f"/api/v1/agents/{agent_id}/resume", headers=headers)
    assert resumed.json()["agent"]["status"] == "active"
    detail = client.get(f"/api/v1/agents/{agent_id}", headers=headers).json()
    assert len(detail["poll_triggers"]) == 1
    assert detail["poll_triggers"][0]["enabled"] is True
    assert detail["poll_triggers"][0]["config"]["repo"] == "acme/app"

    archived = client.post(f"/api/v1/agents/{agent_id}/archive", headers=headers)
    assert archived.json()["agent"]["status"] == "archived"
    assert client.get("/api/v1/agents", headers=headers).json()["items"] == []
    detail = client.get(f"/api/v1/agents/{agent_id}", headers=headers).json()
    assert all(not item["enabled"] for item in detail["behaviours"])


def test_integrations_status_lists_catalogue(client: TestClient) -> None:
    headers, user_id = _login(client, "web:integrations")
    with get_conn() as conn:
        conn.execute(
            "INSERT INTO integrations(user_id, service_name, connected_at) VALUES(?,?,?)",
            (user_id, "google-gmail", "2026-01-01T00:00:00+00:00"),
        )

    payload = client.get("/api/v1/integrations", headers=headers).json()
    by_service = {item["service"]: item for item in payload["items"]}
    assert payload["connected"] == ["google-gmail"]
    assert by_service["google-sheets"]["connected"] is True
    assert by_service["slack"]["connected"] is False


def test_patch_updates_editable_fields_only(client: TestClient) -> None:
    headers, user_id = _login(client, "web:editor")
    other_headers, _ = _login(client, "web:stranger")
    agent_id = _active_agent(user_id)

    response = client.patch(
        f"/api/v1/agents/{agent_id}",
        headers=headers,
        json={"name": "Ranger", "persona": "Terse.", "max_steps": 4},
    )
    assert response.status_code == 200
    agent = response.json()["agent"]
    assert (agent["name"], agent["persona"], agent["max_steps"]) == ("Ranger", "Terse.", 4)
    assert agent["status"] == "active"

    assert client.patch(f"/api/v1/agents/{agent_id}", headers=headers, json={}).status_code == 400
    blank = client.patch(f"/api/v1/agents/{agent_id}", headers=headers, json={"name": "  "})
    assert blank.status_code == 400
    zero_steps = client.patch(f"/api/v1/agents/{agent_id}", headers=headers, json={"max_steps": 0})
    assert zero_steps.status_code == 422
    stranger = client.patch(
        f"/api/v1/agents/{agent_id}", headers=other_headers, json={"name": "Mine"}
    )
    assert stranger.status_code == 404


def test_user_memories_can_be_added_and_removed(client: TestClient) -> None:
    headers, user_id = _login(client, "web:memory")
    other_headers, _ = _login(client, "web:memory-other")
    agent_id = _active_agent(user_id)
    url = f"/api/v1/agents/{agent_id}/memory"

    created = client.post(url, headers=headers, json={"content": "  Prefers Slack  ", "weight": 8})
    assert created.status_code == 201
    memory = created.json()["memory"]
    assert memory["content"] == "Prefers Slack"
    assert (memory["kind"], memory["weight"], memory["source"]) == ("fact", 8, "user")

    assert client.post(url, headers=headers, json={"content": "   "}).status_code == 400
    assert client.post(url, headers=other_headers, json={"content": "x"}).status_code == 404

    listed = client.get(url, headers=headers).json()["items"]
    assert [item["id"] for item in listed] == [memory["id"]]

    params = {"memory_id": memory["id"]}
    assert client.delete(url, headers=other_headers, params=params).status_code == 404
    assert client.delete(url, headers=headers, params=params).status_code == 200
    assert client.delete(url, headers=headers, params=params).status_code == 404
    assert client.get(url, headers=headers).json()["items"] == []


def test_delete_agent_removes_triggers_behaviours_and_memory(client: TestClient) -> None:
    headers, user_id = _login(client, "web:deleter")
    agent_id = _active_agent(user_id)
    client.post(f"/api/v1/agents/{agent_id}/pause", headers=headers)
    client.post(f"/api/v1/agents/{agent_id}/resume", headers=headers)
    client.post(f"/api/v1/agents/{agent_id}/memory", headers=headers, json={"content": "hi"})

    deleted = client.delete(f"/api/v1/agents/{agent_id}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json() == {"ok": True}
    assert client.get(f"/api/v1/agents/{agent_id}", headers=headers).status_code == 404
    assert client.delete(f"/api/v1/agents/{agent_id}", headers=headers).status_code == 404

    with get_conn() as conn:
        for table in ("poll_triggers", "agent_behaviours", "agent_memory"):
            count = conn.execute(
                f"SELECT COUNT(*) AS n FROM {table} WHERE agent_id=?", (agent_id,)
            ).fetchone()
            assert count["n"] == 0, table


def test_failed_resume_reports_error_and_stays_paused(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    headers, user_id = _login(client, "web:outage")
    agent_id = _active_agent(user_id)
    assert client.post(f"/api/v1/agents/{agent_id}/pause", headers=headers).status_code == 200

    class _Rejecting(TriggerDispatcher):
        async def dispatch(self, behaviour: dict[str, object]) -> DispatchResult:
            raise DispatchError("poll registrar unavailable")

    def _rejecting_dispatcher(store: AgentStore | None = None) -> TriggerDispatcher:
        real = make_dispatcher(store)
        return _Rejecting(real.schedules, real.polls)

    monkeypatch.setattr("agentsmith.routes.api.agents.make_dispatcher", _rejecting_dispatcher)
    response = client.post(f"/api/v1/agents/{agent_id}/resume", headers=headers)

    assert response.status_code == 500
    assert "poll registrar unavailable" in response.json()["detail"]
    detail = client.get(f"/api/v1/agents/{agent_id}", headers=headers).json()
    assert detail["agent"]["status"] == "paused"
    assert all(not item["enabled"] for item in detail["behaviours"])
