from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

import pytest
from click.testing import CliRunner

from agentsmith.cli.main import cli
from agentsmith.pipeline.types import BehaviourPlan, ClarificationAnalysis, Plan

PLAN = Plan(
    name="Issue Scout",
    instructions="Triage new GitHub issues.",
    behaviours=[
        BehaviourPlan(
            behaviour_type="polling",
            trigger_type="new-github-issue",
            description="Watch a GitHub repo for new issues",
        )
    ],
    initial_memories=["Label bugs first"],
)


class _StubPlanner:
    async def propose(self, description: str, available_capabilities: Sequence[str]) -> Plan:
        return PLAN

    async def adjust(
        self, plan: Plan, feedback: str, available_capabilities: Sequence[str]
    ) -> Plan:
        return plan


class _ClearAnalyzer:
    async def analyze(self, description: str, history: Sequence[dict[str, str]] = ()):
        return ClarificationAnalysis(needs_clarification=False, confidence=1.0, summary="ok")


@pytest.fixture(autouse=True)
def _stub_llm(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("agentsmith.tasks.pipeline.make_plan_provider", _StubPlanner)
    monkeypatch.setattr("agentsmith.tasks.pipeline.make_clarifier", _ClearAnalyzer)


def _json_lines(output: str) -> list[dict[str, object]]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


def test_negotiate_reports_missing_capability_then_plan_after_connect() -> None:
    runner = CliRunner()
    args = ["negotiate", "triage my github issues", "--user-id", "cli:test"]

    first = runner.invoke(cli, args)
    assert first.exit_code == 0, first.output
    assert _json_lines(first.output)[-1]["type"] == "integration_check"

    connected = runner.invoke(cli, ["integrations", "connect", "github", "--user-id", "cli:test"])
    assert connected.exit_code == 0
    assert "github connected" in connected.output

    second = runner.invoke(cli, args)
    events = _json_lines(second.output)
    assert [event["type"] for event in events][-2:] == ["plan", "confirmation"]


def test_integrations_connect_rejects_unknown_capability() -> None:
    result = CliRunner().invoke(cli, ["integrations", "connect", "myspace"])
    assert result.exit_code != 0
    assert "unknown capability" in result.output


def test_build_then_manage_agent(tmp_path: Path) -> None:
    runner = CliRunner()
    plan_file = tmp_path / "plan.json"
    plan_file.write_text(json.dumps(PLAN.to_wire()), encoding="utf-8")

    built = runner.invoke(
        cli,
        [
            "build",
            "--plan-file",
            str(plan_file),
            "--description",
            "triage my github issues",
            "--user-id",
            "cli:builder",
        ],
    )
    assert built.exit_code == 0, built.output
    complete = _json_lines(built.output)[-1]
    assert complete["type"] == "build_complete"
    assert "done    Agent deployed" in built.output
    agent_id = str(complete["agentId"])

    listed = runner.invoke(cli, ["agents", "list", "--user-id", "cli:builder"])
    assert agent_id in listed.output
    assert "active" in listed.output

    paused = runner.invoke(cli, ["agents", "pause", agent_id, "--user-id", "cli:builder"])
    assert f"{agent_id} is now paused" in paused.output

    again = runner.invoke(cli, ["agents", "pause", agent_id, "--user-id", "cli:builder"])
    assert again.exit_code != 0
    assert "cannot pause" in again.output

    archived = runner.invoke(cli, ["agents", "archive", agent_id, "--user-id", "cli:builder"])
    assert f"{agent_id} is now archived" in archived.output


def test_build_rejects_blank_description(tmp_path: Path) -> None:
    plan_file = tmp_path / "plan.json"
    plan_file.write_text(json.dumps(PLAN.to_wire()), encoding="utf-8")
    result = CliRunner().invoke(
        cli, ["build", "--plan-file", str(plan_file), "--description", "  "]
    )
    assert result.exit_code != 0
    assert "description must not be blank" in result.output


def test_migrate_reports_up_to_date() -> None:
    result = CliRunner().invoke(cli, ["migrate"])
    assert result.exit_code == 0
    assert "up to date" in result.output


def test_agents_delete_removes_built_agent(tmp_path: Path) -> None:
    runner = CliRunner()
    plan_file = tmp_path / "plan.json"
    plan_file.write_text(json.dumps(PLAN.to_wire()), encoding="utf-8")
    built = runner.invoke(
        cli,
        ["build", "--plan-file", str(plan_file), "--description", "triage", "--user-id", "cli:rm"],
    )
    agent_id = str(_json_lines(built.output)[-1]["agentId"])

    deleted = runner.invoke(cli, ["agents", "delete", agent_id, "--user-id", "cli:rm", "--yes"])
    assert deleted.exit_code == 0, deleted.output
    assert f"{agent_id} deleted" in deleted.output
    assert agent_id not in runner.invoke(cli, ["agents", "list", "--user-id", "cli:rm"]).output

    again = runner.invoke(cli, ["agents", "delete", agent_id, "--user-id", "cli:rm", "--yes"])
    assert again.exit_code != 0
    assert "not found" in again.output
