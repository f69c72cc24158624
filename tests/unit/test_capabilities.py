from __future__ import annotations

import pytest

from agentsmith.db.connection import get_conn
from agentsmith.db.queries import connect_service, ensure_user
from agentsmith.pipeline.capabilities import (
    SqliteCapabilityRegistry,
    build_capability_checks,
    detect_required_capabilities,
    is_connected,
    missing_capabilities,
)
from agentsmith.pipeline.types import BehaviourPlan, Plan


def _plan(*behaviours: BehaviourPlan, instructions: str = "") -> Plan:
    return Plan(name="Probe", instructions=instructions, behaviours=list(behaviours))


def test_trigger_derived_capabilities_come_first_and_are_deduplicated() -> None:
    plan = _plan(
        BehaviourPlan(behaviour_type="polling", trigger_type="new-message-in-slack"),
        BehaviourPlan(behaviour_type="polling", trigger_type="new-email-received"),
        instructions="Reply in Slack and log each email to a spreadsheet.",
    )
    assert detect_required_capabilities(plan) == ["slack", "google-gmail", "google-sheets"]


def test_detection_is_deterministic() -> None:
    plan = _plan(
        BehaviourPlan(behaviour_type="heartbeat", schedule_cron="0 9 * * *"),
        instructions="Check GitHub pull requests and post a Discord digest.",
    )
    assert detect_required_capabilities(plan) == detect_required_capabilities(plan)
    assert detect_required_capabilities(plan) == ["discord", "github"]


def test_trigger_type_ignored_for_non_polling_behaviours() -> None:
    plan = _plan(BehaviourPlan(behaviour_type="webhook", trigger_type="new-github-issue"))
    assert detect_required_capabilities(plan) == []


def test_google_capabilities_share_one_grant() -> None:
    assert is_connected("google-sheets", ["google-gmail"]) is True
    assert is_connected("slack", ["google-gmail"]) is False
    assert is_connected("slack", ["slack"]) is True


def test_checks_mark_connection_state_and_missing_subset() -> None:
    plan = _plan(
        BehaviourPlan(behaviour_type="polling", trigger_type="new-email-received"),
        instructions="Post a summary to Slack.",
    )
    checks = build_capability_checks(plan, ["google-drive"])
    wire = {entry.name: entry.to_wire() for entry in checks}

    assert wire["google-gmail"]["connected"] is True
    assert wire["slack"]["connected"] is False
    assert wire["slack"]["required"] is True
    assert wire["slack"]["connectUrl"] == "/api/auth/connect/slack"
    assert [entry.name for entry in missing_capabilities(checks)] == ["slack"]


@pytest.mark.asyncio
async def test_sqlite_registry_reads_connected_services() -> None:
    with get_conn() as conn:
        principal = ensure_user(conn, "web:caps")
        connect_service(conn, principal, "slack")
        connect_service(conn, principal, "google-gmail")
        connect_service(conn, principal, "slack")

    assert await SqliteCapabilityRegistry().connected(principal) == ["google-gmail", "slack"]
    assert await SqliteCapabilityRegistry().connected("usr_nobody") == []
