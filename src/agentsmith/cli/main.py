"""Click CLI group: migrate, serve, negotiate, build, agents and integrations commands."""

from __future__ import annotations

import asyncio
import json
import os
import socket
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from agentsmith.agents.lifecycle import AgentLifecycle
from agentsmith.agents.store import AgentStore
from agentsmith.config import get_settings
from agentsmith.db.connection import get_conn
from agentsmith.db.migrations.runner import run_migrations
from agentsmith.db.queries import (
    connect_service,
    disconnect_service,
    ensure_user,
    list_agents,
    list_connected_services,
)
from agentsmith.errors import AgentSmithError
from agentsmith.ids import new_id
from agentsmith.logging import configure_logging
from agentsmith.pipeline.capabilities import get_capability
from agentsmith.pipeline.stream import BuildProgress, EventStreamWriter, parse_events
from agentsmith.pipeline.types import (
    BuildRequest,
    ConversationTurn,
    NegotiateRequest,
    Plan,
    QuestionnaireAnswer,
)
from agentsmith.tasks.pipeline import build as build_task
from agentsmith.tasks.pipeline import make_dispatcher
from agentsmith.tasks.pipeline import negotiate as negotiate_task


def default_cli_user() -> str:
    user = os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"
    host = socket.gethostname() or "local"
    return f"cli:{user}@{host}"


def _principal(external_id: str) -> str:
    with get_conn() as conn:
        return ensure_user(conn, external_id)


def _load_json(path: str) -> Any:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise click.ClickException(f"cannot read {path}: {exc}") from exc


async def _stream(run: Callable[[EventStreamWriter], Awaitable[None]]) -> list[dict[str, Any]]:
    writer = EventStreamWriter(stream_id=new_id("stm"))
    task = asyncio.create_task(run(writer))
    lines: list[str] = []
    async for line in writer.lines():
        click.echo(line, nl=False)
        lines.append(line)
    await task
    return parse_events(lines)


def _exit_on_error(events: list[dict[str, Any]]) -> None:
    if any(event.get("type") == "error" for event in events):
        sys.exit(1)


user_option = click.option(
    "--user-id",
    type=str,
    default=default_cli_user,
    show_default="cli:<local-user>@<host>",
    help="External user ID the agents belong to.",
)


@click.group()
def cli() -> None:
    """Agentsmith builder CLI."""
    configure_logging(get_settings().log_level)


@cli.command()
def migrate() -> None:
    """Apply pending database migrations."""
    applied = run_migrations()
    click.echo(f"applied: {', '.join(applied)}" if applied else "database is up to date")


@cli.command()
@click.option("--host", type=str, default=None, help="Override BIND_HOST.")
@click.option("--port", type=int, default=None, help="Override BIND_PORT.")
@click.option("--reload", is_flag=True, help="Reload on code changes (development only).")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "agentsmith.main:app",
        host=host or settings.bind_host,
        port=port or settings.bind_port,
        reload=reload,
        log_config=None,
    )


@cli.command()
@click.argument("description")
@click.option("--plan-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Pending plan JSON; DESCRIPTION is then treated as adjustment feedback.")
@click.option("--answers-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Questionnaire answers JSON list.")
@click.option("--integrations-connected", is_flag=True,
              help="Skip the capability check even if something is missing.")
@user_option
def negotiate(
    description: str,
    plan_file: str | None,
    answers_file: str | None,
    integrations_connected: bool,
    user_id: str,
) -> None:
    """Run one negotiation turn and print its events as JSON lines."""
    run_migrations()
    try:
        request = NegotiateRequest(
            messages=[ConversationTurn(role="user", content=description)],
            pending_plan=Plan.model_validate(_load_json(plan_file)) if plan_file else None,
            answers=(
                [QuestionnaireAnswer.model_validate(item) for item in _load_json(answers_file)]
                if answers_file
                else None
            ),
            integrations_connected=integrations_connected,
        )
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc
    if not request.latest_user_content():
        raise click.ClickException("description must not be blank")
    principal_id = _principal(user_id)
    events = asyncio.run(
        _stream(lambda writer: negotiate_task(request, principal_id, writer))
    )
    _exit_on_error(events)


@cli.command("build")
@click.option("--plan-file", type=click.Path(exists=True, dir_okay=False), required=True)
@click.option("--description", type=str, required=True)
@user_option
def build(plan_file: str, description: str, user_id: str) -> None:
    """Build a confirmed plan into an agent, printing stage events as JSON lines."""
    if not description.strip():
        raise click.ClickException("description must not be blank")
    run_migrations()
    try:
        plan = Plan.model_validate(_load_json(plan_file))
        request = BuildRequest(description=description, plan=plan)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc
    principal_id = _principal(user_id)
    events = asyncio.run(_stream(lambda writer: build_task(request, principal_id, writer)))
    for stage in BuildProgress().apply_all(events).stages:
        click.echo(f"{stage.status:<7} {stage.label}", err=True)
    _exit_on_error(events)


@cli.group()
def agents() -> None:
    """Inspect and manage deployed agents."""


@agents.command("list")
@user_option
@click.option("--json", "json_output", is_flag=True, help="Print JSON instead of a table.")
def agents_list(user_id: str, json_output: bool) -> None:
    """List non-archived agents."""
    with get_conn() as conn:
        items = list_agents(conn, ensure_user(conn, user_id))
    if json_output:
        click.echo(json.dumps(items, indent=2, ensure_ascii=False))
        return
    if not items:
        click.echo("no agents")
        return
    for item in items:
        click.echo(
            f"{item['id']}  {item['status']:<9}  {item['name']}  "
            f"behaviours={item['behaviour_count']} memories={item['memory_count']}"
        )


def _transition(action: str, agent_id: str, user_id: str) -> None:
    store = AgentStore()
    lifecycle = AgentLifecycle(store, make_dispatcher(store))
    principal_id = _principal(user_id)
    try:
        agent = asyncio.run(getattr(lifecycle, action)(agent_id, principal_id))
    except AgentSmithError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"{agent['id']} is now {agent['status']}")


@agents.command("pause")
@click.argument("agent_id")
@user_option
def agents_pause(agent_id: str, user_id: str) -> None:
    """Pause an active agent and disable its triggers."""
    _transition("pause", agent_id, user_id)


@agents.command("resume")
@click.argument("agent_id")
@user_option
def agents_resume(agent_id: str, user_id: str) -> None:
    """Resume a paused agent and re-register its triggers."""
    _transition("resume", agent_id, user_id)


@agents.command("archive")
@click.argument("agent_id")
@user_option
def agents_archive(agent_id: str, user_id: str) -> None:
    """Archive an agent."""
    _transition("archive", agent_id, user_id)


@agents.command("delete")
@click.argument("agent_id")
@click.confirmation_option(prompt="Delete this agent, its behaviours and its memory?")
@user_option
def agents_delete(agent_id: str, user_id: str) -> None:
    """Disable an agent's triggers and delete it with everything it owns."""
    store = AgentStore()
    lifecycle = AgentLifecycle(store, make_dispatcher(store))
    principal_id = _principal(user_id)
    try:
        asyncio.run(lifecycle.delete(agent_id, principal_id))
    except AgentSmithError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"{agent_id} deleted")


@cli.group()
def integrations() -> None:
    """Mark capabilities connected for local use (no OAuth exchange)."""


@integrations.command("list")
@user_option
def integrations_list(user_id: str) -> None:
    with get_conn() as conn:
        names = list_connected_services(conn, ensure_user(conn, user_id))
    click.echo("\n".join(names) if names else "no capabilities connected")


@integrations.command("connect")
@click.argument("service")
@user_option
def integrations_connect(service: str, user_id: str) -> None:
    if get_capability(service) is None:
        raise click.ClickException(f"unknown capability: {service}")
    with get_conn() as conn:
        connect_service(conn, ensure_user(conn, user_id), service)
    click.echo(f"{service} connected")


@integrations.command("disconnect")
@click.argument("service")
@user_option
def integrations_disconnect(service: str, user_id: str) -> None:
    with get_conn() as conn:
        removed = disconnect_service(conn, ensure_user(conn, user_id), service)
    click.echo(f"{service} disconnected" if removed else f"{service} was not connected")
