"""Deployed agent API routes: read views, edits, memory and lifecycle transitions."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from agentsmith.agents.lifecycle import AgentLifecycle
from agentsmith.agents.store import AgentStore
from agentsmith.auth.dependencies import UserContext, require_auth
from agentsmith.db.connection import get_conn
from agentsmith.db.queries import (
    delete_memory,
    get_agent,
    get_memory,
    insert_memory,
    list_agents,
    list_behaviours,
    list_memories,
    list_poll_triggers,
    list_schedules,
)
from agentsmith.errors import AgentNotFoundError, AgentSmithError, LifecycleError
from agentsmith.tasks.pipeline import make_dispatcher

router = APIRouter(prefix="/agents", tags=["api-agents"])

MemoryKind = Literal["fact", "preference", "contact", "event", "instruction"]


class UpdateAgentBody(BaseModel):
    name: str | None = Field(default=None, max_length=120)
    persona: str | None = None
    instructions: str | None = None
    avatar_emoji: str | None = Field(default=None, max_length=16)
    max_steps: int | None = Field(default=None, ge=1, le=100)


class CreateMemoryBody(BaseModel):
    content: str = Field(max_length=4000)
    kind: MemoryKind = "fact"
    weight: int = Field(default=5, ge=1, le=10)


@router.get("")
def agents_list(ctx: UserContext = Depends(require_auth)) -> dict[str, object]:  # noqa: B008
    with get_conn() as conn:
        items = list_agents(conn, ctx.user_id)
    return {"items": items}


@router.get("/{agent_id}")
def agent_detail(
    agent_id: str, ctx: UserContext = Depends(require_auth)  # noqa: B008
) -> dict[str, object]:
    with get_conn() as conn:
        agent = get_agent(conn, agent_id, ctx.user_id)
        if agent is None:
            raise HTTPException(status_code=404, detail="agent not found")
        behaviours = list_behaviours(conn, agent_id)
        poll_triggers = list_poll_triggers(conn, agent_id)
        schedules = list_schedules(conn, agent_id)
    return {
        "agent": agent,
        "behaviours": behaviours,
        "poll_triggers": poll_triggers,
        "schedules": schedules,
    }


@router.get("/{agent_id}/memory")
def agent_memory(
    agent_id: str,
    ctx: UserContext = Depends(require_auth),  # noqa: B008
    limit: int = Query(default=50, ge=1, le=500),
) -> dict[str, object]:
    with get_conn() as conn:
        if get_agent(conn, agent_id, ctx.user_id) is None:
            raise HTTPException(status_code=404, detail="agent not found")
        items = list_memories(conn, agent_id, ctx.user_id, limit)
    return {"items": items}


@router.post("/{agent_id}/memory", status_code=201)
def add_agent_memory(
    agent_id: str,
    body: CreateMemoryBody,
    ctx: UserContext = Depends(require_auth),  # noqa: B008
) -> dict[str, object]:
    content = body.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="content is required")
    with get_conn() as conn:
        if get_agent(conn, agent_id, ctx.user_id) is None:
            raise HTTPException(status_code=404, detail="agent not found")
        memory_id = insert_memory(
            conn,
            agent_id=agent_id,
            user_id=ctx.user_id,
            content=content,
            kind=body.kind,
            weight=body.weight,
            source="user",
        )
        memory = get_memory(conn, memory_id, agent_id, ctx.user_id)
    return {"memory": memory}


@router.delete("/{agent_id}/memory")
def remove_agent_memory(
    agent_id: str,
    memory_id: str = Query(min_length=1),
    ctx: UserContext = Depends(require_auth),  # noqa: B008
) -> dict[str, bool]:
    with get_conn() as conn:
        if get_agent(conn, agent_id, ctx.user_id) is None:
            raise HTTPException(status_code=404, detail="agent not found")
        if not delete_memory(conn, memory_id, agent_id, ctx.user_id):
            raise HTTPException(status_code=404, detail="memory not found")
    return {"ok": True}


def _lifecycle() -> AgentLifecycle:
    store = AgentStore()
    return AgentLifecycle(store, make_dispatcher(store))


async def _transition(
    action: str, agent_id: str, user_id: str, *args: object
) -> dict[str, object]:
    lifecycle = _lifecycle()
    try:
        agent = await getattr(lifecycle, action)(agent_id, user_id, *args)
    except AgentNotFoundError as exc:
        raise HTTPException(status_code=404, detail="agent not found") from exc
    except LifecycleError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AgentSmithError as exc:
        raise HTTPException(status_code=500, detail=f"failed to {action} agent: {exc}") from exc
    if agent is None:
        return {"ok": True}
    return {"ok": True, "agent": agent}


@router.patch("/{agent_id}")
async def update_agent(
    agent_id: str,
    body: UpdateAgentBody,
    ctx: UserContext = Depends(require_auth),  # noqa: B008
) -> dict[str, object]:
    fields = body.model_dump(exclude_none=True)
    if "name" in fields and not fields["name"].strip():
        raise HTTPException(status_code=400, detail="name must not be blank")
    return await _transition("update", agent_id, ctx.user_id, fields)


@router.delete("/{agent_id}")
async def delete_agent(
    agent_id: str, ctx: UserContext = Depends(require_auth)  # noqa: B008
) -> dict[str, object]:
    return await _transition("delete", agent_id, ctx.user_id)


@router.post("/{agent_id}/pause")
async def pause_agent(
    agent_id: str, ctx: UserContext = Depends(require_auth)  # noqa: B008
) -> dict[str, object]:
    return await _transition("pause", agent_id, ctx.user_id)


@router.post("/{agent_id}/resume")
async def resume_agent(
    agent_id: str, ctx: UserContext = Depends(require_auth)  # noqa: B008
) -> dict[str, object]:
    return await _transition("resume", agent_id, ctx.user_id)


@router.post("/{agent_id}/archive")
async def archive_agent(
    agent_id: str, ctx: UserContext = Depends(require_auth)  # noqa: B008
) -> dict[str, object]:
    return await _transition("archive", agent_id, ctx.user_id)
