"""Agent builder streaming routes: negotiate a plan, then build it."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address

from agentsmith.auth.dependencies import UserContext, require_auth
from agentsmith.config import get_settings
from agentsmith.ids import new_id
from agentsmith.pipeline.stream import EventStreamWriter
from agentsmith.pipeline.types import BuildRequest, NegotiateRequest
from agentsmith.tasks import BUILD_TASK, NEGOTIATE_TASK, get_task_runner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agents", tags=["api-builder"])
_limiter = Limiter(key_func=get_remote_address)

STREAM_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
BUSY_TEXT = "The builder is busy right now. Please try again."


def _pipeline_limit() -> str:
    return f"{get_settings().rate_limit_pipeline_per_minute}/minute"


def _validation_detail(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = str(first.get("msg", "invalid request"))
    return f"{location}: {message}" if location else message


def parse_negotiate_request(payload: dict[str, object]) -> NegotiateRequest:
    messages = payload.get("messages")
    if not isinstance(messages, list) or not messages:
        raise HTTPException(status_code=400, detail="messages array is required")
    try:
        request = NegotiateRequest.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
    if not request.latest_user_content():
        raise HTTPException(status_code=400, detail="Latest user message is required")
    return request


def parse_build_request(payload: dict[str, object]) -> BuildRequest:
    description = payload.get("description")
    if not isinstance(description, str) or not description.strip():
        raise HTTPException(status_code=400, detail="description is required")
    plan = payload.get("plan")
    if not isinstance(plan, dict) or not plan.get("name") or "behaviours" not in plan:
        raise HTTPException(status_code=400, detail="plan is required")
    try:
        request = BuildRequest.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
    if not request.plan.name.strip():
        raise HTTPException(status_code=400, detail="plan is required")
    return request


def _start_stream(task_name: str, kwargs: dict[str, object]) -> StreamingResponse:
    writer = EventStreamWriter(stream_id=new_id("stm"))
    if not get_task_runner().send_task(task_name, {**kwargs, "writer": writer}):
        logger.warning(
            "pipeline task not started task=%s stream_id=%s", task_name, writer.stream_id
        )
        writer.error(BUSY_TEXT)
        writer.close()
    return StreamingResponse(
        writer.lines(),
        status_code=status.HTTP_200_OK,
        media_type="application/x-ndjson",
        headers=STREAM_HEADERS,
    )


@router.post("/chat")
@_limiter.limit(_pipeline_limit)
async def chat(
    request: Request,
    payload: dict[str, object],
    ctx: UserContext = Depends(require_auth),  # noqa: B008
) -> StreamingResponse:
    del request
    negotiate_request = parse_negotiate_request(payload)
    return _start_stream(
        NEGOTIATE_TASK, {"request": negotiate_request, "principal_id": ctx.user_id}
    )


@router.post("/build")
@_limiter.limit(_pipeline_limit)
async def build(
    request: Request,
    payload: dict[str, object],
    ctx: UserContext = Depends(require_auth),  # noqa: B008
) -> StreamingResponse:
    del request
    build_request = parse_build_request(payload)
    return _start_stream(BUILD_TASK, {"request": build_request, "principal_id": ctx.user_id})
