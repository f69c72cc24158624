"""FastAPI entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from agentsmith.config import get_settings, validate_settings_for_env
from agentsmith.db.migrations.runner import run_migrations
from agentsmith.logging import configure_logging
from agentsmith.routes.api import router as api_router
from agentsmith.routes.health import router as health_router
from agentsmith.tasks import get_task_runner

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    validate_settings_for_env(settings)
    configure_logging(settings.log_level)
    applied = run_migrations()
    if applied:
        logger.info("Applied migrations: %s", ", ".join(applied))
    task_runner = get_task_runner()
    logger.info(
        "Task runner ready (max_concurrent=%d tasks=%s)",
        task_runner.max_concurrent,
        ",".join(task_runner.registered()),
    )
    yield
    await task_runner.shutdown(timeout_s=float(settings.task_runner_shutdown_timeout_seconds))


limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title="Agentsmith Builder", version="0.1.0", lifespan=lifespan)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": "rate limit exceeded", "detail": str(exc.detail)},
    )


settings = get_settings()
cors_origins = [item.strip() for item in settings.web_cors_origins.split(",") if item.strip()]
if cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.include_router(health_router)
app.include_router(api_router)
