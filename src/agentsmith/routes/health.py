"""Health and readiness routes."""

import sqlite3

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from agentsmith.config import get_settings
from agentsmith.db.connection import get_conn
from agentsmith.tasks import get_task_runner

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def healthz() -> dict[str, bool]:
    return {"ok": True}


@router.get("/readyz")
async def readyz() -> JSONResponse:
    settings = get_settings()
    db_ok = True
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1")
    except sqlite3.Error:
        db_ok = False
    planner_ok = bool(settings.planner_base_url.strip() and settings.planner_model.strip())
    runner = get_task_runner()
    ok = db_ok and planner_ok
    return JSONResponse(
        status_code=200 if ok else 503,
        content={
            "ok": ok,
            "db": db_ok,
            "planner": planner_ok,
            "tasks_in_flight": runner.in_flight,
        },
    )
