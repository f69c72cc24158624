"""API v1 router aggregation."""

from fastapi import APIRouter

from agentsmith.routes.api import agents, auth, builder, integrations

router = APIRouter(prefix="/api/v1", tags=["api"])
router.include_router(auth.router)
router.include_router(builder.router)
router.include_router(agents.router)
router.include_router(integrations.router)
