"""Connected capability status for the requesting principal."""

from fastapi import APIRouter, Depends

from agentsmith.auth.dependencies import UserContext, require_auth
from agentsmith.db.connection import get_conn
from agentsmith.db.queries import list_connected_services
from agentsmith.pipeline.capabilities import CAPABILITY_CATALOGUE, is_connected

router = APIRouter(prefix="/integrations", tags=["api-integrations"])


@router.get("")
def integrations_status(
    ctx: UserContext = Depends(require_auth),  # noqa: B008
) -> dict[str, object]:
    with get_conn() as conn:
        connected = list_connected_services(conn, ctx.user_id)
    return {
        "connected": connected,
        "items": [
            {
                "service": item.name,
                "label": item.label,
                "icon": item.icon,
                "connected": is_connected(item.name, connected),
                "connectUrl": item.connect_url,
                "connectionMethod": item.connection_method,
            }
            for item in CAPABILITY_CATALOGUE
        ],
    }
