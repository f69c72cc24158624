"""Web auth API routes."""

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Response, status

from agentsmith.auth.dependencies import UserContext, extract_bearer, require_auth
from agentsmith.auth.service import create_session, delete_session_by_token
from agentsmith.config import get_settings
from agentsmith.db.connection import get_conn
from agentsmith.db.queries import ensure_user

router = APIRouter(prefix="/auth", tags=["api-auth"])

SESSION_COOKIE = "agentsmith_session"


@router.post("/login")
def login(payload: dict[str, str], response: Response) -> dict[str, str]:
    settings = get_settings()
    setup_password = settings.web_auth_setup_password.strip()
    if not setup_password:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="web auth setup password is not configured",
        )

    password = str(payload.get("password", ""))
    if password != setup_password:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid credentials")

    external_id = str(payload.get("external_id", "web_admin")).strip() or "web_admin"
    with get_conn() as conn:
        user_id = ensure_user(conn, external_id)
        admin_count_row = conn.execute(
            "SELECT COUNT(*) AS n FROM users WHERE role='admin'"
        ).fetchone()
        admin_count = int(admin_count_row["n"]) if admin_count_row is not None else 0
        if admin_count == 0:
            conn.execute("UPDATE users SET role='admin' WHERE id=?", (user_id,))
        role_row = conn.execute("SELECT role FROM users WHERE id=? LIMIT 1", (user_id,)).fetchone()
        role = str(role_row["role"]) if role_row is not None else "user"
        session_id, token = create_session(conn, user_id, role)
    response.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        secure=settings.app_env == "prod",
        max_age=max(1, settings.web_auth_token_ttl_hours) * 3600,
    )
    return {"token": token, "session_id": session_id, "user_id": user_id, "role": role}


@router.get("/me")
def me(ctx: UserContext = Depends(require_auth)) -> dict[str, str]:  # noqa: B008
    return {"user_id": ctx.user_id, "role": ctx.role}


@router.post("/logout")
def logout(
    response: Response,
    ctx: UserContext = Depends(require_auth),  # noqa: B008
    authorization: str | None = Header(default=None),
    agentsmith_session: str | None = Cookie(default=None),
) -> dict[str, bool]:
    del ctx
    raw = extract_bearer(authorization) or (agentsmith_session or "").strip()
    if raw:
        with get_conn() as conn:
            delete_session_by_token(conn, raw)
    response.delete_cookie(SESSION_COOKIE)
    return {"ok": True}
