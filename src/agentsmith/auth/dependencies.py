"""FastAPI dependencies resolving the requesting principal."""

from dataclasses import dataclass

from fastapi import Cookie, Header, HTTPException, status

from agentsmith.auth.service import validate_token
from agentsmith.db.connection import get_conn


def extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


@dataclass(frozen=True, slots=True)
class UserContext:
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def require_auth(
    authorization: str | None = Header(default=None),
    agentsmith_session: str | None = Cookie(default=None),
) -> UserContext:
    raw_token = extract_bearer(authorization) or (agentsmith_session or "").strip()
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing session token",
        )
    with get_conn() as conn:
        auth_data = validate_token(conn, raw_token)
    if auth_data is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid session")
    user_id, role = auth_data
    return UserContext(user_id=user_id, role=role)
