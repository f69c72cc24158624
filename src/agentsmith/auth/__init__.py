"""Session authentication for the builder API."""

from agentsmith.auth.dependencies import UserContext, require_auth

__all__ = ["UserContext", "require_auth"]
