"""Agentsmith exception hierarchy.

All agentsmith-specific exceptions inherit from AgentSmithError,
so stream handlers can turn any of them into a single ``error`` event.
"""


class AgentSmithError(Exception):
    """Base exception for all agentsmith errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class PlannerError(AgentSmithError):
    """Error talking to the plan provider or clarification analyzer."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class CapabilityLookupError(AgentSmithError):
    """Connected capabilities could not be resolved for a principal."""

    def __init__(self, message: str = "", *, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)


class StoreError(AgentSmithError):
    """Error reading or writing persisted agent state."""


class BuildStageError(AgentSmithError):
    """A critical build stage failed."""

    def __init__(self, stage: str, message: str = "") -> None:
        super().__init__(message or f"{stage} failed")
        self.stage = stage


class DispatchError(AgentSmithError):
    """A trigger subsystem rejected a behaviour registration."""


class ConfigError(AgentSmithError):
    """Invalid or missing configuration."""


class AgentNotFoundError(StoreError):
    """No agent with that id belongs to the requesting principal."""


class LifecycleError(AgentSmithError):
    """A lifecycle transition is not allowed from the agent's current status."""
