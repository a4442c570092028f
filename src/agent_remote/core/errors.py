"""Error taxonomy for the orchestration pipeline."""

from typing import Optional


class AgentRemoteError(Exception):
    """Base class for all agent-remote errors."""


class ConfigurationError(AgentRemoteError):
    """Required configuration is missing or invalid."""


class SignatureError(AgentRemoteError):
    """Inbound request signature is missing, invalid or expired."""


class ProviderAPIError(AgentRemoteError):
    """A language-model provider call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class RateLimitError(ProviderAPIError):
    """Provider rejected the call with a rate-limit status (HTTP 429)."""

    def __init__(self, message: str, status_code: int = 429):
        super().__init__(message, status_code=status_code, retryable=True)


class ToolExecutionError(AgentRemoteError):
    """A sandbox tool could not complete. Reported to the model, never to the caller."""


class PhaseTimeoutError(AgentRemoteError):
    """A plan or execute phase exceeded its wall-clock budget."""


class WorkflowStateError(AgentRemoteError):
    """Attempted workflow transition is not valid for the current status."""

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class DeploymentError(AgentRemoteError):
    """Preview deployment failed."""


class WorkspaceError(AgentRemoteError):
    """Repository clone, worktree or push operation failed."""
