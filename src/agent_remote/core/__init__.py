"""Core models and configuration."""

from .config import AgentRemoteConfig, load_config
from .errors import AgentRemoteError, WorkflowStateError
from .execution_lock import ExecutionRegistry
from .session import Session, SessionStatus
from .session_manager import SessionManager
from .workflow import Workflow, WorkflowStateMachine, WorkflowStatus, WorkflowStore

__all__ = [
    "AgentRemoteConfig",
    "load_config",
    "AgentRemoteError",
    "WorkflowStateError",
    "ExecutionRegistry",
    "Session",
    "SessionStatus",
    "SessionManager",
    "Workflow",
    "WorkflowStateMachine",
    "WorkflowStatus",
    "WorkflowStore",
]
