"""Provider executors and the tool-use loop."""

from .base import (
    ExecutionResult,
    ExecutorRunConfig,
    ImplementationPlan,
    PlanFile,
    PlanningResult,
    ProviderExecutor,
    Usage,
)
from .litellm_backend import LiteLLMExecutor
from .providers import ClaudeExecutor, GeminiExecutor, OpenAIExecutor, create_executor, detect_provider

__all__ = [
    "ExecutionResult",
    "ExecutorRunConfig",
    "ImplementationPlan",
    "PlanFile",
    "PlanningResult",
    "ProviderExecutor",
    "Usage",
    "LiteLLMExecutor",
    "ClaudeExecutor",
    "GeminiExecutor",
    "OpenAIExecutor",
    "create_executor",
    "detect_provider",
]
