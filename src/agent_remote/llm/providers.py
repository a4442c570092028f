"""Per-provider executors and provider selection."""

import logging
from typing import Any, Dict, Optional, Type

from .litellm_backend import LiteLLMExecutor
from ..core.config import AgentRemoteConfig
from ..core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ClaudeExecutor(LiteLLMExecutor):
    provider_name = "claude"
    input_cost_per_1k = 0.003
    output_cost_per_1k = 0.015


class OpenAIExecutor(LiteLLMExecutor):
    provider_name = "openai"
    input_cost_per_1k = 0.0025
    output_cost_per_1k = 0.01


class GeminiExecutor(LiteLLMExecutor):
    provider_name = "gemini"
    input_cost_per_1k = 0.00125
    output_cost_per_1k = 0.005


EXECUTORS: Dict[str, Type[LiteLLMExecutor]] = {
    "claude": ClaudeExecutor,
    "openai": OpenAIExecutor,
    "gemini": GeminiExecutor,
}


def detect_provider(ai_agent: Optional[Dict[str, Any]]) -> str:
    """Pick a provider from the assigned agent's email or type.

    claude -> claude, openai/gpt -> openai, gemini/google -> gemini,
    anything else -> claude.
    """
    if not ai_agent:
        return "claude"
    hint = " ".join(
        str(ai_agent.get(key) or "") for key in ("email", "type", "name")
    ).lower()
    if "claude" in hint:
        return "claude"
    if "openai" in hint or "gpt" in hint:
        return "openai"
    if "gemini" in hint or "google" in hint:
        return "gemini"
    return "claude"


def create_executor(provider: str, config: AgentRemoteConfig) -> LiteLLMExecutor:
    """Build the executor for ``provider``.

    Raises:
        ConfigurationError: If the provider is unknown or has no API key
    """
    executor_cls = EXECUTORS.get(provider)
    if executor_cls is None:
        raise ConfigurationError(f"Unknown provider: {provider}")

    api_key = config.providers.api_key_for(provider)
    if not api_key:
        raise ConfigurationError(f"Provider '{provider}' is not configured (missing API key)")

    return executor_cls(
        model=config.providers.model_for(provider),
        api_key=api_key,
        agent_config=config.agent,
        sandbox_config=config.sandbox,
        retry_config=config.retry,
    )
