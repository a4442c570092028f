"""Configuration loading and validation."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_BLOCKED_BASH_PATTERNS = [
    "rm -rf /",
    "rm -rf ~",
    "rm -rf *",
    "sudo",
    "> /dev/",
    "mkfs",
    "dd if=",
    ":(){:|:&};:",
    "chmod -R 777 /",
    "wget -O - | sh",
    "curl | sh",
]

DEFAULT_PROTECTED_PATHS = [
    ".env",
    ".env.local",
    ".env.production",
    ".env.*.local",
    "*.pem",
    "*.key",
    "**/secrets.*",
    ".git/**",
]

PROVIDER_NAMES = ("claude", "openai", "gemini")


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name)
    return value or None


class ServerConfig(BaseModel):
    """HTTP server, webhook and callback settings."""
    host: str = "0.0.0.0"
    port: int = 3001
    webhook_secret: Optional[str] = Field(default_factory=lambda: _env("ASTRID_WEBHOOK_SECRET"))
    callback_url: Optional[str] = Field(default_factory=lambda: _env("ASTRID_CALLBACK_URL"))
    callback_timeout_seconds: float = 10.0
    signature_header_prefix: str = "X-Astrid"
    max_timestamp_age_seconds: int = 300
    max_future_skew_seconds: int = 60
    sessions_path: Path = Field(default=Path(".agent-remote/sessions.json"))
    workflows_path: Path = Field(default=Path(".agent-remote/workflows.json"))
    logs_dir: Path = Field(default=Path("logs"))

    @field_validator("callback_url")
    @classmethod
    def validate_callback_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError(f"callback_url must start with http:// or https://, got '{v}'")
        return v


class ProvidersConfig(BaseModel):
    """Per-provider API keys and model names."""
    anthropic_api_key: Optional[str] = Field(default_factory=lambda: _env("ANTHROPIC_API_KEY"))
    openai_api_key: Optional[str] = Field(default_factory=lambda: _env("OPENAI_API_KEY"))
    gemini_api_key: Optional[str] = Field(default_factory=lambda: _env("GEMINI_API_KEY"))

    claude_model: str = "anthropic/claude-sonnet-4-5-20250929"
    openai_model: str = "openai/gpt-4o"
    gemini_model: str = "gemini/gemini-2.5-flash"

    def api_key_for(self, provider: str) -> Optional[str]:
        return {
            "claude": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "gemini": self.gemini_api_key,
        }.get(provider)

    def model_for(self, provider: str) -> str:
        return {
            "claude": self.claude_model,
            "openai": self.openai_model,
            "gemini": self.gemini_model,
        }.get(provider, self.claude_model)

    def availability(self) -> Dict[str, str]:
        """Map each provider to 'available' or 'not configured'."""
        return {
            name: "available" if self.api_key_for(name) else "not configured"
            for name in PROVIDER_NAMES
        }


class AgentConfig(BaseModel):
    """Plan/execute loop budgets."""
    max_planning_iterations: int = 50
    max_execution_iterations: int = 80
    planning_timeout_minutes: float = 15
    execution_timeout_minutes: float = 20
    planning_temperature: float = 0.5
    execution_temperature: float = 0.1
    max_tokens: int = 16384
    max_budget_usd: float = 10.0
    require_plan_approval: bool = False
    # Leave new pull requests in TESTING so reviewers can send change requests
    hold_for_review: bool = False

    @field_validator("max_planning_iterations", "max_execution_iterations")
    @classmethod
    def validate_iterations(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"iteration limits must be >= 1, got {v}")
        return v

    @field_validator("max_budget_usd")
    @classmethod
    def validate_budget(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"max_budget_usd must be positive, got {v}")
        return v


class SandboxConfig(BaseModel):
    """Tool sandbox limits and safety policy."""
    blocked_bash_patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKED_BASH_PATTERNS))
    protected_paths: List[str] = Field(default_factory=lambda: list(DEFAULT_PROTECTED_PATHS))
    bash_timeout_seconds: float = 60
    bash_max_output_bytes: int = 1024 * 1024
    grep_timeout_seconds: float = 30
    grep_max_results: int = 50
    max_glob_results: int = 200
    context_truncation_length: int = 16000
    max_files_per_plan: int = 8


class RetryConfig(BaseModel):
    """Provider call retry policy."""
    max_retries: int = 3
    initial_backoff_ms: int = 2000
    max_backoff_ms: int = 30000
    backoff_multiplier: float = 2
    api_timeout_seconds: float = 120

    @model_validator(mode="after")
    def validate_backoff(self) -> "RetryConfig":
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.initial_backoff_ms > self.max_backoff_ms:
            raise ValueError("initial_backoff_ms cannot exceed max_backoff_ms")
        return self


class WorktreeSettings(BaseModel):
    """Git worktree isolation settings."""
    enabled: bool = True
    root: Path = Field(default=Path("~/.agent-remote/worktrees"))
    max_worktrees: int = 50


class WorkspaceConfig(BaseModel):
    """Repository clone, branch and pull-request settings."""
    root: Path = Field(default=Path("~/.agent-remote/repos"))
    worktree: WorktreeSettings = Field(default_factory=WorktreeSettings)
    branch_prefix: str = "task-"
    github_token: Optional[str] = Field(default_factory=lambda: _env("GITHUB_TOKEN") or _env("GH_TOKEN"))
    create_pr: bool = True
    base_branch: Optional[str] = None
    default_repository: Optional[str] = Field(default_factory=lambda: _env("DEFAULT_REPOSITORY"))


class DeployConfig(BaseModel):
    """Preview deployment settings."""
    enabled: bool = False
    use_api: bool = False
    token: Optional[str] = Field(default_factory=lambda: _env("VERCEL_TOKEN") or _env("VERCEL_API_TOKEN"))
    project_name: Optional[str] = Field(default_factory=lambda: _env("VERCEL_PROJECT_NAME"))
    team_id: Optional[str] = Field(default_factory=lambda: _env("VERCEL_TEAM_ID"))
    preview_domain: Optional[str] = None
    preview_subdomain_pattern: str = "{branch}"
    poll_interval_seconds: float = 10
    max_wait_seconds: float = 360
    cli_timeout_seconds: float = 300
    required: bool = False

    @field_validator("preview_subdomain_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        if "{branch}" not in v:
            raise ValueError("preview_subdomain_pattern must contain '{branch}'")
        return v


class SessionConfig(BaseModel):
    """Session recovery and expiry thresholds."""
    stale_running_minutes: float = 30
    expiry_hours: float = 24


class AgentRemoteConfig(BaseSettings):
    """Main service configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    deploy: DeployConfig = Field(default_factory=DeployConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    model_config = SettingsConfigDict(
        env_prefix="AGENT_REMOTE_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="allow",
    )

    def require_dispatcher_secrets(self) -> None:
        """Fail fast when the webhook dispatcher cannot run safely."""
        if not self.server.webhook_secret:
            raise ConfigurationError(
                "Webhook secret not configured. Set server.webhook_secret or ASTRID_WEBHOOK_SECRET."
            )
        if not self.server.callback_url:
            logger.warning("Callback URL not configured; status callbacks are disabled")
        if not any(self.providers.api_key_for(p) for p in PROVIDER_NAMES):
            logger.warning(
                "No AI providers configured. Set at least one of "
                "ANTHROPIC_API_KEY, OPENAI_API_KEY, GEMINI_API_KEY"
            )


# Module-level mtime-based config cache: path -> (parsed_config, file_mtime)
_config_cache: Dict[str, tuple] = {}


def _load_config_from_file(config_path: Path) -> AgentRemoteConfig:
    """Internal loader (no caching)."""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    data = _expand_env_vars(data)
    return AgentRemoteConfig(**data)


def load_config(config_path: Path = Path("config/agent-remote.yaml")) -> AgentRemoteConfig:
    """Load service configuration from YAML.

    Uses mtime-based caching: returns the cached config if the file hasn't changed.
    """
    if not config_path.exists():
        logger.info(f"Config file not found: {config_path}. Using defaults and environment.")
        return AgentRemoteConfig()

    resolved = config_path.resolve()
    key = str(resolved)
    current_mtime = resolved.stat().st_mtime
    cached = _config_cache.get(key)
    if cached is not None and cached[1] == current_mtime:
        return cached[0]

    config = _load_config_from_file(resolved)
    _config_cache[key] = (config, current_mtime)
    return config


def clear_config_cache() -> None:
    """Clear the module-level config cache. Useful for tests."""
    _config_cache.clear()


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ``${VAR}`` references in config values."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var = data[2:-1]
        value = os.environ.get(env_var)
        if value is None:
            logger.warning(
                f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'})"
            )
            return None
        return value
    return data
