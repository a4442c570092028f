"""Health check module for validating service configuration."""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

import requests

from ..core.config import PROVIDER_NAMES, AgentRemoteConfig
from ..utils.subprocess_utils import check_command_exists

logger = logging.getLogger(__name__)


class CheckStatus(Enum):
    """Health check status."""
    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


@dataclass
class CheckResult:
    """Result of a health check."""
    name: str
    status: CheckStatus
    message: str
    fix_action: Optional[str] = None


class HealthChecker:
    """Validate service configuration and, optionally, connectivity."""

    def __init__(self, config: AgentRemoteConfig, config_path: Optional[Path] = None):
        self.config = config
        self.config_path = config_path

    def run_all_checks(self, online: bool = False) -> List[CheckResult]:
        """Run every local check; ``online`` adds the GitHub API check."""
        results = [
            self.check_config_file(),
            self.check_webhook_secret(),
            self.check_callback_url(),
            self.check_providers(),
            self.check_git(),
            self.check_deploy(),
        ]
        if online:
            results.append(self.check_github_connectivity())
        return results

    @staticmethod
    def overall_status(results: List[CheckResult]) -> str:
        """``healthy`` unless any check failed."""
        if any(r.status == CheckStatus.FAILED for r in results):
            return "degraded"
        return "healthy"

    def check_config_file(self) -> CheckResult:
        if self.config_path is None:
            return CheckResult("Config File", CheckStatus.SKIPPED, "No config file specified")
        if not self.config_path.exists():
            return CheckResult(
                name="Config File",
                status=CheckStatus.WARNING,
                message=f"{self.config_path} not found, using defaults and environment",
                fix_action="Copy config/agent-remote.yaml.example to config/agent-remote.yaml",
            )
        return CheckResult("Config File", CheckStatus.PASSED, f"Loaded {self.config_path}")

    def check_webhook_secret(self) -> CheckResult:
        if not self.config.server.webhook_secret:
            return CheckResult(
                name="Webhook Secret",
                status=CheckStatus.FAILED,
                message="Webhook secret not configured; the server will refuse to start",
                fix_action="Set ASTRID_WEBHOOK_SECRET",
            )
        return CheckResult("Webhook Secret", CheckStatus.PASSED, "Webhook secret configured")

    def check_callback_url(self) -> CheckResult:
        if not self.config.server.callback_url:
            return CheckResult(
                name="Callback URL",
                status=CheckStatus.WARNING,
                message="Callback URL not set; status callbacks are disabled",
                fix_action="Set ASTRID_CALLBACK_URL",
            )
        return CheckResult("Callback URL", CheckStatus.PASSED, self.config.server.callback_url)

    def check_providers(self) -> CheckResult:
        availability = self.config.providers.availability()
        available = [name for name in PROVIDER_NAMES if availability.get(name) == "available"]
        if not available:
            return CheckResult(
                name="AI Providers",
                status=CheckStatus.FAILED,
                message="No AI providers configured",
                fix_action="Set at least one of ANTHROPIC_API_KEY, OPENAI_API_KEY, GEMINI_API_KEY",
            )
        missing = [name for name in PROVIDER_NAMES if name not in available]
        if missing:
            return CheckResult(
                name="AI Providers",
                status=CheckStatus.WARNING,
                message=f"Available: {', '.join(available)}; not configured: {', '.join(missing)}",
            )
        return CheckResult("AI Providers", CheckStatus.PASSED, f"Available: {', '.join(available)}")

    def check_git(self) -> CheckResult:
        if not check_command_exists("git"):
            return CheckResult(
                name="Git",
                status=CheckStatus.FAILED,
                message="git not found on PATH",
                fix_action="Install git",
            )
        if not self.config.workspace.github_token:
            return CheckResult(
                name="Git",
                status=CheckStatus.WARNING,
                message="git available but GITHUB_TOKEN not set; pushes and PRs will fail",
                fix_action="Set GITHUB_TOKEN",
            )
        return CheckResult("Git", CheckStatus.PASSED, "git available, GitHub token set")

    def check_deploy(self) -> CheckResult:
        deploy = self.config.deploy
        if not deploy.enabled:
            return CheckResult("Preview Deploy", CheckStatus.SKIPPED, "Preview deployment disabled")
        status = CheckStatus.FAILED if deploy.required else CheckStatus.WARNING
        if not deploy.token:
            return CheckResult(
                name="Preview Deploy",
                status=status,
                message="Deployment enabled but VERCEL_TOKEN not set",
                fix_action="Set VERCEL_TOKEN",
            )
        if not deploy.use_api and not check_command_exists("vercel"):
            return CheckResult(
                name="Preview Deploy",
                status=status,
                message="vercel CLI not found on PATH",
                fix_action="npm i -g vercel, or set deploy.use_api: true",
            )
        strategy = "API" if deploy.use_api else "CLI"
        return CheckResult("Preview Deploy", CheckStatus.PASSED, f"Vercel {strategy} deployment configured")

    def check_github_connectivity(self) -> CheckResult:
        """Test GitHub API connection."""
        token = self.config.workspace.github_token
        if not token:
            return CheckResult(
                name="GitHub Connection",
                status=CheckStatus.SKIPPED,
                message="GitHub token not set",
            )

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github.v3+json",
        }
        try:
            response = requests.get("https://api.github.com/user", headers=headers, timeout=10)
        except requests.exceptions.Timeout:
            return CheckResult(
                name="GitHub Connection",
                status=CheckStatus.FAILED,
                message="Connection timeout",
                fix_action="Check network connection",
            )
        except requests.RequestException as e:
            return CheckResult(
                name="GitHub Connection",
                status=CheckStatus.WARNING,
                message=f"Connection issue: {str(e)[:100]}",
            )

        if response.status_code == 200:
            return CheckResult(
                name="GitHub Connection",
                status=CheckStatus.PASSED,
                message=f"Connected as {response.json().get('login', 'unknown')}",
            )
        if response.status_code == 401:
            return CheckResult(
                name="GitHub Connection",
                status=CheckStatus.FAILED,
                message="Authentication failed - invalid token",
                fix_action="Generate new token at https://github.com/settings/tokens",
            )
        return CheckResult(
            name="GitHub Connection",
            status=CheckStatus.WARNING,
            message=f"Unexpected response: {response.status_code}",
        )
