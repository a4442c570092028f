"""Health checks for the agent-remote service."""

from .checker import HealthChecker, CheckResult, CheckStatus

__all__ = ["HealthChecker", "CheckResult", "CheckStatus"]
