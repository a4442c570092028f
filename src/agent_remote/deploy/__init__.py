"""Preview deployment."""

from .vercel import DeploymentManager, DeployResult, generate_preview_subdomain

__all__ = ["DeploymentManager", "DeployResult", "generate_preview_subdomain"]
