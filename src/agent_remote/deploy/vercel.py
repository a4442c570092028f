"""Vercel preview deployments with optional stable alias.

Two strategies share one contract: the Vercel CLI (``vercel deploy``) and
the REST API (create deployment from the pushed branch, then poll until a
terminal ready state).
"""

import asyncio
import logging
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests

from ..core.config import DeployConfig
from ..core.errors import DeploymentError
from ..utils.subprocess_utils import SubprocessError, run_command, run_git_command

logger = logging.getLogger(__name__)

VERCEL_API_BASE = "https://api.vercel.com"
MAX_SUBDOMAIN_LENGTH = 63
READY = "READY"
FAILED_STATES = ("ERROR", "CANCELED")


@dataclass
class DeployResult:
    success: bool
    vercel_url: Optional[str] = None
    preview_url: Optional[str] = None
    alias_url: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False


def generate_preview_subdomain(branch_name: str, pattern: str = "{branch}") -> str:
    """Deterministic DNS-safe subdomain for a branch.

    Lowercase, anything outside ``[a-z0-9-]`` becomes ``-``, runs of dashes
    collapse, leading/trailing dashes are trimmed, at most 63 characters.
    """
    slug = re.sub(r"[^a-z0-9-]", "-", branch_name.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    subdomain = pattern.replace("{branch}", slug)
    subdomain = re.sub(r"-+", "-", subdomain.lower()).strip("-")
    return subdomain[:MAX_SUBDOMAIN_LENGTH].rstrip("-")


def parse_github_repo(remote_url: str) -> Optional[str]:
    """owner/repo from an https or ssh GitHub remote URL."""
    match = re.search(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$", remote_url.strip())
    if not match:
        return None
    return f"{match.group(1)}/{match.group(2)}"


class DeploymentManager:
    """Creates preview deployments for task branches."""

    def __init__(
        self,
        config: DeployConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.http = session or requests.Session()
        self._sleep = sleep
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def deploy(
        self,
        branch: str,
        project_path: Path,
        repository: Optional[str] = None,
    ) -> DeployResult:
        """Deploy ``branch``. No-ops successfully when deployment is disabled."""
        if not self.config.enabled:
            logger.debug("⏭️ Preview deployment disabled")
            return DeployResult(success=True, skipped=True)
        if not self.config.token:
            return DeployResult(success=False, error="VERCEL_TOKEN is required for preview deployments")

        logger.info(f"🚀 Deploying preview for branch {branch}")
        try:
            if self.config.use_api:
                return await asyncio.to_thread(self.deploy_with_api, branch, Path(project_path), repository)
            return await asyncio.to_thread(self.deploy_with_cli, branch, Path(project_path))
        except (DeploymentError, requests.RequestException, SubprocessError, subprocess.TimeoutExpired, OSError) as e:
            logger.error(f"❌ Vercel deployment failed: {e}")
            return DeployResult(success=False, error=str(e))

    def _alias_hostname(self, branch: str) -> str:
        subdomain = generate_preview_subdomain(branch, self.config.preview_subdomain_pattern)
        return f"{subdomain}.{self.config.preview_domain}"

    def _result_with_alias(self, vercel_url: str, alias_url: Optional[str]) -> DeployResult:
        return DeployResult(
            success=True,
            vercel_url=vercel_url,
            preview_url=alias_url or vercel_url,
            alias_url=alias_url,
        )

    # CLI strategy

    def deploy_with_cli(self, branch: str, project_path: Path) -> DeployResult:
        token = self.config.token
        if self.config.project_name:
            try:
                run_command(
                    ["vercel", "link", "--project", self.config.project_name, "--yes", f"--token={token}"],
                    cwd=project_path,
                    timeout=60,
                )
            except (SubprocessError, subprocess.TimeoutExpired) as e:
                logger.warning(f"Vercel link warning (continuing): {e}")

        completed = run_command(
            ["vercel", "deploy", "--yes", "--force", f"--token={token}"],
            cwd=project_path,
            timeout=self.config.cli_timeout_seconds,
        )
        vercel_url = next(
            (line.strip() for line in completed.stdout.splitlines() if ".vercel.app" in line),
            None,
        )
        if not vercel_url:
            raise DeploymentError("Could not extract deployment URL from Vercel output")
        logger.info(f"✅ Deployed: {vercel_url}")

        alias_url = None
        if self.config.preview_domain:
            alias_url = self._alias_via_cli(vercel_url, self._alias_hostname(branch))
        return self._result_with_alias(vercel_url, alias_url)

    def _alias_via_cli(self, deployment_url: str, hostname: str) -> Optional[str]:
        logger.info(f"🔗 Creating alias: {hostname}")
        try:
            run_command(
                ["vercel", "alias", deployment_url, hostname, f"--token={self.config.token}"],
                timeout=30,
            )
        except (SubprocessError, subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"⚠️ Alias creation failed: {e}")
            return None
        return f"https://{hostname}"

    # API strategy

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.token}",
            "Content-Type": "application/json",
        }
        if self.config.team_id:
            headers["X-Vercel-Team-Id"] = self.config.team_id
        return headers

    @staticmethod
    def _json_object(res: requests.Response, what: str) -> Dict[str, Any]:
        try:
            data = res.json()
        except ValueError:
            raise DeploymentError(f"Vercel returned a non-JSON {what} response")
        if not isinstance(data, dict):
            raise DeploymentError(f"Vercel returned a malformed {what} response")
        return data

    def _resolve_repository(self, project_path: Path, repository: Optional[str]) -> str:
        if repository:
            return repository
        result = run_git_command(["remote", "get-url", "origin"], cwd=project_path, check=False, timeout=10)
        repo = parse_github_repo(result.stdout) if result.returncode == 0 else None
        if not repo:
            raise DeploymentError("Could not determine GitHub repository")
        return repo

    def deploy_with_api(self, branch: str, project_path: Path, repository: Optional[str] = None) -> DeployResult:
        repo_full_name = self._resolve_repository(project_path, repository)
        headers = self._headers()
        timeout = 30

        projects = self.http.get(f"{VERCEL_API_BASE}/v9/projects", headers=headers, timeout=timeout)
        if not projects.ok:
            raise DeploymentError(f"Failed to fetch Vercel projects: HTTP {projects.status_code}")
        project = next(
            (
                p for p in self._json_object(projects, "projects").get("projects") or []
                if isinstance(p, dict) and (
                    (p.get("link") or {}).get("repo") == repo_full_name
                    or (self.config.project_name and p.get("name") == self.config.project_name)
                )
            ),
            None,
        )
        if project is None or not project.get("id"):
            raise DeploymentError(f"No Vercel project found for repository: {repo_full_name}")

        payload = {
            "name": project.get("name") or repo_full_name.split("/")[1],
            "project": project.get("id"),
            "gitSource": {"type": "github", "repo": repo_full_name, "ref": branch},
            "target": "preview",
            "meta": {"branchName": branch, "purpose": "agent-remote-preview"},
        }
        created = self.http.post(
            f"{VERCEL_API_BASE}/v13/deployments", headers=headers, json=payload, timeout=timeout
        )
        if not created.ok:
            raise DeploymentError(f"Vercel API error: HTTP {created.status_code}: {created.text[:200]}")
        deployment = self._json_object(created, "deployment")
        deployment_id = deployment.get("id")
        if not deployment_id:
            raise DeploymentError(f"Vercel deployment response has no id: {created.text[:200]}")
        logger.info(f"✅ Deployment created: https://{deployment.get('url')}")

        ready_url = self.wait_for_deployment(deployment_id, headers)
        if ready_url is None:
            return DeployResult(
                success=False,
                vercel_url=f"https://{deployment.get('url')}",
                error="Deployment did not reach READY state",
            )

        alias_url = None
        if self.config.preview_domain:
            alias_url = self._alias_via_api(deployment_id, self._alias_hostname(branch), headers)
        return self._result_with_alias(ready_url, alias_url)

    def wait_for_deployment(self, deployment_id: str, headers: Dict[str, str]) -> Optional[str]:
        """Poll until READY (returns its URL), ERROR/CANCELED or timeout (returns None)."""
        deadline = self._clock() + self.config.max_wait_seconds
        while self._clock() < deadline:
            res = self.http.get(
                f"{VERCEL_API_BASE}/v13/deployments/{deployment_id}", headers=headers, timeout=30
            )
            if not res.ok:
                logger.error(f"Deployment status check failed: HTTP {res.status_code}")
                return None
            data = self._json_object(res, "deployment status")
            state = data.get("readyState")
            if state == READY:
                return f"https://{data.get('url')}"
            if state in FAILED_STATES:
                logger.error(f"Deployment failed with state: {state}")
                return None
            self._sleep(self.config.poll_interval_seconds)

        logger.error(f"⏱️ Deployment {deployment_id} not ready after {self.config.max_wait_seconds:g}s")
        return None

    def _alias_via_api(self, deployment_id: str, hostname: str, headers: Dict[str, str]) -> Optional[str]:
        logger.info(f"🔗 Creating alias via API: {hostname}")
        try:
            res = self.http.post(
                f"{VERCEL_API_BASE}/v2/deployments/{deployment_id}/aliases",
                headers=headers,
                json={"alias": hostname},
                timeout=30,
            )
        except requests.RequestException as e:
            logger.warning(f"⚠️ Alias creation failed: {e}")
            return None
        if not res.ok:
            logger.warning(f"⚠️ Alias creation failed: HTTP {res.status_code}")
            return None
        return f"https://{hostname}"
