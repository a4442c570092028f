"""Repository manager: one shared clone per repository."""

import logging
import subprocess
import threading
from pathlib import Path
from typing import Dict, Optional

from ..core.errors import WorkspaceError
from ..utils.subprocess_utils import SubprocessError, run_git_command
from ..utils.validators import validate_branch_name, validate_owner_repo

logger = logging.getLogger(__name__)

MAX_COMMIT_MESSAGE_LENGTH = 10000
COMMIT_AUTHOR_NAME = "agent-remote"
COMMIT_AUTHOR_EMAIL = "agent-remote@users.noreply.github.com"


class RepoManager:
    """Clones repositories once under ``workspace_root/owner/repo`` and keeps them fresh."""

    def __init__(
        self,
        workspace_root: Path,
        github_token: Optional[str] = None,
        clone_url_template: str = "https://github.com/{owner_repo}.git",
    ):
        self.workspace_root = Path(workspace_root).expanduser().resolve()
        self.token = github_token
        self.clone_url_template = clone_url_template
        self._repo_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def repo_lock(self, owner_repo: str) -> threading.Lock:
        """Lock serialising git operations on one shared clone."""
        with self._locks_guard:
            return self._repo_locks.setdefault(owner_repo, threading.Lock())

    def get_path(self, owner_repo: str) -> Path:
        owner_repo = validate_owner_repo(owner_repo)
        local_path = (self.workspace_root / owner_repo).resolve()
        if self.workspace_root not in local_path.parents:
            raise ValueError(f"Path traversal attempt detected: {owner_repo}")
        return local_path

    def ensure_repo(self, owner_repo: str) -> Path:
        """
        Ensure repository is cloned and up to date.

        Clones on first use; later calls only fetch.

        Raises:
            ValueError: If repository name is invalid
            WorkspaceError: If the clone fails
        """
        local_path = self.get_path(owner_repo)
        with self.repo_lock(owner_repo):
            if not (local_path / ".git").exists():
                logger.info(f"📥 Cloning {owner_repo}")
                self._clone(owner_repo, local_path)
            else:
                logger.info(f"🔄 Fetching {owner_repo}")
                self._fetch(local_path)
        return local_path

    def _clone(self, owner_repo: str, local_path: Path) -> None:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        # Token goes through GIT_ASKPASS, never into the URL
        clone_url = self.clone_url_template.format(owner_repo=owner_repo)
        try:
            run_git_command(["clone", clone_url, str(local_path)], timeout=300, token=self.token)
        except (SubprocessError, subprocess.TimeoutExpired) as e:
            # stderr may echo credentials
            raise WorkspaceError(f"Failed to clone {owner_repo}") from e
        logger.info(f"Successfully cloned {owner_repo}")

    def _fetch(self, repo_path: Path) -> None:
        try:
            run_git_command(["fetch", "origin", "--prune"], cwd=repo_path, timeout=120, token=self.token)
        except (SubprocessError, subprocess.TimeoutExpired):
            logger.warning(f"Failed to fetch {repo_path} (non-fatal)")

    def get_default_branch(self, repo_path: Path) -> str:
        """Default branch of ``origin``, falling back to common names."""
        result = run_git_command(
            ["symbolic-ref", "refs/remotes/origin/HEAD"], cwd=repo_path, check=False, timeout=10
        )
        if result.returncode == 0 and result.stdout.strip():
            # Output is like "refs/remotes/origin/main"
            return result.stdout.strip().split("/")[-1]

        for branch_name in ("main", "master", "develop"):
            if self.remote_branch_exists(repo_path, branch_name):
                return branch_name
        return "main"

    def remote_branch_exists(self, repo_path: Path, branch_name: str) -> bool:
        result = run_git_command(
            ["rev-parse", "--verify", "--quiet", f"refs/remotes/origin/{branch_name}"],
            cwd=repo_path,
            check=False,
            timeout=10,
        )
        return result.returncode == 0

    def start_point(self, repo_path: Path, branch_name: str, base_branch: str) -> str:
        """Where a task branch should start: its own remote head if pushed before, else the base."""
        if self.remote_branch_exists(repo_path, branch_name):
            return f"origin/{branch_name}"
        if self.remote_branch_exists(repo_path, base_branch):
            return f"origin/{base_branch}"
        return "HEAD"

    def checkout_task_branch(self, repo_path: Path, branch_name: str, base_branch: str) -> None:
        """Check out ``branch_name`` directly in the shared clone, reset to its start point."""
        branch_name = validate_branch_name(branch_name)
        start = self.start_point(repo_path, branch_name, base_branch)
        run_git_command(["checkout", "-B", branch_name, start], cwd=repo_path, timeout=30)
        logger.info(f"Branch {branch_name} ready in {repo_path} (from {start})")

    def checkout(self, repo_path: Path, ref: str) -> None:
        run_git_command(["checkout", ref], cwd=repo_path, timeout=30)

    def has_changes(self, repo_path: Path) -> bool:
        status = run_git_command(["status", "--porcelain"], cwd=repo_path, timeout=10)
        return bool(status.stdout.strip())

    def commit_all(self, repo_path: Path, message: str) -> bool:
        """
        Stage and commit everything in the working tree.

        Returns:
            False if there was nothing to commit
        """
        message = _sanitize_commit_message(message)
        run_git_command(["add", "-A"], cwd=repo_path, timeout=30)
        if not self.has_changes(repo_path):
            logger.info(f"No changes to commit in {repo_path}")
            return False
        run_git_command(
            [
                "-c", f"user.name={COMMIT_AUTHOR_NAME}",
                "-c", f"user.email={COMMIT_AUTHOR_EMAIL}",
                "commit", "-m", message,
            ],
            cwd=repo_path,
            timeout=30,
        )
        return True

    def has_unpushed_commits(self, repo_path: Path, branch_name: str, base_branch: str) -> bool:
        upstream = (
            f"origin/{branch_name}"
            if self.remote_branch_exists(repo_path, branch_name)
            else f"origin/{base_branch}"
        )
        result = run_git_command(
            ["rev-list", "--count", f"{upstream}..HEAD"], cwd=repo_path, check=False, timeout=10
        )
        if result.returncode != 0:
            return True
        return int(result.stdout.strip() or 0) > 0

    def push_branch(self, repo_path: Path, branch_name: str) -> None:
        branch_name = validate_branch_name(branch_name)
        try:
            run_git_command(
                ["push", "-u", "origin", branch_name], cwd=repo_path, timeout=120, token=self.token
            )
        except (SubprocessError, subprocess.TimeoutExpired) as e:
            raise WorkspaceError(f"Failed to push {branch_name}") from e
        logger.info(f"⬆️ Pushed {branch_name}")

    def reset_hard(self, repo_path: Path, ref: Optional[str] = None) -> None:
        """Discard all changes in the working tree."""
        args = ["reset", "--hard"] + ([ref] if ref else [])
        run_git_command(args, cwd=repo_path, timeout=10)
        run_git_command(["clean", "-fd"], cwd=repo_path, timeout=30)


def _sanitize_commit_message(message: str) -> str:
    if not message or not message.strip():
        raise ValueError("Commit message cannot be empty")
    message = message[:MAX_COMMIT_MESSAGE_LENGTH]
    # Remove control characters except newlines
    return "".join(c for c in message if c == "\n" or ord(c) >= 32)
