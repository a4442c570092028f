"""Workspace management: clone, per-task branch, push and cleanup.

Two strategies sit behind one interface:

- ``IsolatedWorktreeStrategy``: a dedicated git worktree per task.
- ``SharedCheckoutStrategy``: the task branch is checked out in the shared
  clone itself. This is a degraded mode; it is not safe when two tasks on
  the same repository run at once.

The isolated strategy is used whenever the clone supports worktrees and
creation succeeds. Otherwise the manager logs a warning and falls back.
"""

import asyncio
import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from github import GithubException

from .repo_manager import RepoManager
from .worktree_manager import WorktreeManager
from ..core.config import WorkspaceConfig
from ..core.errors import WorkspaceError
from ..integrations.github.client import GitHubClient
from ..utils.subprocess_utils import SubprocessError

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """A prepared working directory for one task."""
    task_id: str
    path: Path
    branch: str
    base_branch: str
    repo_path: Path
    owner_repo: Optional[str] = None
    strategy: str = "isolated"

    @property
    def degraded(self) -> bool:
        return self.strategy != "isolated"


@dataclass
class PushResult:
    """What push_changes published."""
    pushed: bool
    pr_url: Optional[str] = None
    pr_number: Optional[int] = None
    error: Optional[str] = None


class WorkspaceStrategy(ABC):
    """How a task obtains its working directory."""

    name = ""

    @abstractmethod
    def prepare(self, repo_path: Path, owner_repo: str, task_id: str, branch: str, base_branch: str) -> Path:
        pass

    @abstractmethod
    def cleanup(self, workspace: Workspace) -> None:
        pass


class IsolatedWorktreeStrategy(WorkspaceStrategy):
    name = "isolated"

    def __init__(self, repos: RepoManager, worktrees: WorktreeManager):
        self.repos = repos
        self.worktrees = worktrees

    def prepare(self, repo_path: Path, owner_repo: str, task_id: str, branch: str, base_branch: str) -> Path:
        if not self.worktrees.is_supported(repo_path):
            raise WorkspaceError(f"Worktrees not supported in {repo_path}")
        start = self.repos.start_point(repo_path, branch, base_branch)
        with self.repos.repo_lock(owner_repo):
            return self.worktrees.create_worktree(repo_path, branch, task_id, owner_repo, start)

    def cleanup(self, workspace: Workspace) -> None:
        self.worktrees.remove_worktree(workspace.task_id)


class SharedCheckoutStrategy(WorkspaceStrategy):
    name = "shared"

    def __init__(self, repos: RepoManager):
        self.repos = repos

    def prepare(self, repo_path: Path, owner_repo: str, task_id: str, branch: str, base_branch: str) -> Path:
        with self.repos.repo_lock(owner_repo):
            self.repos.checkout_task_branch(repo_path, branch, base_branch)
        return repo_path

    def cleanup(self, workspace: Workspace) -> None:
        # Leave the shared clone on its base branch with a clean tree
        with self.repos.repo_lock(workspace.owner_repo or str(workspace.repo_path)):
            self.repos.reset_hard(workspace.repo_path)
            self.repos.checkout(workspace.repo_path, workspace.base_branch)


class WorkspaceManager:
    """Prepares, publishes and tears down task workspaces."""

    def __init__(
        self,
        config: WorkspaceConfig,
        repo_manager: Optional[RepoManager] = None,
        worktree_manager: Optional[WorktreeManager] = None,
        github_client: Optional[GitHubClient] = None,
    ):
        self.config = config
        self.repos = repo_manager or RepoManager(config.root, github_token=config.github_token)
        self.isolated: Optional[IsolatedWorktreeStrategy] = None
        if config.worktree.enabled:
            worktrees = worktree_manager or WorktreeManager(
                config.worktree.root, max_worktrees=config.worktree.max_worktrees
            )
            self.isolated = IsolatedWorktreeStrategy(self.repos, worktrees)
        self.shared = SharedCheckoutStrategy(self.repos)
        self.github = github_client
        if self.github is None and config.github_token and config.create_pr:
            self.github = GitHubClient(config.github_token)

    def branch_for(self, task_id: str) -> str:
        return f"{self.config.branch_prefix}{task_id}"

    async def prepare_workspace(self, task_id: str, repository_ref: str) -> Workspace:
        """Clone or refresh ``repository_ref`` and set up the task branch.

        Raises:
            WorkspaceError: If the repository cannot be cloned or checked out
        """
        return await asyncio.to_thread(self._prepare, task_id, repository_ref)

    def _prepare(self, task_id: str, owner_repo: str) -> Workspace:
        try:
            repo_path = self.repos.ensure_repo(owner_repo)
        except ValueError as e:
            raise WorkspaceError(str(e)) from e
        base_branch = self.config.base_branch or self.repos.get_default_branch(repo_path)
        branch = self.branch_for(task_id)

        if self.isolated is not None:
            try:
                path = self.isolated.prepare(repo_path, owner_repo, task_id, branch, base_branch)
                return Workspace(
                    task_id=task_id,
                    path=path,
                    branch=branch,
                    base_branch=base_branch,
                    repo_path=repo_path,
                    owner_repo=owner_repo,
                    strategy=self.isolated.name,
                )
            except (WorkspaceError, SubprocessError, OSError, subprocess.TimeoutExpired) as e:
                logger.warning(
                    f"⚠️ Worktree isolation failed for task {task_id} ({e}); "
                    f"falling back to shared checkout of {owner_repo}. "
                    f"Degraded mode: not safe for concurrent tasks on this repository."
                )

        try:
            path = self.shared.prepare(repo_path, owner_repo, task_id, branch, base_branch)
        except (SubprocessError, subprocess.TimeoutExpired) as e:
            raise WorkspaceError(f"Failed to check out {branch} in {owner_repo}: {e}") from e
        return Workspace(
            task_id=task_id,
            path=path,
            branch=branch,
            base_branch=base_branch,
            repo_path=repo_path,
            owner_repo=owner_repo,
            strategy=self.shared.name,
        )

    async def push_changes(
        self,
        workspace: Workspace,
        title: str,
        commit_message: Optional[str] = None,
        body: str = "",
    ) -> PushResult:
        """Commit the working tree, push the branch and open or update a PR.

        Raises:
            WorkspaceError: If commit or push fails
        """
        return await asyncio.to_thread(self._push, workspace, title, commit_message or title, body)

    def _push(self, workspace: Workspace, title: str, commit_message: str, body: str) -> PushResult:
        try:
            committed = self.repos.commit_all(workspace.path, commit_message)
            if not committed and not self.repos.has_unpushed_commits(
                workspace.path, workspace.branch, workspace.base_branch
            ):
                return PushResult(pushed=False, error="No changes to push")
            self.repos.push_branch(workspace.path, workspace.branch)
        except (SubprocessError, subprocess.TimeoutExpired) as e:
            raise WorkspaceError(f"Failed to publish {workspace.branch}: {e}") from e

        if self.github is None or not workspace.owner_repo:
            return PushResult(pushed=True)

        try:
            pr = self.github.create_or_update_pull_request(
                workspace.owner_repo,
                title=title,
                body=body,
                head_branch=workspace.branch,
                base_branch=workspace.base_branch,
            )
        except GithubException as e:
            logger.error(f"Failed to open PR for {workspace.branch}: {e}")
            return PushResult(pushed=True, error=f"Pull request creation failed: {e}")
        return PushResult(pushed=True, pr_url=pr.url, pr_number=pr.number)

    async def comment_on_pull_request(self, workspace: Workspace, pr_number: int, comment: str) -> None:
        """Best-effort comment on the task's pull request."""
        if self.github is None or not workspace.owner_repo:
            return
        await asyncio.to_thread(self.github.add_pr_comment, workspace.owner_repo, pr_number, comment)

    async def cleanup(self, workspace: Optional[Workspace]) -> None:
        """Remove task workspace state. Safe to call on every exit path."""
        if workspace is None:
            return
        try:
            await asyncio.to_thread(self._cleanup, workspace)
        except (SubprocessError, OSError, subprocess.TimeoutExpired) as e:
            logger.error(f"Workspace cleanup failed for task {workspace.task_id}: {e}")

    def _cleanup(self, workspace: Workspace) -> None:
        if workspace.strategy == "isolated" and self.isolated is not None:
            self.isolated.cleanup(workspace)
        else:
            self.shared.cleanup(workspace)
