"""Workspace management for task repositories."""

from .manager import PushResult, Workspace, WorkspaceManager
from .repo_manager import RepoManager
from .worktree_manager import WorktreeInfo, WorktreeManager

__all__ = [
    "PushResult",
    "Workspace",
    "WorkspaceManager",
    "RepoManager",
    "WorktreeInfo",
    "WorktreeManager",
]
