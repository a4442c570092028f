"""Validation helpers for repository names, branch names, ids and paths."""

import os
import re
from pathlib import Path


def validate_branch_name(branch_name: str) -> str:
    """
    Validate a git branch name against a strict whitelist.

    Raises:
        ValueError: If branch name is invalid
    """
    if not branch_name:
        raise ValueError("Branch name cannot be empty")

    if not re.match(r'^[a-zA-Z0-9/_.-]+$', branch_name):
        raise ValueError(f"Invalid branch name: {branch_name}")

    if branch_name.startswith('/') or branch_name.endswith('/'):
        raise ValueError("Branch name cannot start or end with /")

    if '..' in branch_name or '@{' in branch_name or branch_name.endswith('.lock'):
        raise ValueError("Branch name contains invalid sequence")

    if len(branch_name) > 255:
        raise ValueError("Branch name too long")

    return branch_name


def validate_identifier(value: str, name: str = "identifier") -> str:
    """
    Validate a task or session id before it is used in a filesystem path.

    Raises:
        ValueError: If identifier is invalid
    """
    if not value:
        raise ValueError(f"{name} cannot be empty")

    if not re.match(r'^[a-zA-Z0-9_-]+$', value):
        raise ValueError(f"Invalid {name}: {value}")

    if len(value) > 128:
        raise ValueError(f"{name} too long")

    return value


def validate_owner_repo(owner_repo: str) -> str:
    """
    Validate repository name format (owner/repo).

    Raises:
        ValueError: If repository name format is invalid
    """
    if not owner_repo:
        raise ValueError("Repository name cannot be empty")

    if not re.match(r'^[a-zA-Z0-9_-]+/[a-zA-Z0-9_.-]+$', owner_repo):
        raise ValueError(
            f"Invalid repository format: {owner_repo}. Must be 'owner/repo'"
        )

    if '..' in owner_repo:
        raise ValueError(f"Invalid repository name: {owner_repo}")

    return owner_repo


def resolve_within(root: Path, relative_path: str) -> Path:
    """
    Resolve ``relative_path`` under ``root`` and refuse anything that escapes it.

    Raises:
        ValueError: If the path is absolute or resolves outside root
    """
    if not relative_path:
        raise ValueError("Path cannot be empty")
    if os.path.isabs(relative_path):
        raise ValueError(f"Absolute paths not allowed: {relative_path}")

    root = Path(root).resolve()
    candidate = (root / relative_path).resolve()
    if candidate != root and root not in candidate.parents:
        raise ValueError(f"Path escapes workspace: {relative_path}")
    return candidate
