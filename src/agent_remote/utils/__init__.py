"""Shared utilities."""

from .atomic_io import atomic_write_json, atomic_write_text
from .subprocess_utils import SubprocessError, run_command, run_git_command
from .validators import resolve_within, validate_branch_name, validate_owner_repo

__all__ = [
    "atomic_write_json",
    "atomic_write_text",
    "SubprocessError",
    "run_command",
    "run_git_command",
    "resolve_within",
    "validate_branch_name",
    "validate_owner_repo",
]
