"""Git worktree manager for per-task isolated workspaces.

Each task gets its own worktree of the shared clone, checked out to the
task branch, so concurrent tasks on one repository never share a working
tree.
"""

import json
import logging
import shutil
import subprocess
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..core.errors import WorkspaceError
from ..utils.atomic_io import atomic_write_json
from ..utils.subprocess_utils import SubprocessError, run_git_command
from ..utils.validators import validate_branch_name, validate_identifier, validate_owner_repo

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = ".worktree-registry.json"
DEFAULT_MAX_WORKTREES = 50


@dataclass
class WorktreeInfo:
    """Information about a worktree."""
    path: str
    branch: str
    task_id: str
    base_repo: str
    created_at: str

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "WorktreeInfo":
        valid_fields = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in valid_fields})


class WorktreeManager:
    """Creates and removes task worktrees and tracks them in a registry file."""

    def __init__(self, root: Path, max_worktrees: int = DEFAULT_MAX_WORKTREES):
        self.root = Path(root).expanduser().resolve()
        self.max_worktrees = max_worktrees
        self._registry: Dict[str, WorktreeInfo] = {}
        self._lock = threading.Lock()
        self.root.mkdir(parents=True, exist_ok=True)
        self._load_registry()

    def _registry_path(self) -> Path:
        return self.root / REGISTRY_FILENAME

    def _load_registry(self) -> None:
        path = self._registry_path()
        if not path.exists():
            return
        try:
            data = json.loads(path.read_text())
            self._registry = {key: WorktreeInfo.from_dict(val) for key, val in data.items()}
            logger.debug(f"Loaded {len(self._registry)} worktrees from registry")
        except (OSError, json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Failed to load worktree registry: {e}")
            self._registry = {}

    def _save_registry(self) -> None:
        try:
            atomic_write_json(
                self._registry_path(),
                {key: val.to_dict() for key, val in self._registry.items()},
            )
        except OSError as e:
            logger.error(f"Failed to save worktree registry: {e}")

    @staticmethod
    def is_supported(base_repo: Path) -> bool:
        """Capability check: can this clone host worktrees?"""
        try:
            result = run_git_command(["worktree", "list"], cwd=base_repo, check=False, timeout=10)
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0

    def worktree_path(self, owner_repo: str, task_id: str) -> Path:
        owner, repo = validate_owner_repo(owner_repo).split("/")
        return self.root / owner / repo / validate_identifier(task_id, "task_id")

    def create_worktree(
        self,
        base_repo: Path,
        branch_name: str,
        task_id: str,
        owner_repo: str,
        start_point: str,
    ) -> Path:
        """
        Create an isolated worktree on ``branch_name`` starting at ``start_point``.

        An existing worktree for the same task is replaced.

        Raises:
            ValueError: If inputs are invalid
            WorkspaceError: If the capacity limit is hit or git refuses
        """
        branch_name = validate_branch_name(branch_name)
        base_repo = Path(base_repo).resolve()
        path = self.worktree_path(owner_repo, task_id)

        with self._lock:
            if task_id not in self._registry and len(self._registry) >= self.max_worktrees:
                raise WorkspaceError(f"Worktree limit reached ({self.max_worktrees})")

            if path.exists() or task_id in self._registry:
                logger.info(f"Replacing existing worktree for task {task_id}")
                self._remove_directory(path, base_repo)

            path.parent.mkdir(parents=True, exist_ok=True)
            try:
                run_git_command(
                    ["worktree", "add", "-B", branch_name, str(path), start_point],
                    cwd=base_repo,
                    timeout=60,
                )
            except (SubprocessError, subprocess.TimeoutExpired) as e:
                detail = e.stderr if isinstance(e, SubprocessError) else str(e)
                raise WorkspaceError(f"Failed to create worktree: {detail}") from e

            self._registry[task_id] = WorktreeInfo(
                path=str(path),
                branch=branch_name,
                task_id=task_id,
                base_repo=str(base_repo),
                created_at=datetime.now(timezone.utc).isoformat(),
            )
            self._save_registry()

        logger.info(f"🌳 Created worktree: {path} (branch: {branch_name})")
        return path

    def remove_worktree(self, task_id: str) -> bool:
        """Remove the task's worktree directory and its git tracking entry."""
        with self._lock:
            info = self._registry.pop(task_id, None)
            if info is None:
                return False
            self._remove_directory(Path(info.path), Path(info.base_repo))
            self._save_registry()
        logger.info(f"🧹 Removed worktree for task {task_id}")
        return True

    def _remove_directory(self, path: Path, base_repo: Path) -> None:
        # rmtree plus a targeted prune; `git worktree remove` can take empty parents with it
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
        self._prune_stale_entry(base_repo, path)
        self._registry = {k: v for k, v in self._registry.items() if Path(v.path) != path}

    def _prune_stale_entry(self, base_repo: Path, worktree_path: Path) -> None:
        """Remove the single tracking entry in .git/worktrees pointing at ``worktree_path``."""
        worktrees_dir = base_repo / ".git" / "worktrees"
        if not worktrees_dir.is_dir():
            return
        target = worktree_path.resolve()
        for entry in worktrees_dir.iterdir():
            gitdir_file = entry / "gitdir"
            if not gitdir_file.exists():
                continue
            try:
                recorded = Path(gitdir_file.read_text().strip()).resolve()
            except OSError:
                continue
            # gitdir points at <worktree>/.git
            if recorded == target or recorded.parent == target:
                shutil.rmtree(entry, ignore_errors=True)
                return

    def get_worktree_for_task(self, task_id: str) -> Optional[Path]:
        info = self._registry.get(task_id)
        return Path(info.path) if info else None

    def list_worktrees(self) -> List[WorktreeInfo]:
        return list(self._registry.values())
