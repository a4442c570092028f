"""Tool sandbox: file, shell and search operations confined to a workspace."""

import fnmatch
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.config import SandboxConfig
from ..core.errors import ToolExecutionError
from ..utils.subprocess_utils import run_command, run_shell
from ..utils.validators import resolve_within

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[... output truncated]"


@dataclass
class FileChange:
    """A file mutation recorded by a tool."""
    path: str
    content: str
    action: str  # create | modify | delete

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "content": self.content, "action": self.action}


@dataclass
class ToolResult:
    """Outcome of one tool call."""
    success: bool
    result: str
    file_change: Optional[FileChange] = None


def truncate_output(output: str, max_length: int) -> str:
    """Cut ``output`` to ``max_length`` characters and mark the cut."""
    if len(output) <= max_length:
        return output
    return output[:max_length] + TRUNCATION_MARKER


def is_blocked_command(command: str, blocked_patterns: List[str]) -> bool:
    """Case-insensitive substring match against the denylist."""
    lowered = command.lower()
    return any(pattern.lower() in lowered for pattern in blocked_patterns)


def is_protected_path(relative_path: str, protected_patterns: List[str]) -> bool:
    """Match a workspace-relative path against protected globs."""
    normalized = Path(relative_path).as_posix()
    name = Path(normalized).name
    for pattern in protected_patterns:
        if fnmatch.fnmatch(normalized, pattern) or fnmatch.fnmatch(name, pattern):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatch(normalized, pattern[3:]):
            return True
    return False


class ToolExecutor:
    """Executes the fixed tool vocabulary inside ``repo_path``.

    Every call returns a ToolResult; failures are reported in-band so the
    model can recover. Outputs are truncated before they reach the model.
    """

    def __init__(self, repo_path: Path, config: Optional[SandboxConfig] = None):
        self.repo_path = Path(repo_path).resolve()
        self.config = config or SandboxConfig()

    def execute(self, name: str, args: Dict[str, Any]) -> ToolResult:
        handler = getattr(self, f"_tool_{name}", None)
        if handler is None:
            return ToolResult(success=False, result=f"Unknown tool: {name}")
        try:
            result = handler(args or {})
        except (ToolExecutionError, OSError, ValueError) as e:
            logger.debug(f"Tool {name} failed: {e}")
            result = ToolResult(success=False, result=f"Error: {e}")
        result.result = truncate_output(result.result, self.config.context_truncation_length)
        return result

    @staticmethod
    def _arg(args: Dict[str, Any], key: str) -> str:
        value = args.get(key)
        if not isinstance(value, str):
            raise ToolExecutionError(f"Missing required argument: {key}")
        return value

    def _resolve(self, relative_path: str) -> Path:
        return resolve_within(self.repo_path, relative_path)

    def _check_writable(self, relative_path: str) -> Path:
        path = self._resolve(relative_path)
        rel = path.relative_to(self.repo_path).as_posix()
        if is_protected_path(rel, self.config.protected_paths):
            raise ToolExecutionError(f"Path is protected and cannot be modified: {relative_path}")
        return path

    def _tool_read_file(self, args: Dict[str, Any]) -> ToolResult:
        path = self._resolve(self._arg(args, "file_path"))
        return ToolResult(success=True, result=path.read_text(encoding="utf-8"))

    def _tool_write_file(self, args: Dict[str, Any]) -> ToolResult:
        file_path = self._arg(args, "file_path")
        content = self._arg(args, "content")
        path = self._check_writable(file_path)

        action = "modify" if path.exists() else "create"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        verb = "created" if action == "create" else "updated"
        return ToolResult(
            success=True,
            result=f"File {verb}: {file_path}",
            file_change=FileChange(path=file_path, content=content, action=action),
        )

    def _tool_edit_file(self, args: Dict[str, Any]) -> ToolResult:
        file_path = self._arg(args, "file_path")
        old_string = self._arg(args, "old_string")
        new_string = self._arg(args, "new_string")
        path = self._check_writable(file_path)

        old_content = path.read_text(encoding="utf-8")
        if not old_string or old_string not in old_content:
            return ToolResult(success=False, result="Error: Could not find the specified string in file")

        new_content = old_content.replace(old_string, new_string, 1)
        path.write_text(new_content, encoding="utf-8")
        return ToolResult(
            success=True,
            result=f"File edited: {file_path}",
            file_change=FileChange(path=file_path, content=new_content, action="modify"),
        )

    def _tool_run_bash(self, args: Dict[str, Any]) -> ToolResult:
        command = self._arg(args, "command")
        if is_blocked_command(command, self.config.blocked_bash_patterns):
            logger.warning(f"🚫 Blocked command: {command}")
            return ToolResult(success=False, result="Error: Command blocked by safety policy")

        timeout = self.config.bash_timeout_seconds
        try:
            completed = run_shell(
                command,
                cwd=self.repo_path,
                timeout=timeout,
                max_output_bytes=self.config.bash_max_output_bytes,
            )
        except subprocess.TimeoutExpired:
            return ToolResult(success=False, result=f"Error: Command timed out after {timeout:g}s")

        if completed.returncode != 0:
            output = completed.stderr or completed.stdout or f"Command failed with exit code {completed.returncode}"
            return ToolResult(success=False, result=f"Error: {output}")
        return ToolResult(success=True, result=completed.stdout or "(no output)")

    def _tool_glob_files(self, args: Dict[str, Any]) -> ToolResult:
        pattern = self._arg(args, "pattern")
        if pattern.startswith("/") or ".." in Path(pattern).parts:
            raise ToolExecutionError(f"Pattern must stay inside the repository: {pattern}")

        matches = sorted(
            p.relative_to(self.repo_path).as_posix()
            for p in self.repo_path.glob(pattern)
            if p.is_file() and ".git" not in p.relative_to(self.repo_path).parts
        )
        limit = self.config.max_glob_results
        text = "\n".join(matches[:limit]) or "(no matches)"
        if len(matches) > limit:
            text += f"\n\n[... {len(matches) - limit} more files truncated]"
        return ToolResult(success=True, result=text)

    def _tool_grep_search(self, args: Dict[str, Any]) -> ToolResult:
        pattern = self._arg(args, "pattern")
        target = args.get("file_pattern") or "."
        try:
            self._resolve(target)
        except ValueError:
            return ToolResult(success=True, result="(no matches)")

        try:
            completed = run_command(
                ["grep", "-rn", "--exclude-dir=.git", "--exclude-dir=node_modules", "-e", pattern, "--", target],
                cwd=self.repo_path,
                check=False,
                timeout=self.config.grep_timeout_seconds,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.debug(f"grep_search failed: {e}")
            return ToolResult(success=True, result="(no matches)")

        lines = completed.stdout.splitlines()[: self.config.grep_max_results]
        return ToolResult(success=True, result="\n".join(lines) or "(no matches)")

    def _tool_task_complete(self, args: Dict[str, Any]) -> ToolResult:
        return ToolResult(success=True, result="Task marked complete")
